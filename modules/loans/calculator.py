"""
Loan cost calculator.
Turns one financing record (loan or lease, SIMPLE or AMORTIZED) into an
annual interest/principal split for break-even purposes, and accrues
operating-loan interest on drawn balances.
"""

import logging
from dataclasses import dataclass
from datetime import date

from config.settings import SIMPLE_INTEREST_SHARE, SIMPLE_PRINCIPAL_SHARE
from core.errors import MissingAmortizationInput

logger = logging.getLogger(__name__)

SIMPLE = "simple"
AMORTIZED = "amortized"

DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class LoanCost:
    annual_interest: float
    annual_principal: float
    paid_off: bool = False

    @property
    def total(self) -> float:
        return self.annual_interest + self.annual_principal


def _value(field):
    return getattr(field, "value", field)


def amortized_annual_payment(principal: float, interest_rate: float, term_months: int) -> float:
    """Twelve level monthly payments of a fully amortizing loan.

    A zero rate falls back to straight-line principal repayment.
    """
    if term_months <= 0:
        return 0.0
    monthly_rate = interest_rate / 12.0
    if monthly_rate == 0:
        monthly_payment = principal / term_months
    else:
        monthly_payment = principal * monthly_rate / (1 - (1 + monthly_rate) ** -term_months)
    return monthly_payment * 12


def _simple_cost(record) -> tuple[float, float]:
    payment = float(record.annual_payment or 0.0)
    return payment * SIMPLE_INTEREST_SHARE, payment * SIMPLE_PRINCIPAL_SHARE


def _amortized_cost(record) -> tuple[float, float, bool]:
    missing = [
        name for name in ("principal", "interest_rate", "term_months")
        if getattr(record, name, None) is None
    ]
    if missing:
        raise MissingAmortizationInput(getattr(record, "id", None), missing)

    principal = float(record.principal)
    rate = float(record.interest_rate)
    balance = record.remaining_balance
    balance = principal if balance is None else float(balance)

    # One year of simple interest on the current balance
    interest = balance * rate
    annual_payment = amortized_annual_payment(principal, rate, int(record.term_months))
    return interest, max(0.0, annual_payment - interest), balance <= 0


def compute_annual_cost(record) -> LoanCost:
    """Annual interest and principal for a financing record.

    Overrides win for their own field; the other field is still computed.
    Raises MissingAmortizationInput for an AMORTIZED record without terms.
    """
    mode = _value(record.mode)
    paid_off = False

    if mode == AMORTIZED:
        interest, principal, paid_off = _amortized_cost(record)
    elif mode == SIMPLE:
        interest, principal = _simple_cost(record)
    else:
        raise ValueError(f"Unknown financing mode: {mode!r}")

    if record.annual_interest_override is not None:
        interest = float(record.annual_interest_override)
    if record.annual_principal_override is not None:
        principal = float(record.annual_principal_override)

    return LoanCost(annual_interest=interest, annual_principal=principal, paid_off=paid_off)


def breakeven_cost(record) -> LoanCost:
    """Cost the record contributes to break-even: zero when excluded or inactive."""
    # Unset flags (None) count as true
    if record.include_in_breakeven is False or getattr(record, "is_active", None) is False:
        return LoanCost(0.0, 0.0)
    return compute_annual_cost(record)


def accrual_days(year: int, today: date = None) -> int:
    """Days of operating interest to count for a crop year.

    Past and future years count a full year; the current year counts
    January 1 through today.
    """
    today = today or date.today()
    if year != today.year:
        return DAYS_PER_YEAR
    return (today - date(year, 1, 1)).days + 1


def operating_interest(loan, today: date = None) -> float:
    """Daily-accrued interest on an operating loan's drawn balance for its year."""
    if getattr(loan, "is_active", None) is False:
        return 0.0
    balance = float(loan.current_balance or 0.0)
    rate = float(loan.interest_rate or 0.0)
    return balance * rate * accrual_days(loan.year, today) / DAYS_PER_YEAR
