"""
Operating loan ledger for FieldLedger.
An operating loan is an entity's line of credit for one crop year. Draws
raise the balance, payments lower it (never below zero), and the interest
accrued on the balance is charged to the entity's farms by acres.
"""

import logging
from datetime import date

from database.db import get_session
from database.models import (
    OperatingLoan, OperatingLoanTransaction, LegalEntity, OperatingTransactionType,
)
from core.audit import log_action
from core.errors import ValidationError, NotFound
from core.events import Event, OPERATING_DRAW, OPERATING_PAYMENT
from modules.loans.calculator import operating_interest, accrual_days

logger = logging.getLogger(__name__)


class OperatingLoanLedger:
    """Read/write access to operating loans. Follows module contract (setup)."""

    def __init__(self):
        self._event_bus = None

    def setup(self, event_bus):
        self._event_bus = event_bus

    def create_loan(self, entity_id, year, lender, credit_limit, interest_rate,
                    current_balance=0.0, loan_number=None, notes="") -> int:
        """
        Open an operating loan for an entity and crop year.

        Args:
            entity_id: Borrowing legal entity
            year: Crop year the loan finances
            lender: Lender name
            credit_limit: Maximum balance that can be drawn
            interest_rate: Annual rate as a fraction (0.0725 for 7.25%)
            current_balance: Balance already drawn when the loan is entered

        Returns:
            loan_id
        """
        for name, value in (("credit_limit", credit_limit), ("interest_rate", interest_rate),
                            ("current_balance", current_balance)):
            if value is None or value < 0:
                raise ValidationError(f"{name} must be >= 0")
        if current_balance > credit_limit:
            raise ValidationError("Opening balance exceeds the credit limit")

        with get_session() as session:
            if not session.get(LegalEntity, entity_id):
                raise NotFound(f"Entity {entity_id} not found")

            loan = OperatingLoan(
                entity_id=entity_id,
                year=year,
                lender=lender,
                loan_number=loan_number,
                credit_limit=float(credit_limit),
                interest_rate=float(interest_rate),
                current_balance=float(current_balance),
                notes=notes,
                is_active=True,
            )
            session.add(loan)
            session.flush()
            loan_id = loan.id

        log_action(
            "loans",
            "operating_loan_created",
            detail={"loan_id": loan_id, "year": year, "credit_limit": credit_limit},
            entity_id=entity_id,
        )
        return loan_id

    def record_draw(self, loan_id, amount, transaction_date=None, description="") -> dict:
        """Draw on the line. A draw past the credit limit is rejected."""
        return self._transact(loan_id, OperatingTransactionType.DRAW, amount,
                              transaction_date, description)

    def record_payment(self, loan_id, amount, transaction_date=None, description="") -> dict:
        """Pay down the line. The balance is clamped at zero."""
        return self._transact(loan_id, OperatingTransactionType.PAYMENT, amount,
                              transaction_date, description)

    def _transact(self, loan_id, kind, amount, transaction_date, description) -> dict:
        amount = float(amount)
        if amount <= 0:
            raise ValidationError(f"{kind.value.title()} amount must be > 0")

        with get_session() as session:
            loan = session.get(OperatingLoan, loan_id)
            if not loan:
                raise NotFound(f"Operating loan {loan_id} not found")
            if not loan.is_active:
                raise ValidationError(f"Operating loan {loan_id} is closed")

            if kind == OperatingTransactionType.DRAW:
                new_balance = loan.current_balance + amount
                if new_balance > loan.credit_limit:
                    raise ValidationError(
                        f"Draw of ${amount:,.2f} exceeds available credit "
                        f"${loan.available_credit:,.2f}"
                    )
            else:
                new_balance = max(0.0, loan.current_balance - amount)

            transaction = OperatingLoanTransaction(
                loan_id=loan_id,
                transaction_type=kind,
                amount=amount,
                balance_after=new_balance,
                transaction_date=transaction_date or date.today(),
                description=description,
            )
            session.add(transaction)
            loan.current_balance = new_balance
            session.flush()

            result = {
                "transaction_id": transaction.id,
                "loan_id": loan_id,
                "type": kind.value,
                "amount": amount,
                "balance_after": new_balance,
                "available_credit": loan.available_credit,
            }
            entity_id = loan.entity_id

        log_action("loans", f"operating_{kind.value}_recorded", detail=result,
                   entity_id=entity_id, user="user")
        if self._event_bus:
            name = OPERATING_DRAW if kind == OperatingTransactionType.DRAW else OPERATING_PAYMENT
            self._event_bus.emit(Event(name, result))
        return result

    def summary(self, loan_id, today=None) -> dict:
        """Balance, available credit and interest accrued so far for its year."""
        with get_session() as session:
            loan = session.get(OperatingLoan, loan_id)
            if not loan:
                raise NotFound(f"Operating loan {loan_id} not found")
            return {
                "loan_id": loan.id,
                "entity_id": loan.entity_id,
                "year": loan.year,
                "lender": loan.lender,
                "credit_limit": loan.credit_limit,
                "current_balance": loan.current_balance,
                "available_credit": loan.available_credit,
                "interest_rate": loan.interest_rate,
                "accrual_days": accrual_days(loan.year, today),
                "accrued_interest": round(operating_interest(loan, today), 2),
                "is_active": bool(loan.is_active),
                "transactions": [
                    {
                        "type": t.transaction_type.value,
                        "amount": t.amount,
                        "balance_after": t.balance_after,
                        "date": t.transaction_date.isoformat(),
                    }
                    for t in loan.transactions
                ],
            }

    def close_loan(self, loan_id) -> None:
        """Deactivate a loan; its interest drops out of break-even."""
        with get_session() as session:
            loan = session.get(OperatingLoan, loan_id)
            if not loan:
                raise NotFound(f"Operating loan {loan_id} not found")
            loan.is_active = False
            entity_id = loan.entity_id

        logger.info(f"Operating loan {loan_id} closed")
        log_action("loans", "operating_loan_closed", detail={"loan_id": loan_id},
                   entity_id=entity_id, user="user")
