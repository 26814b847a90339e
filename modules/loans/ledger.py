"""
Financing ledger for FieldLedger.
Registers equipment, creates financing records and records payments against
them. Recording a payment is the only way a record's remaining balance changes.
"""

import logging
from dataclasses import dataclass
from datetime import date

from database.db import get_session
from database.models import (
    FinancingRecord, FinancingPayment, Equipment, Farm, LegalEntity,
    FinancingType, FinancingMode,
)
from core.audit import log_action
from core.errors import ValidationError, MissingAmortizationInput, LoanPaidOff, NotFound
from core.events import Event, PAYMENT_RECORDED, LOAN_PAID_OFF
from modules.loans.calculator import compute_annual_cost

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    payment_id: int
    record_id: int
    principal_amount: float
    interest_amount: float
    remaining_balance: float
    paid_off: bool
    notice: LoanPaidOff | None = None

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "record_id": self.record_id,
            "principal_amount": self.principal_amount,
            "interest_amount": self.interest_amount,
            "remaining_balance": self.remaining_balance,
            "paid_off": self.paid_off,
        }


class LoanLedger:
    """Read/write access to financing records. Follows module contract (setup)."""

    def __init__(self):
        self._event_bus = None

    def setup(self, event_bus):
        self._event_bus = event_bus

    def create_equipment(self, name, entity_id=None) -> int:
        """Register an equipment asset that financing records can attach to."""
        if not name or not name.strip():
            raise ValidationError("Equipment needs a name")

        with get_session() as session:
            if entity_id is not None and not session.get(LegalEntity, entity_id):
                raise NotFound(f"Entity {entity_id} not found")
            equipment = Equipment(name=name.strip(), entity_id=entity_id, is_active=True)
            session.add(equipment)
            session.flush()
            equipment_id = equipment.id

        log_action("loans", "equipment_created",
                   detail={"equipment_id": equipment_id, "name": name.strip()}, entity_id=entity_id)
        return equipment_id

    def deactivate_equipment(self, equipment_id) -> list[int]:
        """
        Retire an equipment asset. Its financing records are deactivated with it,
        so they stop being spread over farms. Returns the affected record ids.
        """
        with get_session() as session:
            equipment = session.get(Equipment, equipment_id)
            if not equipment:
                raise NotFound(f"Equipment {equipment_id} not found")
            equipment.is_active = False
            record_ids = []
            for record in equipment.financing_records:
                if record.is_active:
                    record.is_active = False
                    record_ids.append(record.id)
            entity_id = equipment.entity_id

        logger.info(f"Equipment {equipment_id} retired with {len(record_ids)} financing record(s)")
        log_action("loans", "equipment_deactivated",
                   detail={"equipment_id": equipment_id, "records": record_ids},
                   entity_id=entity_id, user="user")
        return record_ids

    def create_record(self, financing_type="loan", mode="simple", equipment_id=None,
                      farm_id=None, lender="", **terms) -> int:
        """
        Create a financing record attached to an equipment asset or a farm.

        Args:
            financing_type: "loan" or "lease"
            mode: "simple" (annual_payment) or "amortized" (principal, interest_rate, term_months)
            equipment_id: Equipment the record finances
            farm_id: Farm charged in full for this record (instead of acreage spread)
            lender: Lender or lessor name
            **terms: annual_payment, principal, interest_rate, term_months, start_date,
                remaining_balance, annual_interest_override, annual_principal_override,
                include_in_breakeven

        Returns:
            record_id
        """
        financing_type = FinancingType(financing_type) if isinstance(financing_type, str) else financing_type
        mode = FinancingMode(mode) if isinstance(mode, str) else mode

        if equipment_id is None and farm_id is None:
            raise ValidationError("Financing record needs an equipment_id or a farm_id")

        for name in ("annual_payment", "principal", "remaining_balance"):
            if terms.get(name) is not None and terms[name] < 0:
                raise ValidationError(f"{name} must be >= 0")

        with get_session() as session:
            if equipment_id is not None:
                equipment = session.get(Equipment, equipment_id)
                if not equipment:
                    raise NotFound(f"Equipment {equipment_id} not found")
                if equipment.is_active is False:
                    raise ValidationError(f"Equipment {equipment_id} is retired")
            if farm_id is not None and not session.get(Farm, farm_id):
                raise NotFound(f"Farm {farm_id} not found")

            record = FinancingRecord(
                equipment_id=equipment_id,
                farm_id=farm_id,
                lender=lender,
                financing_type=financing_type,
                mode=mode,
                annual_payment=terms.get("annual_payment"),
                principal=terms.get("principal"),
                interest_rate=terms.get("interest_rate"),
                term_months=terms.get("term_months"),
                start_date=terms.get("start_date"),
                remaining_balance=terms.get("remaining_balance", terms.get("principal")),
                annual_interest_override=terms.get("annual_interest_override"),
                annual_principal_override=terms.get("annual_principal_override"),
                include_in_breakeven=terms.get("include_in_breakeven", True),
                is_active=True,
            )

            # Reject AMORTIZED records that can't be costed before they're stored
            if mode == FinancingMode.AMORTIZED:
                compute_annual_cost(record)

            session.add(record)
            session.flush()
            record_id = record.id

        log_action(
            "loans",
            "financing_record_created",
            detail={"record_id": record_id, "type": financing_type.value, "mode": mode.value,
                    "equipment_id": equipment_id, "farm_id": farm_id},
        )
        return record_id

    def record_payment(self, record_id, principal_amount, interest_amount=0.0,
                       total_amount=None, payment_date=None, notes="") -> PaymentResult:
        """
        Record a payment and reduce the remaining balance by its principal portion.

        The balance never goes below zero. The payment that takes an AMORTIZED
        balance from above zero to zero flags the record as paid off (LoanPaidOff
        notice + event); later payments on a settled record do not repeat it.
        """
        principal_amount = float(principal_amount)
        interest_amount = float(interest_amount or 0.0)
        if principal_amount < 0 or interest_amount < 0:
            raise ValidationError("Payment amounts must be >= 0")
        if total_amount is None:
            total_amount = principal_amount + interest_amount

        with get_session() as session:
            record = session.get(FinancingRecord, record_id)
            if not record:
                raise NotFound(f"Financing record {record_id} not found")

            balance = record.remaining_balance
            if balance is None:
                balance = record.principal or 0.0

            new_balance = balance - principal_amount
            overpayment = 0.0
            if new_balance <= 0:
                overpayment = -new_balance
                new_balance = 0.0
            # Only the payment that takes the balance to zero pays the record off
            paid_off = balance > 0 and new_balance == 0.0 and record.mode == FinancingMode.AMORTIZED

            payment = FinancingPayment(
                record_id=record_id,
                payment_date=payment_date or date.today(),
                total_amount=float(total_amount),
                principal_amount=principal_amount,
                interest_amount=interest_amount,
                notes=notes,
            )
            session.add(payment)
            record.remaining_balance = new_balance
            session.flush()

            result = PaymentResult(
                payment_id=payment.id,
                record_id=record_id,
                principal_amount=principal_amount,
                interest_amount=interest_amount,
                remaining_balance=new_balance,
                paid_off=paid_off,
                notice=LoanPaidOff(record_id, round(overpayment, 2)) if paid_off else None,
            )

        log_action("loans", "payment_recorded", detail=result.to_dict(), user="user")
        if self._event_bus:
            self._event_bus.emit(Event(PAYMENT_RECORDED, result.to_dict()))

        if paid_off:
            logger.info(f"Financing record {record_id} paid off")
            log_action("loans", "loan_paid_off",
                       detail={"record_id": record_id, "overpayment": result.notice.overpayment})
            if self._event_bus:
                self._event_bus.emit(Event(LOAN_PAID_OFF, {"record_id": record_id}))

        return result

    def annual_cost(self, record_id) -> dict:
        """Annual interest/principal for one record, for display."""
        with get_session() as session:
            record = session.get(FinancingRecord, record_id)
            if not record:
                raise NotFound(f"Financing record {record_id} not found")
            try:
                cost = compute_annual_cost(record)
            except MissingAmortizationInput:
                logger.warning(f"Financing record {record_id} can't be costed")
                raise
            return {
                "record_id": record.id,
                "annual_interest": round(cost.annual_interest, 2),
                "annual_principal": round(cost.annual_principal, 2),
                "paid_off": cost.paid_off,
                "include_in_breakeven": record.include_in_breakeven is not False,
            }

    def delete_record(self, record_id) -> None:
        """Delete a financing record (and its payments). The equipment is untouched."""
        with get_session() as session:
            record = session.get(FinancingRecord, record_id)
            if not record:
                raise NotFound(f"Financing record {record_id} not found")
            session.delete(record)

        log_action("loans", "financing_record_deleted", detail={"record_id": record_id}, user="user")
