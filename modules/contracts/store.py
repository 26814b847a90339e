"""
Grain contract store for FieldLedger.
Creates, lists and deactivates grain marketing contracts. Allocating a
contract's bushels to farms is ContractAllocator's job.
"""

import logging
import math

from database.db import get_session
from database.models import (
    GrainContract, LegalEntity, CommodityType, ContractType, CropYear,
)
from core.audit import log_action
from core.errors import ValidationError, NotFound
from core.events import Event, CONTRACT_CREATED, CONTRACT_DEACTIVATED

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("cash_price", "basis_price", "futures_price")


def _enum(enum_cls, value, label):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {label} {value!r} (expected one of: {choices})") from None


def _contract_dict(contract: GrainContract) -> dict:
    return {
        "contract_id": contract.id,
        "entity_id": contract.entity_id,
        "contract_number": contract.contract_number,
        "buyer": contract.buyer,
        "contract_type": contract.contract_type.value,
        "crop_year": contract.crop_year.value,
        "commodity": contract.commodity.value,
        "year": contract.year,
        "total_bushels": contract.total_bushels,
        "cash_price": contract.cash_price,
        "basis_price": contract.basis_price,
        "futures_price": contract.futures_price,
        "futures_month": contract.futures_month,
        "bushels_delivered": contract.bushels_delivered,
        "is_active": bool(contract.is_active),
    }


class ContractStore:
    """Read/write access to grain contracts. Follows module contract (setup)."""

    def __init__(self):
        self._event_bus = None

    def setup(self, event_bus):
        self._event_bus = event_bus

    def create_contract(self, buyer, commodity, year, total_bushels, contract_type="cash",
                        entity_id=None, crop_year="new_crop", contract_number=None,
                        futures_month=None, notes="", **prices) -> int:
        """
        Create a grain contract.

        Args:
            buyer: Elevator or processor buying the grain
            commodity: corn, soybeans or wheat
            year: Crop year the bushels come from
            total_bushels: Contracted bushels, > 0
            contract_type: cash, basis, hta or accumulator
            entity_id: Selling legal entity (optional)
            **prices: cash_price, basis_price, futures_price

        Returns:
            contract_id
        """
        unknown = set(prices) - set(PRICE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown price field(s): {', '.join(sorted(unknown))}")
        if not buyer or not str(buyer).strip():
            raise ValidationError("Contract needs a buyer")

        commodity = _enum(CommodityType, commodity, "commodity")
        contract_type = _enum(ContractType, contract_type, "contract type")
        crop_year = _enum(CropYear, crop_year, "crop year")

        total_bushels = float(total_bushels)
        if not math.isfinite(total_bushels) or total_bushels <= 0:
            raise ValidationError("total_bushels must be > 0")
        for name in ("cash_price", "futures_price"):
            value = prices.get(name)
            if value is not None and (not math.isfinite(value) or value < 0):
                raise ValidationError(f"{name} must be >= 0")
        # Basis may be negative, but not NaN
        if prices.get("basis_price") is not None and not math.isfinite(prices["basis_price"]):
            raise ValidationError("basis_price must be a number")

        with get_session() as session:
            if entity_id is not None and not session.get(LegalEntity, entity_id):
                raise NotFound(f"Entity {entity_id} not found")

            contract = GrainContract(
                entity_id=entity_id,
                contract_number=contract_number,
                buyer=str(buyer).strip(),
                contract_type=contract_type,
                crop_year=crop_year,
                commodity=commodity,
                year=year,
                total_bushels=total_bushels,
                cash_price=prices.get("cash_price"),
                basis_price=prices.get("basis_price"),
                futures_price=prices.get("futures_price"),
                futures_month=futures_month,
                bushels_delivered=0.0,
                is_active=True,
                notes=notes,
            )
            session.add(contract)
            session.flush()
            contract_id = contract.id

        detail = {"contract_id": contract_id, "commodity": commodity.value, "year": year,
                  "total_bushels": total_bushels, "type": contract_type.value}
        log_action("contracts", "contract_created", detail=detail, entity_id=entity_id, user="user")
        if self._event_bus:
            self._event_bus.emit(Event(CONTRACT_CREATED, detail))
        return contract_id

    def get_contract(self, contract_id) -> dict:
        with get_session() as session:
            contract = session.get(GrainContract, contract_id)
            if not contract:
                raise NotFound(f"Contract {contract_id} not found")
            return _contract_dict(contract)

    def list_contracts(self, year=None, commodity=None, active_only=True) -> list[dict]:
        """Contracts ordered by year, commodity and id."""
        with get_session() as session:
            query = session.query(GrainContract)
            if year is not None:
                query = query.filter(GrainContract.year == year)
            if commodity is not None:
                query = query.filter(
                    GrainContract.commodity == _enum(CommodityType, commodity, "commodity")
                )
            if active_only:
                query = query.filter(GrainContract.is_active == True)  # noqa: E712
            contracts = query.order_by(GrainContract.year, GrainContract.commodity, GrainContract.id)
            return [_contract_dict(c) for c in contracts]

    def deactivate_contract(self, contract_id) -> dict:
        """
        Mark a contract inactive. Its allocations are kept for history but no
        longer count as marketed grain in projections.
        """
        with get_session() as session:
            contract = session.get(GrainContract, contract_id)
            if not contract:
                raise NotFound(f"Contract {contract_id} not found")
            contract.is_active = False
            result = _contract_dict(contract)
            entity_id = contract.entity_id

        logger.info(f"Contract {contract_id} deactivated")
        log_action("contracts", "contract_deactivated", detail={"contract_id": contract_id},
                   entity_id=entity_id, user="user")
        if self._event_bus:
            self._event_bus.emit(Event(CONTRACT_DEACTIVATED, {"contract_id": contract_id}))
        return result
