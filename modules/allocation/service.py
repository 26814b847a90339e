"""
Contract allocation service for FieldLedger.
Previews, applies, resets, manually sets, and deletes the per-farm split of
grain contracts. Every write replaces a contract's allocations atomically.
"""

import logging
import threading
from collections import defaultdict

from database.db import get_session
from database.models import (
    GrainContract, Farm, FarmContractAllocation, AllocationType,
)
from core.audit import log_action
from core.errors import ValidationError, NotFound
from core.events import Event, ALLOCATIONS_REPLACED, ALLOCATION_DELETED
from core.snapshots import FarmSnapshot, ContractSnapshot, AllocationRequest
from modules.allocation.proportional import calculate_proportional, is_eligible
from modules.market.prices import realized_price

logger = logging.getLogger(__name__)

SUM_TOLERANCE = 1e-6


class ContractAllocator:
    """
    Allocation engine for grain contracts.
    NOT an event handler; called by web routes and the CLI as a service.
    """

    def __init__(self):
        self._event_bus = None
        self._locks = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def setup(self, event_bus):
        self._event_bus = event_bus

    def _contract_lock(self, contract_id) -> threading.Lock:
        with self._locks_guard:
            return self._locks[contract_id]

    @staticmethod
    def _load_contract(session, contract_id) -> GrainContract:
        contract = session.get(GrainContract, contract_id)
        if not contract:
            raise NotFound(f"Contract {contract_id} not found")
        return contract

    @staticmethod
    def _candidate_farms(session, contract) -> list[Farm]:
        return (
            session.query(Farm)
            .filter(Farm.commodity == contract.commodity, Farm.year == contract.year)
            .order_by(Farm.id)
            .all()
        )

    # === Read side ===

    def preview(self, contract_id, farm_ids=None) -> list[dict]:
        """Proportional split the contract would get right now. Writes nothing."""
        with get_session() as session:
            contract = self._load_contract(session, contract_id)
            farms = [FarmSnapshot.from_model(f) for f in self._candidate_farms(session, contract)]
            if farm_ids is not None:
                farms = [f for f in farms if f.farm_id in set(farm_ids)]
            previews = calculate_proportional(ContractSnapshot.from_model(contract), farms)
        return [p.to_dict() for p in previews]

    def contract_summary(self, contract_id) -> dict:
        """Allocations for a contract with allocated/unallocated totals."""
        with get_session() as session:
            contract = self._load_contract(session, contract_id)
            rows = sorted(contract.allocations, key=lambda a: -a.allocated_bushels)
            allocations = [self._allocation_dict(a) for a in rows]
            total_allocated = sum(a.allocated_bushels for a in rows)
            return {
                "contract_id": contract.id,
                "contract_number": contract.contract_number,
                "commodity": contract.commodity.value,
                "year": contract.year,
                "total_bushels": contract.total_bushels,
                "total_allocated": total_allocated,
                "unallocated_bushels": contract.total_bushels - total_allocated,
                "allocations": allocations,
            }

    def farm_coverage(self, farm_id) -> dict:
        """How much of a farm's expected production is already contracted, and at what price."""
        with get_session() as session:
            farm = session.get(Farm, farm_id)
            if not farm:
                raise NotFound(f"Farm {farm_id} not found")

            expected = farm.expected_bushels
            allocations = [a for a in farm.allocations if a.contract.year == farm.year]
            total_contracted = sum(a.allocated_bushels for a in allocations)

            blended_price = None
            if total_contracted > 0:
                value = sum(
                    a.allocated_bushels * (realized_price(ContractSnapshot.from_model(a.contract)) or 0.0)
                    for a in allocations
                )
                blended_price = value / total_contracted

            return {
                "farm_id": farm.id,
                "farm_name": farm.name,
                "expected_bushels": expected,
                "total_contracted": total_contracted,
                "uncontracted_bushels": expected - total_contracted,
                "coverage_pct": (total_contracted / expected * 100) if expected > 0 else 0.0,
                "blended_price": blended_price,
                "allocations": [self._allocation_dict(a) for a in allocations],
            }

    # === Write side ===

    def auto_allocate(self, contract_id, farm_ids=None, user="system") -> dict:
        """
        Allocate a contract proportionally over its eligible farms and persist it.

        Args:
            contract_id: Contract to allocate
            farm_ids: Optional subset of eligible farms to spread the contract over
            user: Who triggered this

        Returns:
            Contract summary dict after the write.

        Raises:
            NoEligibleProduction: no eligible farm expects any bushels (nothing written)
        """
        with self._contract_lock(contract_id):
            with get_session() as session:
                contract = self._load_contract(session, contract_id)
                farms = [FarmSnapshot.from_model(f) for f in self._candidate_farms(session, contract)]
                if farm_ids is not None:
                    wanted = set(farm_ids)
                    farms = [f for f in farms if f.farm_id in wanted]

                previews = calculate_proportional(ContractSnapshot.from_model(contract), farms)
                self._replace(session, contract, [
                    FarmContractAllocation(
                        farm_id=p.farm_id,
                        allocation_type=AllocationType.PROPORTIONAL,
                        allocated_bushels=float(p.allocated_bushels),
                    )
                    for p in previews
                ])
                entity_id = contract.entity_id

        self._after_replace(contract_id, entity_id, "proportional", len(previews), user)
        return self.contract_summary(contract_id)

    def reset_to_proportional(self, contract_id, user="user") -> dict:
        """Discard manual overrides and re-split proportionally over the current eligible farms."""
        return self.auto_allocate(contract_id, user=user)

    def set_manual(self, contract_id, allocations, user="user") -> dict:
        """
        Replace a contract's allocations with an explicit split.

        Args:
            contract_id: Contract to allocate
            allocations: AllocationRequest objects or dicts with farm_id, allocated_bushels, notes

        Raises:
            ValidationError: sum != total bushels, negative bushels, duplicate or
                ineligible farm. Prior allocations are left untouched.
        """
        requests = [
            a if isinstance(a, AllocationRequest) else AllocationRequest(
                farm_id=a["farm_id"],
                allocated_bushels=a["allocated_bushels"],
                notes=a.get("notes", ""),
            )
            for a in allocations
        ]

        with self._contract_lock(contract_id):
            with get_session() as session:
                contract = self._load_contract(session, contract_id)
                self._validate_manual(session, contract, requests)

                total = contract.total_bushels
                self._replace(session, contract, [
                    FarmContractAllocation(
                        farm_id=r.farm_id,
                        allocation_type=AllocationType.MANUAL,
                        allocated_bushels=float(r.allocated_bushels),
                        manual_percentage=round(r.allocated_bushels / total * 100, 4),
                        notes=r.notes or None,
                    )
                    for r in requests
                ])
                entity_id = contract.entity_id

        self._after_replace(contract_id, entity_id, "manual", len(requests), user)
        return self.contract_summary(contract_id)

    def delete_allocation(self, contract_id, farm_id, user="user") -> dict:
        """
        Remove one farm from a contract.

        The remaining allocations are NOT rescaled; the contract is left
        under-allocated until it is reset or edited.
        """
        with self._contract_lock(contract_id):
            with get_session() as session:
                contract = self._load_contract(session, contract_id)
                row = (
                    session.query(FarmContractAllocation)
                    .filter_by(contract_id=contract_id, farm_id=farm_id)
                    .first()
                )
                if not row:
                    raise NotFound(f"Farm {farm_id} has no allocation on contract {contract_id}")
                removed = row.allocated_bushels
                session.delete(row)
                session.flush()
                session.expire_all()
                remaining = sum(a.allocated_bushels for a in contract.allocations)
                unallocated = contract.total_bushels - remaining
                entity_id = contract.entity_id

        detail = {
            "contract_id": contract_id,
            "farm_id": farm_id,
            "removed_bushels": removed,
            "unallocated_bushels": unallocated,
        }
        logger.info(
            f"Contract {contract_id}: removed farm {farm_id}; "
            f"{unallocated:,.0f} bu now unallocated"
        )
        log_action("allocation", "allocation_deleted", detail=detail, entity_id=entity_id, user=user)
        if self._event_bus:
            self._event_bus.emit(Event(ALLOCATION_DELETED, detail))
        return detail

    # === Helpers ===

    def _validate_manual(self, session, contract, requests):
        if not requests:
            raise ValidationError("Manual allocation needs at least one farm")

        seen = set()
        for r in requests:
            if r.farm_id in seen:
                raise ValidationError(f"Farm {r.farm_id} appears more than once")
            seen.add(r.farm_id)
            if r.allocated_bushels is None or r.allocated_bushels < 0:
                raise ValidationError(f"Farm {r.farm_id}: allocated bushels must be >= 0")

            farm = session.get(Farm, r.farm_id)
            if not farm:
                raise ValidationError(f"Farm {r.farm_id} not found")
            if not is_eligible(FarmSnapshot.from_model(farm), ContractSnapshot.from_model(contract)):
                raise ValidationError(
                    f"Farm {r.farm_id} ({farm.commodity.value} {farm.year}) is not eligible for "
                    f"contract {contract.id} ({contract.commodity.value} {contract.year})"
                )

        total = sum(r.allocated_bushels for r in requests)
        if abs(total - contract.total_bushels) > SUM_TOLERANCE:
            raise ValidationError(
                f"Allocations total {total:,.2f} bu but contract {contract.id} "
                f"is for {contract.total_bushels:,.2f} bu"
            )

    @staticmethod
    def _replace(session, contract, rows):
        """Swap every allocation on the contract for `rows` within the caller's transaction."""
        for existing in list(contract.allocations):
            session.delete(existing)
        session.flush()
        for row in rows:
            row.contract_id = contract.id
            session.add(row)
        session.flush()
        # Farm-side collections still hold the deleted rows until reloaded
        session.expire_all()

    def _after_replace(self, contract_id, entity_id, allocation_type, count, user):
        detail = {"contract_id": contract_id, "allocation_type": allocation_type, "farms": count}
        logger.info(f"Contract {contract_id}: {count} {allocation_type} allocation(s) written")
        log_action("allocation", "allocations_replaced", detail=detail, entity_id=entity_id, user=user)
        if self._event_bus:
            self._event_bus.emit(Event(ALLOCATIONS_REPLACED, detail))

    @staticmethod
    def _allocation_dict(allocation: FarmContractAllocation) -> dict:
        return {
            "contract_id": allocation.contract_id,
            "farm_id": allocation.farm_id,
            "farm_name": allocation.farm.name if allocation.farm else None,
            "allocation_type": allocation.allocation_type.value,
            "allocated_bushels": allocation.allocated_bushels,
            "share": allocation.share,
            "manual_percentage": allocation.manual_percentage,
            "notes": allocation.notes,
        }
