"""
Plain, immutable views of farms, contracts and allocations.

The engine functions take these instead of ORM rows so every projection or
allocation call is a function of its arguments alone.
"""

from dataclasses import dataclass

from database.models import Farm, GrainContract, FarmContractAllocation


@dataclass(frozen=True)
class FarmSnapshot:
    farm_id: int
    name: str
    entity_id: int
    commodity: str
    year: int
    acres: float
    projected_yield: float
    aph: float = 0.0
    # (entity_id, percentage) pairs; empty means wholly owned by entity_id
    splits: tuple = ()

    @property
    def expected_bushels(self) -> float:
        return self.acres * self.projected_yield

    def ownership(self) -> dict[int, float]:
        """Fraction of this farm owned by each entity."""
        if not self.splits:
            return {self.entity_id: 1.0}
        return {entity_id: pct / 100.0 for entity_id, pct in self.splits}

    @classmethod
    def from_model(cls, farm: Farm) -> "FarmSnapshot":
        return cls(
            farm_id=farm.id,
            name=farm.name,
            entity_id=farm.entity_id,
            commodity=farm.commodity.value,
            year=farm.year,
            acres=farm.acres or 0.0,
            projected_yield=farm.projected_yield or 0.0,
            aph=farm.aph or 0.0,
            splits=tuple((s.entity_id, s.percentage) for s in farm.splits),
        )


@dataclass(frozen=True)
class ContractSnapshot:
    contract_id: int
    commodity: str
    year: int
    total_bushels: float
    contract_type: str = "cash"
    cash_price: float | None = None
    futures_price: float | None = None
    basis_price: float | None = None
    is_active: bool = True

    @classmethod
    def from_model(cls, contract: GrainContract) -> "ContractSnapshot":
        return cls(
            contract_id=contract.id,
            commodity=contract.commodity.value,
            year=contract.year,
            total_bushels=contract.total_bushels,
            contract_type=contract.contract_type.value,
            cash_price=contract.cash_price,
            futures_price=contract.futures_price,
            basis_price=contract.basis_price,
            is_active=bool(contract.is_active),
        )


@dataclass(frozen=True)
class AllocationSnapshot:
    contract: ContractSnapshot
    farm_id: int
    allocated_bushels: float

    @property
    def share(self) -> float:
        total = self.contract.total_bushels
        return self.allocated_bushels / total if total else 0.0

    @classmethod
    def from_model(cls, allocation: FarmContractAllocation) -> "AllocationSnapshot":
        return cls(
            contract=ContractSnapshot.from_model(allocation.contract),
            farm_id=allocation.farm_id,
            allocated_bushels=allocation.allocated_bushels,
        )


@dataclass
class AllocationRequest:
    """One row of a manual allocation edit."""
    farm_id: int
    allocated_bushels: float
    notes: str = ""
