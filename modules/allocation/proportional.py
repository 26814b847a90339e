"""
Proportional contract allocation.

Splits a contract's bushels across eligible farms by expected production
share, then apportions whole bushels with the largest-remainder (Hamilton)
method so the allocations always add up to the contract total.
"""

import logging
import math
from dataclasses import dataclass
from fractions import Fraction

from core.errors import NoEligibleProduction, ValidationError
from core.snapshots import FarmSnapshot, ContractSnapshot

logger = logging.getLogger(__name__)

# Allocations are made in whole bushels; a fractional contract total keeps its
# partial bushel on one farm
BUSHEL_INCREMENT = 1


@dataclass(frozen=True)
class AllocationPreview:
    farm_id: int
    farm_name: str
    expected_bushels: float
    share: float
    allocated_bushels: float

    def to_dict(self) -> dict:
        return {
            "farm_id": self.farm_id,
            "farm_name": self.farm_name,
            "expected_bushels": self.expected_bushels,
            "share": self.share,
            "allocated_bushels": self.allocated_bushels,
        }


def is_eligible(farm: FarmSnapshot, contract: ContractSnapshot) -> bool:
    """A farm can carry a contract's bushels only for the same commodity and year."""
    return farm.commodity == contract.commodity and farm.year == contract.year


def eligible_farms(contract: ContractSnapshot, farms) -> list[FarmSnapshot]:
    return [f for f in farms if is_eligible(f, contract)]


def largest_remainder(total_units: int, weights: dict) -> dict:
    """Apportion an integer total across keys in proportion to their weights.

    Each key first gets the floor of its exact quota; the leftover units go
    one at a time to the largest fractional remainders, ties broken by key
    ascending. The result always sums to total_units.
    """
    weight_sum = sum(Fraction(w) for w in weights.values())
    if weight_sum <= 0:
        raise ValueError("Weights must have a positive sum")

    quotas = {key: Fraction(w) * total_units / weight_sum for key, w in weights.items()}
    result = {key: math.floor(q) for key, q in quotas.items()}
    leftover = total_units - sum(result.values())

    ranked = sorted(quotas, key=lambda key: (-(quotas[key] - result[key]), key))
    for i in range(leftover):
        result[ranked[i % len(ranked)]] += 1
    return result


def _split_total(contract: ContractSnapshot) -> tuple[int, float]:
    """Whole bushels to apportion, and the fractional bushel left over."""
    total = float(contract.total_bushels)
    if not math.isfinite(total) or total <= 0:
        raise ValidationError(f"Contract {contract.contract_id}: total bushels must be > 0")
    whole = math.floor(total / BUSHEL_INCREMENT)
    return whole, total - whole * BUSHEL_INCREMENT


def calculate_proportional(contract: ContractSnapshot, farms) -> list[AllocationPreview]:
    """Preview a proportional split of the contract over its eligible farms.

    Raises NoEligibleProduction when no eligible farm expects any bushels.
    Output is ordered by farm id.
    """
    candidates = sorted(eligible_farms(contract, farms), key=lambda f: f.farm_id)
    if not candidates:
        raise NoEligibleProduction(contract.contract_id, "no farms match commodity and year")

    expected = {f.farm_id: f.expected_bushels for f in candidates}
    total_expected = sum(expected.values())
    if total_expected <= 0:
        raise NoEligibleProduction(contract.contract_id, "eligible farms expect zero bushels")

    whole, fraction = _split_total(contract)
    allocated = {
        farm_id: units * BUSHEL_INCREMENT
        for farm_id, units in largest_remainder(whole, expected).items()
    }
    if fraction:
        # Partial bushel rides with the largest producer, lowest farm id on ties
        top = min(expected, key=lambda farm_id: (-expected[farm_id], farm_id))
        allocated[top] += fraction

    previews = [
        AllocationPreview(
            farm_id=f.farm_id,
            farm_name=f.name,
            expected_bushels=expected[f.farm_id],
            share=expected[f.farm_id] / total_expected,
            allocated_bushels=allocated[f.farm_id],
        )
        for f in candidates
    ]
    logger.debug(f"Contract {contract.contract_id}: proportional split over {len(previews)} farm(s)")
    return previews
