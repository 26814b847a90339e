"""
Farm cost aggregator.
Sums a farm-year's direct costs and the loan costs routed to it into a
single FarmCostTotal. Pure: no I/O, no clamping, same inputs same output.
"""

from dataclasses import dataclass, asdict

from config.entities import DIRECT_COST_CATEGORIES as DIRECT_FIELDS
from modules.loans.calculator import breakeven_cost


@dataclass(frozen=True)
class FarmDirectCost:
    fertilizer: float = 0.0
    chemical: float = 0.0
    seed: float = 0.0
    land_rent: float = 0.0
    insurance: float = 0.0
    other: float = 0.0

    @property
    def total(self) -> float:
        return sum(getattr(self, name) for name in DIRECT_FIELDS)


@dataclass(frozen=True)
class FarmCostTotal:
    farm_id: int
    fertilizer: float = 0.0
    chemical: float = 0.0
    seed: float = 0.0
    land_rent: float = 0.0
    insurance: float = 0.0
    other: float = 0.0
    loan_interest: float = 0.0
    loan_principal: float = 0.0
    operating_interest: float = 0.0
    total: float = 0.0

    def cost_per_acre(self, acres: float) -> float:
        return self.total / acres if acres > 0 else 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def aggregate(farm, direct_costs: FarmDirectCost, financing_records, weights=None,
              operating_interest: float = 0.0) -> FarmCostTotal:
    """Build the farm-year cost total.

    Args:
        farm: Anything with a farm_id (FarmSnapshot) or id (Farm row)
        direct_costs: Summed direct costs for the farm-year
        financing_records: Records whose cost this farm carries
        weights: Optional {record_id: fraction} for records spread across farms
            (equipment financing by acreage). Missing ids count in full.
        operating_interest: This farm's acreage share of its entity's
            operating-loan interest
    """
    weights = weights or {}
    loan_interest = 0.0
    loan_principal = 0.0

    for record in financing_records:
        weight = weights.get(getattr(record, "id", None), 1.0)
        cost = breakeven_cost(record)
        loan_interest += cost.annual_interest * weight
        loan_principal += cost.annual_principal * weight

    return FarmCostTotal(
        farm_id=getattr(farm, "farm_id", None) or getattr(farm, "id", None),
        fertilizer=direct_costs.fertilizer,
        chemical=direct_costs.chemical,
        seed=direct_costs.seed,
        land_rent=direct_costs.land_rent,
        insurance=direct_costs.insurance,
        other=direct_costs.other,
        loan_interest=loan_interest,
        loan_principal=loan_principal,
        operating_interest=operating_interest,
        total=direct_costs.total + loan_interest + loan_principal + operating_interest,
    )
