"""
Per-acre profit matrix for a single farm.

Rows are yield scenarios (50% to 120% of APH), columns are price scenarios
(60% to 140% of the base price). Marketed bushels stay locked at their
average contracted price; only the unmarketed remainder moves with price.
"""

import logging
from dataclasses import dataclass, field, asdict

from modules.market.prices import realized_price

logger = logging.getLogger(__name__)

YIELD_RANGE = (0.50, 1.20)
PRICE_RANGE = (0.60, 1.40)
DEFAULT_STEPS = 7

# Price scenarios round to the nickel, soybeans to the dime
PRICE_TICKS = {"soybeans": 10}
DEFAULT_PRICE_TICKS = 20


def build_yield_scenarios(aph: float, steps: int = DEFAULT_STEPS) -> list[int]:
    """Whole-bushel yields from 50% to 120% of APH. No APH: 100, 120, 140, ..."""
    if steps < 2:
        raise ValueError("steps must be at least 2")
    if not aph or aph <= 0:
        return [100 + i * 20 for i in range(steps)]

    low, high = YIELD_RANGE
    step = (high - low) / (steps - 1)
    return [int(round(aph * (low + i * step))) for i in range(steps)]


def build_price_scenarios(base_price: float, commodity: str, steps: int = DEFAULT_STEPS) -> list[float]:
    if steps < 2:
        raise ValueError("steps must be at least 2")
    ticks = PRICE_TICKS.get(commodity, DEFAULT_PRICE_TICKS)
    low, high = PRICE_RANGE
    step = (high - low) / (steps - 1)
    return [round(base_price * (low + i * step) * ticks) / ticks for i in range(steps)]


@dataclass
class MatrixCell:
    yield_per_acre: float
    price: float
    revenue_per_acre: float
    cost_per_acre: float
    profit_per_acre: float


@dataclass
class ProfitMatrix:
    farm_id: int
    commodity: str
    year: int
    acres: float
    aph: float
    projected_yield: float
    base_price: float
    price_is_default: bool
    cost_per_acre: float
    break_even_price: float
    marketed_bushels_per_acre: float
    marketed_avg_price: float
    unmarketed_bushels_per_acre: float
    yield_scenarios: list = field(default_factory=list)
    price_scenarios: list = field(default_factory=list)
    cells: list = field(default_factory=list)

    def cell(self, yield_index: int, price_index: int) -> MatrixCell:
        return self.cells[yield_index][price_index]

    def to_dict(self) -> dict:
        return asdict(self)


def profit_matrix(farm, cost_total, allocations, market, steps: int = DEFAULT_STEPS) -> ProfitMatrix:
    """
    Build the yield x price profit grid for one farm.

    Args:
        farm: FarmSnapshot
        cost_total: FarmCostTotal for the farm (None counts as zero cost)
        allocations: AllocationSnapshot objects; only this farm's active,
            commodity/year-matched contracts count
        market: CommodityPrice used as the base price (required)
        steps: Number of yield and price scenarios

    Crop-insurance indemnity is not modelled.
    """
    if market is None:
        raise ValueError(f"No price available for {farm.commodity} {farm.year}")

    acres = farm.acres
    cost = cost_total.total if cost_total else 0.0
    cost_per_acre = cost / acres if acres > 0 else 0.0

    marketed_bushels = 0.0
    marketed_value = 0.0
    for allocation in allocations:
        contract = allocation.contract
        if allocation.farm_id != farm.farm_id or not contract.is_active:
            continue
        if contract.commodity != farm.commodity or contract.year != farm.year:
            continue
        price = realized_price(contract, market)
        marketed_bushels += allocation.allocated_bushels
        marketed_value += allocation.allocated_bushels * (price if price is not None else market.cash)

    marketed_per_acre = marketed_bushels / acres if acres > 0 else 0.0
    marketed_avg = marketed_value / marketed_bushels if marketed_bushels > 0 else 0.0

    yields = build_yield_scenarios(farm.aph, steps)
    prices = build_price_scenarios(market.cash, farm.commodity, steps)

    cells = []
    for scenario_yield in yields:
        row = []
        # Delivery obligations beyond the crop are ignored; marketed is capped at yield
        locked = min(marketed_per_acre, scenario_yield)
        open_bushels = max(0.0, scenario_yield - marketed_per_acre)
        for scenario_price in prices:
            revenue = locked * marketed_avg + open_bushels * scenario_price
            row.append(MatrixCell(
                yield_per_acre=scenario_yield,
                price=scenario_price,
                revenue_per_acre=round(revenue, 2),
                cost_per_acre=round(cost_per_acre, 2),
                profit_per_acre=round(revenue - cost_per_acre, 2),
            ))
        cells.append(row)

    logger.debug(f"Farm {farm.farm_id}: {len(yields)}x{len(prices)} profit matrix")

    return ProfitMatrix(
        farm_id=farm.farm_id,
        commodity=farm.commodity,
        year=farm.year,
        acres=acres,
        aph=farm.aph,
        projected_yield=farm.projected_yield,
        base_price=market.cash,
        price_is_default=market.is_default,
        cost_per_acre=round(cost_per_acre, 2),
        break_even_price=round(cost_per_acre / farm.projected_yield, 2) if farm.projected_yield > 0 else 0.0,
        marketed_bushels_per_acre=round(marketed_per_acre, 2),
        marketed_avg_price=round(marketed_avg, 2),
        unmarketed_bushels_per_acre=round(max(0.0, farm.projected_yield - marketed_per_acre), 2),
        yield_scenarios=yields,
        price_scenarios=prices,
        cells=cells,
    )
