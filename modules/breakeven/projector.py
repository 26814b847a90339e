"""
Break-even and blended-revenue projector.

Turns farms, their cost totals, contract allocations and a price snapshot
into per-commodity, per-entity and whole-operation break-even rows. Pure:
inputs are never mutated and scenario deltas live only for one call.
"""

import enum
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field, asdict

from config.entities import COMMODITIES
from config.settings import SCENARIO_LIMIT_PCT
from core.errors import ValidationError, MissingPriceData
from modules.market.prices import PriceSnapshot, realized_price

logger = logging.getLogger(__name__)


class PricingMode(enum.Enum):
    MARKET = "market"                      # unmarketed grain at futures + basis
    CONTRACT_AVERAGE = "contract_average"  # unmarketed grain at the average contracted price


@dataclass(frozen=True)
class ScenarioDelta:
    """What-if percentage adjustments. Never persisted."""
    yield_pct: float = 0.0
    price_pct: float = 0.0
    cost_pct: float = 0.0

    def __post_init__(self):
        for name in ("yield_pct", "price_pct", "cost_pct"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value) or abs(value) > SCENARIO_LIMIT_PCT:
                raise ValidationError(
                    f"{name} must be within ±{SCENARIO_LIMIT_PCT:g}% (got {value})"
                )

    @property
    def yield_factor(self) -> float:
        return 1 + self.yield_pct / 100

    @property
    def price_factor(self) -> float:
        return 1 + self.price_pct / 100

    @property
    def cost_factor(self) -> float:
        return 1 + self.cost_pct / 100


NO_SCENARIO = ScenarioDelta()


@dataclass
class BreakEvenResult:
    commodity: str
    year: int
    entity_id: int | None = None
    farm_count: int = 0
    acres: float = 0.0
    expected_bushels: float = 0.0
    adjusted_bushels: float = 0.0
    total_cost: float = 0.0
    cost_per_acre: float = 0.0
    marketed_bushels: float = 0.0
    unmarketed_bushels: float = 0.0
    marketed_revenue: float = 0.0
    unmarketed_revenue: float = 0.0
    total_revenue: float = 0.0
    cash_price: float = 0.0
    blended_price: float = 0.0
    break_even_price: float = 0.0
    profit: float = 0.0
    profit_per_acre: float = 0.0
    margin_pct: float = 0.0
    price_is_default: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OperationSummary:
    year: int
    acres: float = 0.0
    total_cost: float = 0.0
    total_revenue: float = 0.0
    profit: float = 0.0
    profit_per_acre: float = 0.0
    margin_pct: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProjectionReport:
    year: int
    scenario: ScenarioDelta
    pricing_mode: PricingMode
    by_commodity: list = field(default_factory=list)
    by_entity: list = field(default_factory=list)
    operation: OperationSummary = None
    missing_prices: list = field(default_factory=list)
    degraded: list = field(default_factory=list)

    def commodity(self, commodity: str) -> BreakEvenResult | None:
        return next((r for r in self.by_commodity if r.commodity == commodity), None)

    def entity(self, entity_id: int, commodity: str) -> BreakEvenResult | None:
        return next(
            (r for r in self.by_entity if r.entity_id == entity_id and r.commodity == commodity),
            None,
        )

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "scenario": asdict(self.scenario),
            "pricing_mode": self.pricing_mode.value,
            "by_commodity": [r.to_dict() for r in self.by_commodity],
            "by_entity": [r.to_dict() for r in self.by_entity],
            "operation": self.operation.to_dict() if self.operation else None,
            "missing_prices": [asdict(m) for m in self.missing_prices],
            "degraded": list(self.degraded),
        }


@dataclass
class _Tally:
    """Running sums for one group of (fractions of) farms."""
    farm_ids: set = field(default_factory=set)
    acres: float = 0.0
    expected: float = 0.0
    adjusted: float = 0.0
    cost: float = 0.0
    marketed_bushels: float = 0.0
    marketed_revenue: float = 0.0

    def add(self, farm_id, fraction, acres, expected, adjusted, cost, marketed_bu, marketed_rev):
        self.farm_ids.add(farm_id)
        self.acres += acres * fraction
        self.expected += expected * fraction
        self.adjusted += adjusted * fraction
        self.cost += cost * fraction
        self.marketed_bushels += marketed_bu * fraction
        self.marketed_revenue += marketed_rev * fraction


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _commodity_order(commodity: str) -> int:
    return COMMODITIES.index(commodity) if commodity in COMMODITIES else len(COMMODITIES)


def _marketed_by_farm(farms, allocations, snapshot: PriceSnapshot) -> dict:
    """{farm_id: (bushels, revenue)} from active, commodity/year-matched contracts."""
    farm_index = {f.farm_id: f for f in farms}
    marketed = defaultdict(lambda: [0.0, 0.0])

    for allocation in allocations:
        farm = farm_index.get(allocation.farm_id)
        contract = allocation.contract
        if farm is None or not contract.is_active:
            continue
        if contract.commodity != farm.commodity or contract.year != farm.year:
            continue

        market = snapshot.get(contract.commodity)
        price = realized_price(contract, market)
        if price is None:
            logger.warning(
                f"Contract {contract.contract_id} has no price terms; valuing at market cash"
            )
            price = market.cash if market else 0.0

        marketed[farm.farm_id][0] += allocation.allocated_bushels
        marketed[farm.farm_id][1] += allocation.allocated_bushels * price

    return {farm_id: tuple(values) for farm_id, values in marketed.items()}


def _unit_price(tally: _Tally, market, pricing_mode: PricingMode) -> float | None:
    if pricing_mode == PricingMode.CONTRACT_AVERAGE and tally.marketed_bushels > 0:
        return tally.marketed_revenue / tally.marketed_bushels
    if market is None:
        return None
    return market.cash


def _finish(tally: _Tally, commodity, year, entity_id, scenario, base_price, is_default) -> BreakEvenResult:
    cost = tally.cost * scenario.cost_factor
    unmarketed = max(0.0, tally.adjusted - tally.marketed_bushels)
    cash_price = base_price * scenario.price_factor
    unmarketed_revenue = unmarketed * cash_price
    revenue = tally.marketed_revenue + unmarketed_revenue
    profit = revenue - cost

    return BreakEvenResult(
        commodity=commodity,
        year=year,
        entity_id=entity_id,
        farm_count=len(tally.farm_ids),
        acres=tally.acres,
        expected_bushels=tally.expected,
        adjusted_bushels=tally.adjusted,
        total_cost=cost,
        cost_per_acre=_ratio(cost, tally.acres),
        marketed_bushels=tally.marketed_bushels,
        unmarketed_bushels=unmarketed,
        marketed_revenue=tally.marketed_revenue,
        unmarketed_revenue=unmarketed_revenue,
        total_revenue=revenue,
        cash_price=cash_price,
        blended_price=_ratio(revenue, tally.adjusted),
        break_even_price=_ratio(cost, tally.adjusted),
        profit=profit,
        profit_per_acre=_ratio(profit, tally.acres),
        margin_pct=_ratio(profit, revenue) * 100,
        price_is_default=is_default,
    )


def project(year, farms, cost_totals, allocations, price_snapshot: PriceSnapshot,
            commodity=None, scenario: ScenarioDelta = None,
            pricing_mode: PricingMode = PricingMode.MARKET) -> ProjectionReport:
    """
    Project break-even, blended price, revenue and profit for one crop year.

    Args:
        year: Crop year to project
        farms: FarmSnapshot objects (others years/commodities are ignored)
        cost_totals: {farm_id: FarmCostTotal}; farms without one cost nothing
        allocations: AllocationSnapshot objects (marketed grain)
        price_snapshot: Futures + basis per commodity
        commodity: Optional commodity filter
        scenario: Optional ScenarioDelta; None means no adjustment
        pricing_mode: How unmarketed bushels are priced

    Returns:
        ProjectionReport. Commodities that can't be priced are listed in
        missing_prices and left out of the rows and operation totals.
    """
    scenario = scenario or NO_SCENARIO
    if isinstance(pricing_mode, str):
        pricing_mode = PricingMode(pricing_mode)

    selected = [
        f for f in farms
        if f.year == year and (commodity is None or f.commodity == commodity)
    ]
    marketed = _marketed_by_farm(selected, allocations, price_snapshot)

    by_commodity = defaultdict(_Tally)
    by_entity = defaultdict(_Tally)

    for farm in selected:
        cost_total = cost_totals.get(farm.farm_id)
        cost = cost_total.total if cost_total else 0.0
        adjusted_yield = farm.projected_yield * scenario.yield_factor
        marketed_bu, marketed_rev = marketed.get(farm.farm_id, (0.0, 0.0))
        figures = (
            farm.acres,
            farm.expected_bushels,
            farm.acres * adjusted_yield,
            cost,
            marketed_bu,
            marketed_rev,
        )

        by_commodity[farm.commodity].add(farm.farm_id, 1.0, *figures)
        for entity_id, fraction in farm.ownership().items():
            by_entity[(entity_id, farm.commodity)].add(farm.farm_id, fraction, *figures)

    report = ProjectionReport(year=year, scenario=scenario, pricing_mode=pricing_mode)
    priced = {}

    for name in sorted(by_commodity, key=_commodity_order):
        tally = by_commodity[name]
        market = price_snapshot.get(name)
        base_price = _unit_price(tally, market, pricing_mode)
        if base_price is None:
            logger.warning(f"No price for {name} {year}; omitted from projection")
            report.missing_prices.append(MissingPriceData(commodity=name, year=year))
            continue
        is_default = bool(market and market.is_default)
        priced[name] = (base_price, is_default)
        report.by_commodity.append(_finish(tally, name, year, None, scenario, base_price, is_default))

    for entity_id, name in sorted(by_entity, key=lambda k: (k[0], _commodity_order(k[1]))):
        if name not in priced:
            continue
        # Entity rows share the commodity unit price so they add up to it
        base_price, is_default = priced[name]
        tally = by_entity[(entity_id, name)]
        report.by_entity.append(_finish(tally, name, year, entity_id, scenario, base_price, is_default))

    report.operation = summarize(year, report.by_commodity)
    return report


def summarize(year, rows) -> OperationSummary:
    """Whole-operation totals across commodity rows."""
    acres = sum(r.acres for r in rows)
    cost = sum(r.total_cost for r in rows)
    revenue = sum(r.total_revenue for r in rows)
    profit = revenue - cost
    return OperationSummary(
        year=year,
        acres=acres,
        total_cost=cost,
        total_revenue=revenue,
        profit=profit,
        profit_per_acre=_ratio(profit, acres),
        margin_pct=_ratio(profit, revenue) * 100,
    )
