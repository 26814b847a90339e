"""
Break-even service for FieldLedger.
Gathers farms, costs, allocations and prices for a crop year, runs the
projector, and applies the degradation rules when a loader fails.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from database.db import get_session
from database.models import Farm, GrainContract, FarmContractAllocation, CommodityType
from config.settings import PROJECTION_WORKERS
from core.audit import log_action
from core.errors import NotFound
from core.events import Event, PROJECTION_DEGRADED
from core.snapshots import FarmSnapshot, AllocationSnapshot
from modules.breakeven.projector import project, PricingMode, ScenarioDelta, ProjectionReport
from modules.breakeven.profit_matrix import profit_matrix, DEFAULT_STEPS
from modules.costs.ledger import farm_totals
from modules.market.prices import PriceFeed, PriceSnapshot, default_snapshot

logger = logging.getLogger(__name__)


def _normalize_commodity(commodity) -> str | None:
    if commodity is None:
        return None
    if isinstance(commodity, CommodityType):
        return commodity.value
    return CommodityType(commodity.lower()).value


class BreakEvenService:
    """
    Runs break-even projections. Follows module contract (setup).
    Each loader opens its own session; with workers > 1 they run concurrently.
    """

    def __init__(self, price_feed: PriceFeed = None, workers: int = PROJECTION_WORKERS):
        self._event_bus = None
        self.price_feed = price_feed or PriceFeed()
        self.workers = workers

    def setup(self, event_bus):
        self._event_bus = event_bus

    # === Loaders ===

    def _load_costs(self, year, commodity=None):
        """Farms and their cost totals. Failure here aborts the projection."""
        with get_session() as session:
            query = session.query(Farm).filter(Farm.year == year)
            if commodity:
                query = query.filter(Farm.commodity == CommodityType(commodity))
            farms = [FarmSnapshot.from_model(f) for f in query.order_by(Farm.id)]
            totals = farm_totals(session, year, commodity)
        return farms, totals

    def _load_allocations(self, year, commodity=None) -> list[AllocationSnapshot]:
        with get_session() as session:
            query = (
                session.query(FarmContractAllocation)
                .join(GrainContract)
                .filter(GrainContract.year == year)
            )
            if commodity:
                query = query.filter(GrainContract.commodity == CommodityType(commodity))
            return [AllocationSnapshot.from_model(a) for a in query.all()]

    def _load_prices(self, year, commodity=None) -> PriceSnapshot:
        commodities = [commodity] if commodity else [c.value for c in CommodityType]
        with get_session() as session:
            return self.price_feed.snapshot(session, year, commodities)

    def _gather(self, year, commodity):
        loaders = (self._load_costs, self._load_allocations, self._load_prices)
        if self.workers and self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [pool.submit(loader, year, commodity) for loader in loaders]
                return [self._outcome(f.result) for f in futures]
        return [self._outcome(lambda loader=loader: loader(year, commodity)) for loader in loaders]

    @staticmethod
    def _outcome(call):
        """(value, exception) for one loader."""
        try:
            return call(), None
        except Exception as e:
            return None, e

    def _degrade(self, year, part, error, fallback):
        logger.warning(f"Projection {year}: {part} unavailable ({error}); using {fallback}")
        detail = {"year": year, "part": part, "error": str(error), "fallback": fallback}
        log_action("breakeven", "projection_degraded", detail=detail, severity="warning")
        if self._event_bus:
            self._event_bus.emit(Event(PROJECTION_DEGRADED, detail))

    # === Projections ===

    def project(self, year, commodity=None, scenario: ScenarioDelta = None,
                pricing_mode=PricingMode.MARKET) -> ProjectionReport:
        """
        Project break-even for one crop year.

        A failed price load falls back to the configured default prices and a
        failed allocation load to "nothing marketed"; both are logged, audited
        and reported in report.degraded. A failed cost load raises.
        """
        commodity = _normalize_commodity(commodity)
        (costs, cost_error), (allocations, alloc_error), (prices, price_error) = self._gather(year, commodity)

        if cost_error:
            logger.error(f"Projection {year}: cost load failed: {cost_error}")
            raise cost_error
        farms, totals = costs

        degraded = []
        if alloc_error:
            self._degrade(year, "allocations", alloc_error, "no marketed grain")
            allocations = []
            degraded.append("allocations")
        if price_error:
            self._degrade(year, "prices", price_error, "default prices")
            prices = default_snapshot([commodity] if commodity else None)
            degraded.append("prices")

        report = project(
            year, farms, totals, allocations, prices,
            commodity=commodity, scenario=scenario, pricing_mode=pricing_mode,
        )
        report.degraded = degraded
        logger.info(
            f"Projection {year}: {len(report.by_commodity)} commodity row(s), "
            f"{len(report.missing_prices)} missing price(s)"
        )
        return report

    def historical(self, years, commodity=None, scenario: ScenarioDelta = None,
                   pricing_mode=PricingMode.MARKET) -> list[ProjectionReport]:
        """Replay the projection for each year on that year's own inputs, oldest first."""
        return [
            self.project(year, commodity=commodity, scenario=scenario, pricing_mode=pricing_mode)
            for year in sorted(set(years))
        ]

    def farm_profit_matrix(self, farm_id, steps: int = DEFAULT_STEPS) -> dict:
        """Yield x price profit grid for one farm. Falls back to the default price when unquoted."""
        with get_session() as session:
            farm = session.get(Farm, farm_id)
            if not farm:
                raise NotFound(f"Farm {farm_id} not found")
            snapshot = FarmSnapshot.from_model(farm)
            cost_total = farm_totals(session, farm.year).get(farm.id)
            allocations = [AllocationSnapshot.from_model(a) for a in farm.allocations]
            prices = self.price_feed.snapshot(session, farm.year, [snapshot.commodity])

        market = prices.get(snapshot.commodity) or default_snapshot([snapshot.commodity]).get(snapshot.commodity)
        return profit_matrix(snapshot, cost_total, allocations, market, steps=steps).to_dict()
