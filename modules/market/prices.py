"""
Price snapshots for FieldLedger.
Reads futures + local basis per commodity from the market_prices table and
falls back to configured default prices when the feed can't be read.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from database.models import MarketPrice, CommodityType
from config.settings import DEFAULT_PRICES
from core.snapshots import ContractSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommodityPrice:
    futures: float
    basis: float = 0.0
    is_default: bool = False
    source: str = "manual"
    as_of: datetime | None = None

    @property
    def cash(self) -> float:
        return self.futures + self.basis


@dataclass(frozen=True)
class PriceSnapshot:
    """Immutable per-commodity prices for one projection run."""
    prices: dict = field(default_factory=dict)

    def get(self, commodity: str) -> CommodityPrice | None:
        return self.prices.get(commodity)

    def __contains__(self, commodity) -> bool:
        return commodity in self.prices

    @property
    def is_default(self) -> bool:
        return any(p.is_default for p in self.prices.values())


def default_snapshot(commodities=None) -> PriceSnapshot:
    """Estimated prices from settings, flagged is_default. Basis is taken as zero."""
    commodities = commodities or list(DEFAULT_PRICES)
    return PriceSnapshot({
        c: CommodityPrice(futures=DEFAULT_PRICES[c], basis=0.0, is_default=True, source="default")
        for c in commodities
        if c in DEFAULT_PRICES
    })


def realized_price(contract: ContractSnapshot, market: CommodityPrice | None = None) -> float | None:
    """Average price a contract realizes per bushel.

    Cash price wins; otherwise futures + basis. A basis-only contract borrows
    market futures, an HTA (futures-only) contract borrows market basis.
    Returns None when the contract can't be priced.
    """
    if contract.cash_price is not None:
        return contract.cash_price
    if contract.futures_price is not None and contract.basis_price is not None:
        return contract.futures_price + contract.basis_price
    if contract.futures_price is not None:
        return contract.futures_price + (market.basis if market else 0.0)
    if contract.basis_price is not None and market is not None:
        return market.futures + contract.basis_price
    return None


class PriceFeed:
    """Reads the latest quote per commodity for a marketing year."""

    def snapshot(self, session: Session, year: int, commodities=None) -> PriceSnapshot:
        """Latest MarketPrice per commodity for the year. Commodities with no quote are left out."""
        query = session.query(MarketPrice).filter(MarketPrice.year == year)
        if commodities:
            query = query.filter(MarketPrice.commodity.in_([CommodityType(c) for c in commodities]))

        prices = {}
        for row in query.order_by(MarketPrice.price_date.desc(), MarketPrice.id.desc()):
            commodity = row.commodity.value
            if commodity in prices:
                continue
            prices[commodity] = CommodityPrice(
                futures=row.futures_price,
                basis=row.basis or 0.0,
                source=row.source or "manual",
                as_of=row.price_date,
            )

        missing = set(commodities or []) - set(prices)
        if missing:
            logger.warning(f"No {year} price for: {', '.join(sorted(missing))}")
        return PriceSnapshot(prices)

    def record_price(self, session: Session, commodity, year, futures_price, basis=0.0,
                     contract_month=None, source="manual") -> MarketPrice:
        """Store a new quote; the newest quote per commodity/year wins."""
        if isinstance(commodity, str):
            commodity = CommodityType(commodity.lower())
        row = MarketPrice(
            commodity=commodity,
            year=year,
            futures_price=float(futures_price),
            basis=float(basis or 0.0),
            contract_month=contract_month,
            source=source,
            price_date=datetime.utcnow(),
        )
        session.add(row)
        session.flush()
        return row
