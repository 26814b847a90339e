"""
Cost ledger for FieldLedger.
Posts validated cost lines against farms and reads back per-farm-year totals,
including financing costs routed to each farm.
"""

import logging
from collections import defaultdict

from sqlalchemy.orm import Session

from database.db import get_session
from database.models import (
    Farm, FarmCostEntry, FinancingRecord, OperatingLoan, CostCategory, CommodityType,
)
from core.audit import log_action
from core.errors import NotFound
from core.events import Event, COST_RECORDED
from modules.costs.aggregator import FarmDirectCost, FarmCostTotal, aggregate
from modules.costs.lines import parse_cost_line
from modules.loans.calculator import compute_annual_cost, operating_interest

logger = logging.getLogger(__name__)


def direct_costs(session: Session, farm: Farm) -> FarmDirectCost:
    """Sum a farm's cost entries by category."""
    totals = defaultdict(float)
    for entry in session.query(FarmCostEntry).filter(FarmCostEntry.farm_id == farm.id):
        totals[entry.category.value] += entry.amount
    return FarmDirectCost(**totals)


def equipment_weights(farms: list[Farm]) -> dict[int, float]:
    """Each farm's share of total acres; equipment financing is spread on it."""
    total_acres = sum(f.acres or 0.0 for f in farms)
    if total_acres <= 0:
        return {f.id: 0.0 for f in farms}
    return {f.id: (f.acres or 0.0) / total_acres for f in farms}


def _costable(record: FinancingRecord) -> bool:
    if record.mode.value != "amortized":
        return True
    if compute_annual_cost(record).paid_off:
        logger.info(f"Financing record {record.id} is paid off; excluded from break-even")
        return False
    return True


def operating_shares(session: Session, year: int, farms: list[Farm], today=None) -> dict[int, float]:
    """Each farm's acreage share of its entity's operating-loan interest for the year."""
    interest_by_entity = defaultdict(float)
    loans = session.query(OperatingLoan).filter(
        OperatingLoan.year == year,
        OperatingLoan.is_active == True,  # noqa: E712
    )
    for loan in loans:
        interest_by_entity[loan.entity_id] += operating_interest(loan, today)

    acres_by_entity = defaultdict(float)
    for farm in farms:
        acres_by_entity[farm.entity_id] += farm.acres or 0.0

    shares = {}
    for farm in farms:
        entity_acres = acres_by_entity[farm.entity_id]
        interest = interest_by_entity.get(farm.entity_id, 0.0)
        shares[farm.id] = interest * (farm.acres or 0.0) / entity_acres if entity_acres > 0 else 0.0
    return shares


def farm_totals(session: Session, year: int, commodity=None, today=None) -> dict[int, FarmCostTotal]:
    """FarmCostTotal for every farm in a year.

    Farm-linked financing records are charged to their farm in full; records
    linked only to equipment are spread over all of the year's farms by acres.
    Operating-loan interest is spread over the borrowing entity's farms by acres.
    """
    year_farms = session.query(Farm).filter(Farm.year == year).all()
    spread = equipment_weights(year_farms)
    operating = operating_shares(session, year, year_farms, today)

    shared_records = [
        r for r in session.query(FinancingRecord).filter(
            FinancingRecord.farm_id.is_(None),
            FinancingRecord.is_active == True,  # noqa: E712
        ).all()
        if _costable(r)
    ]

    if isinstance(commodity, str):
        commodity = CommodityType(commodity.lower())

    results = {}
    for farm in year_farms:
        if commodity and farm.commodity != commodity:
            continue
        own_records = [r for r in farm.financing_records if r.is_active and _costable(r)]
        weights = {r.id: spread[farm.id] for r in shared_records}
        results[farm.id] = aggregate(
            farm,
            direct_costs(session, farm),
            own_records + shared_records,
            weights=weights,
            operating_interest=operating[farm.id],
        )
    return results


class CostLedger:
    """Posts cost lines to farms. Follows module contract (setup)."""

    def __init__(self):
        self._event_bus = None

    def setup(self, event_bus):
        self._event_bus = event_bus

    def record_lines(self, farm_id, lines, source="manual") -> list[int]:
        """
        Validate and post cost lines against a farm in one transaction.

        Args:
            farm_id: Farm the costs belong to
            lines: Raw dicts (tagged with "kind") or already-parsed cost lines
            source: manual, scan, or import

        Returns:
            List of created entry ids. Nothing is written if any line is invalid.
        """
        parsed = [parse_cost_line(line) if isinstance(line, dict) else line for line in lines]

        with get_session() as session:
            farm = session.get(Farm, farm_id)
            if not farm:
                raise NotFound(f"Farm {farm_id} not found")

            entries = []
            for line in parsed:
                entry = FarmCostEntry(
                    farm_id=farm_id,
                    category=CostCategory(line.category),
                    amount=round(line.cost(farm.acres or 0.0), 2),
                    description=getattr(line, "product", None)
                    or getattr(line, "hybrid", None)
                    or getattr(line, "description", ""),
                    detail=vars(line).copy(),
                    source=source,
                )
                session.add(entry)
                entries.append(entry)
            session.flush()
            entry_ids = [e.id for e in entries]
            total = round(sum(e.amount for e in entries), 2)
            entity_id = farm.entity_id

        log_action(
            "costs",
            "costs_recorded",
            detail={"farm_id": farm_id, "entries": entry_ids, "total": total, "source": source},
            entity_id=entity_id,
        )
        if self._event_bus:
            self._event_bus.emit(Event(COST_RECORDED, {"farm_id": farm_id, "total": total}))

        return entry_ids

    def record_line(self, farm_id, line, source="manual") -> int:
        """Post a single cost line. Returns the entry id."""
        return self.record_lines(farm_id, [line], source=source)[0]

    def farm_cost(self, farm_id) -> dict:
        """Cost breakdown for one farm, for display."""
        with get_session() as session:
            farm = session.get(Farm, farm_id)
            if not farm:
                raise NotFound(f"Farm {farm_id} not found")
            total = farm_totals(session, farm.year)[farm.id]
            result = total.to_dict()
            result["cost_per_acre"] = total.cost_per_acre(farm.acres or 0.0)
            return result
