"""Tests for the cost ledger and per-farm cost totals."""

import pytest
from datetime import date
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database.models import (
    Base, LegalEntity, Farm, Equipment, FarmCostEntry, FinancingRecord, OperatingLoan,
    CommodityType, CostCategory, FinancingMode,
)
from core.errors import ValidationError
from core.events import EventBus
from modules.costs.ledger import CostLedger, farm_totals


@pytest.fixture
def db_session():
    """Two 2025 corn farms (100 + 300 ac), one soybean farm (0 ac) and one 2024 farm."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    session.add(LegalEntity(id=1, name="Farm Entity 1", slug="farm_1"))
    session.add_all([
        Farm(id=1, entity_id=1, name="Home Place", commodity=CommodityType.CORN,
             year=2025, acres=100.0, projected_yield=200.0),
        Farm(id=2, entity_id=1, name="River Bottom", commodity=CommodityType.CORN,
             year=2025, acres=300.0, projected_yield=200.0),
        Farm(id=3, entity_id=1, name="Old Ground", commodity=CommodityType.CORN,
             year=2024, acres=500.0, projected_yield=190.0),
    ])
    session.add(Equipment(id=1, entity_id=1, name="Planter"))
    session.commit()

    yield session
    session.close()


@pytest.fixture
def cost_ledger():
    ledger = CostLedger()
    ledger.setup(EventBus())
    return ledger


class TestFarmTotals:

    def test_direct_costs_summed_by_category(self, db_session):
        db_session.add_all([
            FarmCostEntry(farm_id=1, category=CostCategory.FERTILIZER, amount=8000.0),
            FarmCostEntry(farm_id=1, category=CostCategory.FERTILIZER, amount=2000.0),
            FarmCostEntry(farm_id=1, category=CostCategory.LAND_RENT, amount=25000.0),
        ])
        db_session.flush()

        totals = farm_totals(db_session, 2025)
        assert totals[1].fertilizer == 10000.0
        assert totals[1].land_rent == 25000.0
        assert totals[1].total == 35000.0
        assert totals[2].total == 0.0
        assert 3 not in totals

    def test_farm_record_charged_in_full(self, db_session):
        db_session.add(FinancingRecord(farm_id=1, annual_payment=1000.0))
        db_session.flush()

        totals = farm_totals(db_session, 2025)
        assert totals[1].loan_interest == pytest.approx(400.0)
        assert totals[1].loan_principal == pytest.approx(600.0)
        assert totals[2].total == 0.0

    def test_equipment_record_spread_by_acres(self, db_session):
        db_session.add(FinancingRecord(equipment_id=1, annual_payment=4000.0))
        db_session.flush()

        totals = farm_totals(db_session, 2025)
        assert totals[1].total == pytest.approx(1000.0)
        assert totals[2].total == pytest.approx(3000.0)

    def test_excluded_inactive_and_paid_off_records_skipped(self, db_session):
        db_session.add_all([
            FinancingRecord(equipment_id=1, annual_payment=4000.0, include_in_breakeven=False),
            FinancingRecord(equipment_id=1, annual_payment=4000.0, is_active=False),
            FinancingRecord(equipment_id=1, mode=FinancingMode.AMORTIZED, principal=10000.0,
                            interest_rate=0.05, term_months=12, remaining_balance=0.0),
        ])
        db_session.flush()

        totals = farm_totals(db_session, 2025)
        assert totals[1].total == 0.0
        assert totals[2].total == 0.0

    def test_operating_interest_spread_over_entity_farms(self, db_session):
        db_session.add(LegalEntity(id=2, name="Farm Entity 2", slug="farm_2"))
        db_session.add(Farm(id=5, entity_id=2, name="West Quarter", commodity=CommodityType.CORN,
                            year=2025, acres=200.0, projected_yield=200.0))
        db_session.add(OperatingLoan(entity_id=1, lender="Farm Credit", year=2025,
                                     credit_limit=250000.0, interest_rate=0.08,
                                     current_balance=100000.0))
        db_session.flush()

        # 2025 is a past year on this date, so a full year accrues: $8,000
        totals = farm_totals(db_session, 2025, today=date(2026, 1, 15))
        assert totals[1].operating_interest == pytest.approx(2000.0)
        assert totals[2].operating_interest == pytest.approx(6000.0)
        assert totals[2].total == pytest.approx(6000.0)
        assert totals[5].operating_interest == 0.0

    def test_operating_interest_other_year_or_closed_ignored(self, db_session):
        db_session.add_all([
            OperatingLoan(entity_id=1, lender="Farm Credit", year=2024, credit_limit=1.0e6,
                          interest_rate=0.08, current_balance=100000.0),
            OperatingLoan(entity_id=1, lender="Local Bank", year=2025, credit_limit=1.0e6,
                          interest_rate=0.08, current_balance=100000.0, is_active=False),
        ])
        db_session.flush()

        totals = farm_totals(db_session, 2025, today=date(2026, 1, 15))
        assert totals[1].operating_interest == 0.0
        assert totals[2].operating_interest == 0.0

    def test_commodity_filter(self, db_session):
        db_session.add(Farm(id=4, entity_id=1, name="Beans", commodity=CommodityType.SOYBEANS,
                            year=2025, acres=100.0, projected_yield=55.0))
        db_session.flush()

        assert set(farm_totals(db_session, 2025, "soybeans")) == {4}
        assert set(farm_totals(db_session, 2025, "corn")) == {1, 2}


class TestRecordLines:

    @patch("modules.costs.ledger.get_session")
    @patch("modules.costs.ledger.log_action")
    def test_record_lines(self, mock_log, mock_gs, db_session, cost_ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        entry_ids = cost_ledger.record_lines(1, [
            {"kind": "seed", "hybrid": "P1197", "bags_used": 40, "price_per_bag": 300},
            {"kind": "other_cost", "cost_type": "land_rent", "amount": 250, "is_per_acre": True},
        ])

        assert len(entry_ids) == 2
        entries = {e.category: e for e in db_session.query(FarmCostEntry).all()}
        assert entries[CostCategory.SEED].amount == 12000.0
        assert entries[CostCategory.SEED].description == "P1197"
        assert entries[CostCategory.LAND_RENT].amount == 25000.0
        mock_log.assert_called_once()

    @patch("modules.costs.ledger.get_session")
    @patch("modules.costs.ledger.log_action")
    def test_invalid_line_writes_nothing(self, mock_log, mock_gs, db_session, cost_ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValidationError):
            cost_ledger.record_lines(1, [
                {"kind": "seed", "hybrid": "P1197", "bags_used": 40, "price_per_bag": 300},
                {"kind": "fertilizer", "product": "Urea"},
            ])
        assert db_session.query(FarmCostEntry).count() == 0

    @patch("modules.costs.ledger.get_session")
    @patch("modules.costs.ledger.log_action")
    def test_farm_cost(self, mock_log, mock_gs, db_session, cost_ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        cost_ledger.record_line(1, {"kind": "chemical", "product": "Atrazine",
                                    "amount_used": 100, "price_per_unit": 45})
        result = cost_ledger.farm_cost(1)

        assert result["chemical"] == 4500.0
        assert result["cost_per_acre"] == 45.0

    @patch("modules.costs.ledger.get_session")
    @patch("modules.costs.ledger.log_action")
    def test_unknown_farm(self, mock_log, mock_gs, db_session, cost_ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValueError, match="Farm 77 not found"):
            cost_ledger.record_line(77, {"kind": "other_cost", "cost_type": "other", "amount": 1})
