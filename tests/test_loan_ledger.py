"""Tests for the financing ledger (records and payments)."""

import pytest
from datetime import date
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database.models import (
    Base, LegalEntity, Farm, Equipment, FinancingRecord, FinancingPayment,
    CommodityType, FinancingMode,
)
from core.errors import ValidationError, MissingAmortizationInput, NotFound
from core.events import EventBus, PAYMENT_RECORDED, LOAN_PAID_OFF
from modules.loans.ledger import LoanLedger


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    session.add(LegalEntity(id=1, name="Farm Entity 1", slug="farm_1"))
    session.add(Farm(id=1, entity_id=1, name="Home Place", commodity=CommodityType.CORN,
                     year=2025, acres=100.0, projected_yield=200.0))
    session.add(Equipment(id=1, entity_id=1, name="Combine"))
    session.commit()

    yield session
    session.close()


@pytest.fixture
def events():
    return []


@pytest.fixture
def ledger(events):
    service = LoanLedger()
    event_bus = EventBus()

    def record(event):
        events.append(event)

    event_bus.subscribe(PAYMENT_RECORDED, record)
    event_bus.subscribe(LOAN_PAID_OFF, record)
    service.setup(event_bus)
    return service


class TestCreateRecord:

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_simple_equipment_loan(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = ledger.create_record(equipment_id=1, lender="Farm Credit", annual_payment=12000.0)

        record = db_session.get(FinancingRecord, record_id)
        assert record.mode == FinancingMode.SIMPLE
        assert record.include_in_breakeven is True
        assert ledger.annual_cost(record_id)["annual_interest"] == 4800.0
        mock_log.assert_called_once()

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_needs_equipment_or_farm(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValidationError, match="equipment_id or a farm_id"):
            ledger.create_record(annual_payment=1000.0)

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_amortized_without_terms_rejected(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(MissingAmortizationInput):
            ledger.create_record(mode="amortized", farm_id=1, principal=50000.0)
        assert db_session.query(FinancingRecord).count() == 0

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_unknown_farm(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValueError, match="Farm 42 not found"):
            ledger.create_record(farm_id=42, annual_payment=1000.0)


class TestRecordPayment:

    def _amortized(self, ledger, balance=20000.0):
        return ledger.create_record(
            mode="amortized", equipment_id=1, principal=50000.0, interest_rate=0.05,
            term_months=60, remaining_balance=balance,
        )

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_payment_reduces_balance(self, mock_log, mock_gs, db_session, ledger, events):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = self._amortized(ledger)
        result = ledger.record_payment(record_id, principal_amount=5000.0, interest_amount=1000.0,
                                       payment_date=date(2025, 3, 1))

        assert result.remaining_balance == 15000.0
        assert result.paid_off is False
        payment = db_session.query(FinancingPayment).one()
        assert payment.total_amount == 6000.0
        assert [e.name for e in events] == [PAYMENT_RECORDED]

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_overpayment_clamps_and_pays_off(self, mock_log, mock_gs, db_session, ledger, events):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = self._amortized(ledger, balance=3000.0)
        result = ledger.record_payment(record_id, principal_amount=3500.0)

        assert result.remaining_balance == 0.0
        assert result.paid_off is True
        assert result.notice.overpayment == 500.0
        assert db_session.get(FinancingRecord, record_id).remaining_balance == 0.0
        assert [e.name for e in events] == [PAYMENT_RECORDED, LOAN_PAID_OFF]
        assert ledger.annual_cost(record_id)["paid_off"] is True

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_payment_after_payoff_does_not_repeat_notice(self, mock_log, mock_gs, db_session, ledger, events):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = self._amortized(ledger, balance=1000.0)
        ledger.record_payment(record_id, principal_amount=1000.0)
        events.clear()
        mock_log.reset_mock()

        result = ledger.record_payment(record_id, principal_amount=0.0, interest_amount=25.0)

        assert result.remaining_balance == 0.0
        assert result.paid_off is False
        assert result.notice is None
        assert [e.name for e in events] == [PAYMENT_RECORDED]
        assert [c.args[1] for c in mock_log.call_args_list] == ["payment_recorded"]

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_simple_record_never_flagged_paid_off(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = ledger.create_record(equipment_id=1, annual_payment=1000.0)
        result = ledger.record_payment(record_id, principal_amount=600.0, interest_amount=400.0)
        assert result.paid_off is False

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_negative_payment_rejected(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = self._amortized(ledger)
        with pytest.raises(ValidationError):
            ledger.record_payment(record_id, principal_amount=-1.0)

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_unknown_record(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValueError, match="Financing record 9 not found"):
            ledger.record_payment(9, principal_amount=100.0)


class TestDeleteRecord:

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_delete_keeps_equipment(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        record_id = ledger.create_record(equipment_id=1, annual_payment=1000.0)
        ledger.record_payment(record_id, principal_amount=100.0)
        ledger.delete_record(record_id)
        db_session.flush()

        assert db_session.query(FinancingRecord).count() == 0
        assert db_session.query(FinancingPayment).count() == 0
        assert db_session.get(Equipment, 1) is not None


class TestEquipment:

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_create_equipment(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        equipment_id = ledger.create_equipment("  Grain Cart ", entity_id=1)

        equipment = db_session.get(Equipment, equipment_id)
        assert equipment.name == "Grain Cart"
        assert equipment.is_active is True
        assert mock_log.call_args[0][1] == "equipment_created"

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_create_equipment_validation(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValidationError, match="needs a name"):
            ledger.create_equipment(" ")
        with pytest.raises(NotFound, match="Entity 5 not found"):
            ledger.create_equipment("Planter", entity_id=5)
        assert db_session.query(Equipment).count() == 1

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_deactivate_equipment_retires_its_records(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        first = ledger.create_record(equipment_id=1, annual_payment=12000.0)
        second = ledger.create_record(equipment_id=1, financing_type="lease", annual_payment=3000.0)
        farm_record = ledger.create_record(farm_id=1, annual_payment=500.0)

        assert sorted(ledger.deactivate_equipment(1)) == [first, second]

        assert db_session.get(Equipment, 1).is_active is False
        assert db_session.get(FinancingRecord, first).is_active is False
        assert db_session.get(FinancingRecord, second).is_active is False
        assert db_session.get(FinancingRecord, farm_record).is_active is True

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_retired_equipment_takes_no_new_records(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        ledger.deactivate_equipment(1)
        with pytest.raises(ValidationError, match="Equipment 1 is retired"):
            ledger.create_record(equipment_id=1, annual_payment=1000.0)

    @patch("modules.loans.ledger.get_session")
    @patch("modules.loans.ledger.log_action")
    def test_deactivate_unknown_equipment(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(NotFound, match="Equipment 8 not found"):
            ledger.deactivate_equipment(8)
