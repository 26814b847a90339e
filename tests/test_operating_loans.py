"""Tests for the operating loan ledger (draws, payments, accrued interest)."""

import pytest
from datetime import date
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database.models import (
    Base, LegalEntity, OperatingLoan, OperatingLoanTransaction, OperatingTransactionType,
)
from core.errors import ValidationError, NotFound
from core.events import EventBus, OPERATING_DRAW, OPERATING_PAYMENT
from modules.loans.operating import OperatingLoanLedger


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    session.add(LegalEntity(id=1, name="Farm Entity 1", slug="farm_1"))
    session.commit()

    yield session
    session.close()


@pytest.fixture
def events():
    return []


@pytest.fixture
def ledger(events):
    service = OperatingLoanLedger()
    event_bus = EventBus()
    event_bus.subscribe(OPERATING_DRAW, events.append)
    event_bus.subscribe(OPERATING_PAYMENT, events.append)
    service.setup(event_bus)
    return service


def _open(ledger, **kwargs):
    terms = {"entity_id": 1, "year": 2025, "lender": "Farm Credit",
             "credit_limit": 250000.0, "interest_rate": 0.073}
    terms.update(kwargs)
    return ledger.create_loan(**terms)


class TestCreateLoan:

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_create(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger, current_balance=40000.0)

        loan = db_session.get(OperatingLoan, loan_id)
        assert loan.current_balance == 40000.0
        assert loan.available_credit == 210000.0
        assert loan.is_active is True
        mock_log.assert_called_once()

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_unknown_entity(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(NotFound, match="Entity 7 not found"):
            _open(ledger, entity_id=7)

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_bad_terms_rejected(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(ValidationError):
            _open(ledger, interest_rate=-0.01)
        with pytest.raises(ValidationError, match="exceeds the credit limit"):
            _open(ledger, credit_limit=1000.0, current_balance=5000.0)
        assert db_session.query(OperatingLoan).count() == 0


class TestTransactions:

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_draw_then_payment(self, mock_log, mock_gs, db_session, ledger, events):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger)
        draw = ledger.record_draw(loan_id, 60000.0, transaction_date=date(2025, 4, 1))
        payment = ledger.record_payment(loan_id, 15000.0, transaction_date=date(2025, 10, 20))

        assert draw["balance_after"] == 60000.0
        assert payment["balance_after"] == 45000.0
        assert payment["available_credit"] == 205000.0
        rows = db_session.query(OperatingLoanTransaction).order_by(OperatingLoanTransaction.id).all()
        assert [r.transaction_type for r in rows] == [
            OperatingTransactionType.DRAW, OperatingTransactionType.PAYMENT,
        ]
        assert [e.name for e in events] == [OPERATING_DRAW, OPERATING_PAYMENT]

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_overpayment_clamps_at_zero(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger, current_balance=10000.0)
        result = ledger.record_payment(loan_id, 12500.0)
        assert result["balance_after"] == 0.0
        assert db_session.get(OperatingLoan, loan_id).current_balance == 0.0

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_draw_past_limit_writes_nothing(self, mock_log, mock_gs, db_session, ledger, events):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger, credit_limit=50000.0, current_balance=45000.0)
        with pytest.raises(ValidationError, match="available credit"):
            ledger.record_draw(loan_id, 6000.0)

        assert db_session.get(OperatingLoan, loan_id).current_balance == 45000.0
        assert db_session.query(OperatingLoanTransaction).count() == 0
        assert events == []

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_non_positive_amount_rejected(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger)
        with pytest.raises(ValidationError):
            ledger.record_draw(loan_id, 0)
        with pytest.raises(ValidationError):
            ledger.record_payment(loan_id, -10)

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_closed_loan_rejects_draws(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger)
        ledger.close_loan(loan_id)
        with pytest.raises(ValidationError, match="closed"):
            ledger.record_draw(loan_id, 100.0)

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_unknown_loan(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        with pytest.raises(NotFound, match="Operating loan 9 not found"):
            ledger.record_draw(9, 100.0)


class TestSummary:

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_accrued_interest(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger)
        ledger.record_draw(loan_id, 100000.0, transaction_date=date(2025, 1, 10))
        summary = ledger.summary(loan_id, today=date(2025, 3, 14))

        assert summary["accrual_days"] == 73
        assert summary["accrued_interest"] == pytest.approx(1460.0)
        assert summary["available_credit"] == 150000.0
        assert [t["type"] for t in summary["transactions"]] == ["draw"]

    @patch("modules.loans.operating.get_session")
    @patch("modules.loans.operating.log_action")
    def test_closed_loan_accrues_nothing(self, mock_log, mock_gs, db_session, ledger):
        mock_gs.return_value.__enter__ = lambda s: db_session
        mock_gs.return_value.__exit__ = MagicMock(return_value=False)

        loan_id = _open(ledger, current_balance=100000.0)
        ledger.close_loan(loan_id)
        summary = ledger.summary(loan_id, today=date(2026, 2, 1))

        assert summary["is_active"] is False
        assert summary["accrued_interest"] == 0.0
