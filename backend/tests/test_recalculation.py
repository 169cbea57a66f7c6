import logging

import pytest

from tabkeeper.errors import NotFound, RecalculationDrift, ValidationError
from tabkeeper.extensions import db
from tabkeeper.models import Account, LedgerEvent, Movement
from tabkeeper.models.movements import INFLOW, OUTFLOW
from tabkeeper.services import balance_service, movement_store, mutation_service

ACTOR = "clerk-1"


def _simple(kind, amount_cents, occurred_at=None, account_id="c1"):
    return mutation_service.create_movement(
        account_id=account_id,
        kind=kind,
        actor_id=ACTOR,
        amount_cents=amount_cents,
        occurred_at=occurred_at,
    ).movement


class TestFold:
    def test_fold_reports_only_stale_rows(self, db_session, customer):
        m1 = _simple(INFLOW, 1000)
        m2 = _simple(OUTFLOW, 300)

        stale, total = balance_service.fold_balances([m1, m2])

        assert stale == []
        assert total == 700


class TestRecalculate:
    def test_second_run_writes_nothing(self, db_session, customer):
        _simple(INFLOW, 1000)
        _simple(OUTFLOW, 300)

        first = balance_service.recalculate("c1")
        second = balance_service.recalculate("c1")

        assert first.balance_cents == 700
        assert second.writes == 0
        assert second.to_dict() == {
            "account_id": "c1",
            "balance_cents": 700,
            "movements_updated": 0,
            "account_updated": False,
            "writes": 0,
        }

    def test_repairs_tampered_balances(self, db_session, customer):
        m1 = _simple(INFLOW, 1000)
        _simple(OUTFLOW, 300)
        db.session.query(Account).filter_by(id="c1").update({"balance_cents": 123})
        db.session.query(Movement).filter_by(id=m1.id).update({"balance_after_cents": -1})
        db.session.commit()

        result = balance_service.recalculate("c1")

        assert result.account_updated is True
        assert result.movements_updated == 1
        assert db.session.get(Account, "c1").balance_cents == 700
        assert db.session.get(Movement, m1.id).balance_after_cents == 1000
        assert balance_service.recalculate("c1").writes == 0

    def test_recalculated_event_only_when_writing(self, db_session, customer):
        _simple(INFLOW, 1000)
        events = db.session.query(LedgerEvent).filter_by(event_type="account.recalculated").count()

        balance_service.recalculate("c1")

        assert db.session.query(LedgerEvent).filter_by(event_type="account.recalculated").count() == events

    def test_backdated_movement_is_replayed_in_business_order(self, db_session, customer):
        later = _simple(INFLOW, 1000, occurred_at="2026-03-02T09:00:00Z")
        earlier = _simple(OUTFLOW, 400, occurred_at="2026-03-01T09:00:00Z")

        db.session.expire_all()
        assert db.session.get(Movement, earlier.id).balance_after_cents == -400
        assert db.session.get(Movement, later.id).balance_after_cents == 600

    def test_timestamp_ties_break_by_id(self, db_session, customer):
        at = "2026-03-01T12:00:00Z"
        first = _simple(INFLOW, 1000, occurred_at=at)
        second = _simple(OUTFLOW, 250, occurred_at=at)

        ordered = movement_store.list_by_account("c1")

        assert [m.id for m in ordered] == [first.id, second.id]
        assert [m.balance_after_cents for m in ordered] == [1000, 750]

    def test_cancelled_movements_contribute_zero(self, db_session, customer):
        _simple(INFLOW, 1000)
        m2 = _simple(OUTFLOW, 300)
        mutation_service.cancel_movement(m2.id, actor_id=ACTOR)

        db.session.expire_all()
        assert db.session.get(Movement, m2.id).balance_after_cents == 1000
        assert balance_service.expected_balance("c1") == 1000
        assert db.session.get(Account, "c1").balance_cents == 1000

    def test_unknown_account(self, db_session):
        with pytest.raises(NotFound):
            balance_service.recalculate("ghost")

    def test_recalculate_all(self, db_session, customer, other_customer):
        _simple(INFLOW, 500)
        _simple(OUTFLOW, 200, account_id="c2")
        db.session.query(Account).update({"balance_cents": 0})
        db.session.commit()

        results = balance_service.recalculate_all()

        assert {r.account_id: r.balance_cents for r in results} == {"c1": 500, "c2": -200}
        assert all(r.account_updated for r in results)


class TestDrift:
    def test_read_back_mismatch_raises(self, db_session, customer, caplog):
        m1 = _simple(INFLOW, 1000)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(RecalculationDrift) as exc_info:
                balance_service._check_read_back("c1", {m1.id: 999}, 1000)

        assert exc_info.value.status_code == 500
        assert exc_info.value.details["movements"][m1.id] == {"expected": 999, "stored": 1000}
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_drift_rolls_back_recalculation(self, db_session, customer, monkeypatch):
        _simple(INFLOW, 1000)
        db.session.query(Account).filter_by(id="c1").update({"balance_cents": 5})
        db.session.commit()

        def _always_drift(account_id, expected, balance_cents):
            raise RecalculationDrift("Recalculated values did not read back equal")

        monkeypatch.setattr(balance_service, "_check_read_back", _always_drift)

        with pytest.raises(RecalculationDrift):
            balance_service.recalculate("c1")

        assert db.session.get(Account, "c1").balance_cents == 5


class TestMovementStore:
    def test_time_range_is_inclusive(self, db_session, customer):
        at = "2026-04-01T08:30:00Z"
        m = _simple(INFLOW, 100, occurred_at=at)
        _simple(INFLOW, 100, occurred_at="2026-04-01T08:30:01Z")

        hits = movement_store.list_by_time_range(m.occurred_at, m.occurred_at)

        assert [h.id for h in hits] == [m.id]

    def test_time_range_excludes_cancelled_on_request(self, db_session, customer):
        m1 = _simple(INFLOW, 100, occurred_at="2026-04-01T08:00:00Z")
        m2 = _simple(INFLOW, 100, occurred_at="2026-04-01T09:00:00Z")
        mutation_service.cancel_movement(m1.id, actor_id=ACTOR)

        hits = movement_store.list_by_time_range(None, None, include_cancelled=False)

        assert [h.id for h in hits] == [m2.id]

    def test_descending_order(self, db_session, customer):
        m1 = _simple(INFLOW, 100, occurred_at="2026-04-01T08:00:00Z")
        m2 = _simple(INFLOW, 100, occurred_at="2026-04-01T09:00:00Z")

        assert [m.id for m in movement_store.list_by_account("c1", order="desc")] == [m2.id, m1.id]

    def test_bad_order(self, db_session, customer):
        with pytest.raises(ValidationError):
            movement_store.list_by_account("c1", order="sideways")
