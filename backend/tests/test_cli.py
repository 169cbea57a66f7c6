from tabkeeper.extensions import db
from tabkeeper.models import Account, Item
from tabkeeper.models.movements import INFLOW
from tabkeeper.services import account_service, mutation_service


def _pay(amount_cents, account_id="c1"):
    mutation_service.create_movement(account_id=account_id, kind=INFLOW, actor_id="clerk-1", amount_cents=amount_cents)


class TestSystemCommands:
    def test_init_creates_walk_in_account(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])

        assert result.exit_code == 0, result.output
        assert "Walk-in customer" in result.output
        assert account_service.get_account("walk-in").is_walk_in is True

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init"])

        result = runner.invoke(args=["system", "init"])

        assert result.exit_code == 0
        assert db.session.query(Account).count() == 1


class TestLedgerCommands:
    def test_recalc_repairs_account(self, app, db_session, customer):
        _pay(800)
        db.session.query(Account).filter_by(id="c1").update({"balance_cents": 1})
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "recalc", "--account", "c1"])

        assert result.exit_code == 0, result.output
        assert "FIXED c1: balance 800" in result.output
        assert db.session.get(Account, "c1").balance_cents == 800

    def test_recalc_unknown_account(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "recalc", "--account", "ghost"])

        assert result.exit_code != 0
        assert "Account not found" in result.output

    def test_recalc_all(self, app, db_session, customer, other_customer):
        _pay(100)
        _pay(200, account_id="c2")

        result = app.test_cli_runner().invoke(args=["ledger", "recalc-all"])

        assert result.exit_code == 0
        assert "DONE 2 accounts, 0 corrected" in result.output

    def test_verify_stock(self, app, db_session, items):
        runner = app.test_cli_runner()

        ok = runner.invoke(args=["ledger", "verify-stock"])
        assert ok.exit_code == 0
        assert "PASS" in ok.output

        db.session.query(Item).filter_by(id="B").update({"quantity": 0})
        db.session.commit()

        bad = runner.invoke(args=["ledger", "verify-stock"])
        assert bad.exit_code == 1
        assert "FAIL B: stored 0, derived 3" in bad.output
