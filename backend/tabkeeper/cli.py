# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/tabkeeper/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create missing tables and the walk-in account. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger maintenance:
# - python -m flask ledger recalc --account walk-in
#   Replay one account's history and rewrite its derived balances.
# - python -m flask ledger recalc-all
#   Same, for every account.
# - python -m flask ledger verify-stock
#   Compare every item's stored quantity with the quantity its history implies.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import account_service, balance_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables (if missing) and the walk-in account."""
    click.echo("START Initializing tabkeeper...")

    db.create_all()
    click.echo("PASS Schema ready")

    account = account_service.ensure_walk_in_account()
    click.echo(f"PASS Walk-in account: {account.name} (ID: {account.id})")

    click.echo("DONE tabkeeper initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Balance recalculation and stock verification."""


def _echo_recalc(result):
    if result.writes:
        click.echo(
            f"FIXED {result.account_id}: balance {result.balance_cents} "
            f"({result.movements_updated} movements, account {'updated' if result.account_updated else 'unchanged'})"
        )
    else:
        click.echo(f"PASS  {result.account_id}: balance {result.balance_cents}")


@ledger_group.command('recalc')
@click.option('--account', 'account_id', required=True, help='Account id')
@with_appcontext
def recalc_account(account_id):
    """Recalculate one account."""
    try:
        result = balance_service.recalculate(account_id)
    except LedgerError as e:
        raise click.ClickException(f"{e.message} {e.details or ''}".strip())
    _echo_recalc(result)


@ledger_group.command('recalc-all')
@with_appcontext
def recalc_all():
    """Recalculate every account; reports which ones needed writes."""
    try:
        results = balance_service.recalculate_all()
    except LedgerError as e:
        raise click.ClickException(f"{e.message} {e.details or ''}".strip())

    for result in results:
        _echo_recalc(result)
    fixed = sum(1 for r in results if r.writes)
    click.echo(f"DONE {len(results)} accounts, {fixed} corrected")


@ledger_group.command('verify-stock')
@with_appcontext
def verify_stock():
    """Exit code 1 when any stored quantity disagrees with history."""
    mismatches = stock_service.verify_stock()
    if not mismatches:
        click.echo("PASS All item quantities match their history")
        return

    for row in mismatches:
        click.echo(f"FAIL {row['item_id']}: stored {row['stored']}, derived {row['derived']}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
