# Overview: Account lookup, enable/disable, and the implicit walk-in account.

from __future__ import annotations

from flask import current_app

from ..errors import AccountDisabled, NotFound, ValidationError
from ..extensions import db
from ..models import Account
from .concurrency import atomically, lock_for_update
from .ledger_service import append_ledger_event


def walk_in_account_id() -> str:
    return current_app.config["WALK_IN_ACCOUNT_ID"]


def get_account(account_id: str, *, lock: bool = False) -> Account:
    query = db.session.query(Account).filter_by(id=account_id)
    if lock:
        query = lock_for_update(query)
    account = query.first()
    if account is None:
        raise NotFound("Account not found", details={"account_id": account_id})
    return account


def resolve_account(
    account_id: str,
    *,
    account_name: str | None = None,
    require_enabled: bool = False,
) -> Account:
    """
    Return the account a new movement will belong to.

    A missing account is created with a zero balance when it is the walk-in
    account or when the caller names it (first movement opens the tab).
    Otherwise NotFound. With require_enabled, a disabled account raises
    AccountDisabled. Runs inside the caller's transaction; no commit.
    """
    if not account_id:
        raise ValidationError("account_id required")

    account = db.session.query(Account).filter_by(id=account_id).first()
    if account is not None:
        if require_enabled and not account.is_enabled:
            raise AccountDisabled("Account is disabled", details={"account_id": account_id})
        return account

    if account_id == walk_in_account_id():
        account = Account(
            id=account_id,
            name=current_app.config["WALK_IN_ACCOUNT_NAME"],
            balance_cents=0,
            is_walk_in=True,
        )
    elif account_name:
        account = Account(id=account_id, name=account_name.strip(), balance_cents=0)
    else:
        raise NotFound("Account not found", details={"account_id": account_id})

    db.session.add(account)
    db.session.flush()
    return account


def open_account(account_id: str, name: str) -> Account:
    """Create an empty account, or return the existing one unchanged."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name required")

    def _op():
        return resolve_account(account_id, account_name=name)

    return atomically(_op, label="open account")


def set_account_enabled(account_id: str, enabled: bool, *, actor_id: str) -> tuple[Account, bool]:
    """
    Enable or disable an account for new movements.

    History stays editable either way: cancel, restore, edit and recalculate
    ignore the flag. The walk-in account cannot be disabled.
    Returns (account, changed).
    """
    if not isinstance(enabled, bool):
        raise ValidationError("is_enabled must be a boolean")
    if not actor_id:
        raise ValidationError("actor_id required")

    def _op():
        account = get_account(account_id, lock=True)
        if account.is_walk_in and not enabled:
            raise ValidationError("The walk-in account cannot be disabled", details={"account_id": account_id})
        if account.is_enabled == enabled:
            return account, False

        account.is_enabled = enabled
        db.session.flush()

        append_ledger_event(
            event_type="account.enabled" if enabled else "account.disabled",
            entity_type="account",
            entity_id=account.id,
            account_id=account.id,
            actor_id=actor_id,
        )
        return account, True

    return atomically(_op, label="enable account" if enabled else "disable account")


def ensure_walk_in_account() -> Account:
    return atomically(lambda: resolve_account(walk_in_account_id()), label="ensure walk-in account")
