# Overview: Movement store; appends movement records and serves them back in replay order.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Movement
from ..time_utils import coerce_datetime, utcnow
from .account_service import resolve_account
from .concurrency import lock_for_update

"""
Movement store invariants (authoritative)

- append() is the only way a movement row comes into existence; it always
  starts ACTIVE. Nothing here updates or deletes a movement: state changes
  belong to mutation_service, derived balances to balance_service.
- Replay order is (occurred_at, id); id is monotonic and breaks timestamp ties
  in insertion order.
- Time ranges are inclusive on both ends.
"""


def append(movement: Movement, *, account_name: str | None = None, require_enabled: bool = False) -> int:
    """
    Add a new movement in state ACTIVE and return its id.

    The account is resolved first (see account_service.resolve_account);
    with require_enabled a disabled account raises AccountDisabled.
    Runs inside the caller's transaction; flushes, never commits.
    """
    resolve_account(movement.account_id, account_name=account_name, require_enabled=require_enabled)
    movement.state = "ACTIVE"
    db.session.add(movement)
    db.session.flush()
    return movement.id


def get(movement_id: int, *, lock: bool = False) -> Movement:
    query = db.session.query(Movement).filter_by(id=movement_id)
    if lock:
        query = lock_for_update(query)
    movement = query.first()
    if movement is None:
        raise NotFound("Movement not found", details={"movement_id": movement_id})
    return movement


def find_by_idempotency_key(key: str) -> Movement | None:
    return db.session.query(Movement).filter_by(idempotency_key=key).first()


def list_by_account(account_id: str, order: str = "asc") -> list[Movement]:
    if order not in ("asc", "desc"):
        raise ValidationError("order must be 'asc' or 'desc'")

    q = db.session.query(Movement).filter(Movement.account_id == account_id)
    if order == "asc":
        q = q.order_by(Movement.occurred_at.asc(), Movement.id.asc())
    else:
        q = q.order_by(Movement.occurred_at.desc(), Movement.id.desc())
    return q.all()


def list_by_time_range(
    start: datetime | None,
    end: datetime | None,
    *,
    account_id: str | None = None,
    include_cancelled: bool = True,
) -> list[Movement]:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end")

    q = db.session.query(Movement)
    if start is not None:
        q = q.filter(Movement.occurred_at >= start)
    if end is not None:
        q = q.filter(Movement.occurred_at <= end)
    if account_id is not None:
        q = q.filter(Movement.account_id == account_id)
    if not include_cancelled:
        q = q.filter(Movement.state != "CANCELLED")

    return q.order_by(Movement.occurred_at.asc(), Movement.id.asc()).all()


def resolve_occurred_at(value) -> datetime:
    """Caller-supplied business time, defaulting to now; the future is refused."""
    try:
        occurred_dt = coerce_datetime(value)
    except ValueError as exc:
        raise ValidationError("occurred_at must be an ISO-8601 datetime") from exc

    now = utcnow()
    if occurred_dt is None:
        return now

    skew = timedelta(minutes=current_app.config.get("LEDGER_FUTURE_SKEW_MINUTES", 2))
    if occurred_dt > now + skew:
        raise ValidationError("occurred_at cannot be in the future")
    return occurred_dt
