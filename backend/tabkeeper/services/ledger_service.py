# Overview: Append-only audit event ledger written alongside every mutation.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
from ..time_utils import utcnow
"""
Audit ledger invariants (authoritative)

- Append-only: no updates, no deletes.
- No domain logic here; callers decide what happened.
- Events are written inside the same DB transaction as the change they
  record, so a rolled-back mutation leaves no event behind.
"""


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id,
    account_id: str | None = None,
    actor_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    ev = LedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        account_id=account_id,
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    account_id: str | None = None,
    entity_type: str | None = None,
    entity_id=None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    """Newest first."""
    q = db.session.query(LedgerEvent)
    if account_id is not None:
        q = q.filter(LedgerEvent.account_id == account_id)
    if entity_type is not None:
        q = q.filter(LedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(LedgerEvent.entity_id == str(entity_id))
    if event_type is not None:
        q = q.filter(LedgerEvent.event_type == event_type)

    return q.order_by(LedgerEvent.occurred_at.desc(), LedgerEvent.id.desc()).limit(limit).all()
