# Overview: Balance recalculation engine; replays an account's movements into balances.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app

from ..errors import RecalculationDrift
from ..extensions import db
from ..models import Account, Movement
from .account_service import get_account
from .concurrency import atomically
from .ledger_service import append_ledger_event
"""
Balance invariants (authoritative)

- recalculate() is the ONLY writer of Account.balance_cents and
  Movement.balance_after_cents. Nobody computes balance deltas at call sites.
- The fold replays every movement of the account in (occurred_at, id) order:
      ACTIVE / RESTORED / MODIFIED   INFLOW  -> +amount
                                     OUTFLOW -> -amount
      CANCELLED                              -> 0
  balance_after of a movement is the running total right after it.
- Only values that differ are written, and all of them in one commit, so a
  second call with no intervening mutation writes nothing.
- It is a pure function of committed state: when two recalculations race the
  later one wins and is still correct. Re-running after an unknown commit
  outcome is always safe.
"""


@dataclass
class RecalcResult:
    account_id: str
    balance_cents: int
    movements_updated: int
    account_updated: bool

    @property
    def writes(self) -> int:
        return self.movements_updated + (1 if self.account_updated else 0)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "balance_cents": self.balance_cents,
            "movements_updated": self.movements_updated,
            "account_updated": self.account_updated,
            "writes": self.writes,
        }


def fold_balances(movements: Iterable[Movement]) -> tuple[list[tuple[Movement, int]], int]:
    """
    Replay `movements` (already in replay order).

    Returns the (movement, correct balance_after) pairs whose stored value is
    wrong, and the final balance.
    """
    running = 0
    stale: list[tuple[Movement, int]] = []
    for movement in movements:
        running += movement.signed_amount_cents
        if movement.balance_after_cents != running:
            stale.append((movement, running))
    return stale, running


def _replay_query(account_id: str):
    return (
        db.session.query(Movement)
        .filter(Movement.account_id == account_id)
        .order_by(Movement.occurred_at.asc(), Movement.id.asc())
    )


def _check_read_back(account_id: str, expected: dict[int, int], balance_cents: int) -> None:
    """Flushed values must read back exactly as computed."""
    stored = dict(
        db.session.query(Movement.id, Movement.balance_after_cents)
        .filter(Movement.id.in_(list(expected)))
        .all()
    ) if expected else {}
    drifted = {
        movement_id: {"expected": value, "stored": stored.get(movement_id)}
        for movement_id, value in expected.items()
        if stored.get(movement_id) != value
    }
    stored_balance = db.session.query(Account.balance_cents).filter(Account.id == account_id).scalar()

    if drifted or stored_balance != balance_cents:
        current_app.logger.critical(
            "Recalculation drift on account %s: balance expected %s stored %s, movements %s",
            account_id,
            balance_cents,
            stored_balance,
            drifted,
        )
        raise RecalculationDrift(
            "Recalculated values did not read back equal",
            details={
                "account_id": account_id,
                "balance_expected": balance_cents,
                "balance_stored": stored_balance,
                "movements": drifted,
            },
        )


def recalculate(account_id: str) -> RecalcResult:
    """
    Rewrite the account balance and every movement's balance_after from
    history, as one atomic batch. Idempotent.
    """
    def _op():
        account = get_account(account_id, lock=True)
        movements = _replay_query(account_id).populate_existing().all()

        stale, total = fold_balances(movements)
        for movement, value in stale:
            movement.balance_after_cents = value

        account_updated = account.balance_cents != total
        if account_updated:
            account.balance_cents = total

        if stale or account_updated:
            db.session.flush()
            _check_read_back(account_id, {m.id: value for m, value in stale}, total)
            append_ledger_event(
                event_type="account.recalculated",
                entity_type="account",
                entity_id=account.id,
                account_id=account.id,
                payload={"balance_cents": total, "movements_updated": len(stale)},
            )

        return RecalcResult(
            account_id=account.id,
            balance_cents=total,
            movements_updated=len(stale),
            account_updated=account_updated,
        )

    return atomically(_op, label=f"recalculate account {account_id}")


def recalculate_all() -> list[RecalcResult]:
    account_ids = [row[0] for row in db.session.query(Account.id).order_by(Account.id).all()]
    return [recalculate(account_id) for account_id in account_ids]


def expected_balance(account_id: str) -> int:
    """Signed sum of non-cancelled movements, straight from history."""
    get_account(account_id)
    return sum(m.signed_amount_cents for m in _replay_query(account_id).all())
