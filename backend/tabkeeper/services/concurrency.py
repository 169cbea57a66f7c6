# Overview: Commit coordinator; runs each logical operation as one atomic, retried commit.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import CommitConflict, LedgerError
from ..extensions import db

"""
Commit discipline (authoritative)

- Every logical operation (create, cancel, restore, edit, recalculate,
  receive stock) is ONE call to atomically(): reads, invariant checks and
  writes run inside a single session transaction, then commit.
- LedgerError raised by the operation rolls back and propagates unchanged.
  Nothing is partially applied, so callers may retry any failed operation.
- Lost races roll back and are retried with exponential backoff:
    StaleDataError   - version_id counter moved underneath us (accounts,
                       items, movements, receipts)
    OperationalError - database lock / deadlock
    IntegrityError   - concurrent insert of the same unique key
  When attempts are exhausted the caller gets CommitConflict (retryable).
"""

RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id counters catch
    the race at flush time instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries RETRYABLE_ERRORS; anything else is rolled back and re-raised.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ValueError("attempts must be at least 1")


def atomically(op, *, label: str = "ledger operation", attempts: int | None = None,
               backoff_base: float | None = None):
    """
    Run `op` and commit its writes as one unit.

    Returns whatever `op` returns. Raises CommitConflict when every attempt
    lost its race.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("LEDGER_COMMIT_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("LEDGER_COMMIT_BACKOFF", 0.1)

    def _op():
        result = op()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except LedgerError:
        raise
    except RETRYABLE_ERRORS as exc:
        current_app.logger.warning("%s lost its commit race %d times: %s", label, attempts, exc)
        raise CommitConflict(
            f"{label} could not be committed, retry the operation",
            details={"attempts": attempts},
        ) from exc
