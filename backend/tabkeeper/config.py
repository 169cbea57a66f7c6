# backend/tabkeeper/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tabkeeper.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tabkeeper.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Commit coordinator: attempts per logical operation and backoff base (seconds)
    LEDGER_COMMIT_ATTEMPTS = int(os.environ.get("LEDGER_COMMIT_ATTEMPTS", "3"))
    LEDGER_COMMIT_BACKOFF = float(os.environ.get("LEDGER_COMMIT_BACKOFF", "0.1"))

    # Recalculate the owning account as the last step of every mutation
    LEDGER_RECALC_INLINE = _env_bool("LEDGER_RECALC_INLINE", True)

    # Tolerated clock skew for caller-supplied occurred_at values
    LEDGER_FUTURE_SKEW_MINUTES = int(os.environ.get("LEDGER_FUTURE_SKEW_MINUTES", "2"))

    WALK_IN_ACCOUNT_ID = os.environ.get("WALK_IN_ACCOUNT_ID", "walk-in")
    WALK_IN_ACCOUNT_NAME = os.environ.get("WALK_IN_ACCOUNT_NAME", "Walk-in customer")
