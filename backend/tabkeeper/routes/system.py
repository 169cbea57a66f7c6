# backend/tabkeeper/routes/system.py
"""
System health endpoint.

Reports database reachability plus a few cheap counts that are handy when
debugging a deployment.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Account, Item, Movement
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        account_count = db.session.query(Account).count()
        item_count = db.session.query(Item).count()
        movement_count = db.session.query(Movement).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "accounts": account_count,
                "items": item_count,
                "movements": movement_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
        }
    }

    return response, 200 if healthy else 503
