# Overview: Flask API routes for read-only reports and the audit ledger.

from datetime import date

from flask import Blueprint, jsonify, request

from ..services import reporting_service
from ..services.ledger_service import list_ledger_events
from ..time_utils import utcnow


reports_bp = Blueprint("reports", __name__, url_prefix="/api")


@reports_bp.get("/reports/daily-sales")
def daily_sales_report():
    """Sales summary for one UTC day (?date=YYYY-MM-DD, default today)."""
    raw = request.args.get("date")
    if raw:
        try:
            day = date.fromisoformat(raw)
        except ValueError:
            return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    else:
        day = utcnow().date()

    return jsonify(reporting_service.daily_sales_summary(day)), 200


@reports_bp.get("/ledger")
def ledger_events():
    limit = request.args.get("limit", 100, type=int)
    if limit < 1 or limit > 1000:
        return jsonify({"error": "limit must be between 1 and 1000"}), 400

    events = list_ledger_events(
        account_id=request.args.get("account_id"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        event_type=request.args.get("event_type"),
        limit=limit,
    )
    return jsonify({"items": [ev.to_dict() for ev in events]}), 200
