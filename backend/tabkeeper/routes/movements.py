# Overview: Flask API routes for movements; parses input and returns JSON responses.

# backend/tabkeeper/routes/movements.py
"""Movement API routes: create, cancel, restore, edit and time-range listing"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import movement_store, mutation_service
from ..decorators import require_actor
from ..time_utils import parse_iso_datetime

movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")

# Cancel/restore no-ops answer 200 with the outcome; real changes 200/201.
_CREATED_STATUS = {"CREATED": 201, "DUPLICATE": 200}


@movements_bp.post("")
@require_actor
def create_movement_route():
    """
    Record a sale, purchase on account or payment.

    Body: account_id, kind (OUTFLOW|INFLOW), amount_cents, description,
    lines[{item_id, quantity, unit_price_cents?}], occurred_at, account_name,
    idempotency_key. The Idempotency-Key header is accepted as well.
    """
    try:
        data = request.get_json(silent=True) or {}
        account_id = data.get("account_id")
        kind = data.get("kind")

        if not account_id or not kind:
            return jsonify({"error": "account_id and kind required"}), 400

        result = mutation_service.create_movement(
            account_id=account_id,
            kind=kind,
            actor_id=g.actor_id,
            actor_name=g.actor_name,
            amount_cents=data.get("amount_cents"),
            description=data.get("description"),
            lines=data.get("lines"),
            occurred_at=data.get("occurred_at"),
            account_name=data.get("account_name"),
            idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
        )
        return jsonify(result.to_dict()), _CREATED_STATUS.get(result.outcome, 200)

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("")
def list_movements_route():
    """List movements in an inclusive time range, oldest first."""
    try:
        start_dt = parse_iso_datetime(request.args.get("start"))
        end_dt = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    include_cancelled = request.args.get("include_cancelled", "true").lower() != "false"
    try:
        movements = movement_store.list_by_time_range(
            start_dt,
            end_dt,
            account_id=request.args.get("account_id"),
            include_cancelled=include_cancelled,
        )
        return jsonify({"items": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@movements_bp.get("/<int:movement_id>")
def get_movement_route(movement_id: int):
    try:
        movement = movement_store.get(movement_id)
        return jsonify({"movement": movement.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@movements_bp.post("/<int:movement_id>/cancel")
@require_actor
def cancel_movement_route(movement_id: int):
    """Cancel a movement. Already-cancelled movements answer 200 with ALREADY_CANCELLED."""
    try:
        data = request.get_json(silent=True) or {}
        result = mutation_service.cancel_movement(
            movement_id,
            actor_id=g.actor_id,
            reason=data.get("reason"),
        )
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/restore")
@require_actor
def restore_movement_route(movement_id: int):
    """Restore a cancelled movement. Others answer 200 with NOT_CANCELLED."""
    try:
        result = mutation_service.restore_movement(movement_id, actor_id=g.actor_id)
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/edit")
@require_actor
def edit_movement_route(movement_id: int):
    """
    Edit a movement.

    Simple movements take kind/amount_cents/description; sales take lines and
    are replaced by a new movement (see "replacement" in the response).
    """
    try:
        data = request.get_json(silent=True) or {}
        result = mutation_service.edit_movement(
            movement_id,
            actor_id=g.actor_id,
            actor_name=g.actor_name,
            reason=data.get("reason"),
            kind=data.get("kind"),
            amount_cents=data.get("amount_cents"),
            description=data.get("description"),
            lines=data.get("lines"),
        )
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit movement")
        return jsonify({"error": "Internal server error"}), 500
