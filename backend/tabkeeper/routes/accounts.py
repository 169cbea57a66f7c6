# Overview: Flask API routes for accounts; balances, history and recalculation.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import LedgerError
from ..services import account_service, balance_service, movement_store
from ..decorators import require_actor

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.post("")
@require_actor
def open_account_route():
    try:
        data = request.get_json(silent=True) or {}
        account_id = data.get("id")
        name = data.get("name")

        if not account_id or not name:
            return jsonify({"error": "id and name required"}), 400

        account = account_service.open_account(account_id, name)
        return jsonify({"account": account.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<account_id>")
def get_account_route(account_id: str):
    try:
        account = account_service.get_account(account_id)
        return jsonify({"account": account.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@accounts_bp.get("/<account_id>/movements")
def list_account_movements_route(account_id: str):
    """Account history in replay order (?order=asc|desc, default desc)."""
    order = request.args.get("order", "desc")
    try:
        account = account_service.get_account(account_id)
        movements = movement_store.list_by_account(account.id, order=order)
        return jsonify({
            "account": account.to_dict(),
            "items": [m.to_dict() for m in movements],
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@accounts_bp.post("/<account_id>/recalculate")
def recalculate_account_route(account_id: str):
    """
    Replay the account history and rewrite derived balances.

    Safe to call any number of times; a retry after a timeout is always correct.
    """
    try:
        result = balance_service.recalculate(account_id)
        return jsonify({"recalculation": result.to_dict()}), 200

    except LedgerError as e:
        if e.status_code >= 500:
            current_app.logger.error("Recalculation of account %s failed: %s", account_id, e)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recalculate account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.patch("/<account_id>/status")
@require_actor
def set_account_status_route(account_id: str):
    """Body: {"is_enabled": bool}. A disabled account takes no new movements."""
    try:
        data = request.get_json(silent=True) or {}
        if "is_enabled" not in data:
            return jsonify({"error": "is_enabled required"}), 400

        account, changed = account_service.set_account_enabled(account_id, data["is_enabled"], actor_id=g.actor_id)
        return jsonify({"account": account.to_dict(), "changed": changed}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update account status")
        return jsonify({"error": "Internal server error"}), 500
