# Overview: Flask API routes for stock-tracked items and stock receipts.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import stock_service
from ..decorators import require_actor

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _item_payload(item) -> dict:
    data = item.to_dict()
    data["suggested_price_cents"] = stock_service.suggested_price_cents(item.last_cost_cents, item.margin_bps)
    return data


@items_bp.post("")
@require_actor
def register_item_route():
    """Register an item with its initial stock (quantity)."""
    try:
        data = request.get_json(silent=True) or {}
        item_id = data.get("id")
        name = data.get("name")

        if not item_id or not name:
            return jsonify({"error": "id and name required"}), 400

        item = stock_service.register_item(
            item_id=item_id,
            name=name,
            quantity=data.get("quantity", 0),
            selling_price_cents=data.get("selling_price_cents", 0),
            min_stock=data.get("min_stock", 0),
            last_cost_cents=data.get("last_cost_cents"),
            margin_bps=data.get("margin_bps"),
        )
        return jsonify({"item": _item_payload(item)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/low-stock")
def low_stock_route():
    items = stock_service.list_low_stock()
    return jsonify({"items": [_item_payload(item) for item in items]}), 200


@items_bp.get("/<item_id>")
def get_item_route(item_id: str):
    try:
        item = stock_service.get_item(item_id)
        return jsonify({"item": _item_payload(item)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@items_bp.patch("/<item_id>/pricing")
@require_actor
def update_pricing_route(item_id: str):
    """Body: selling_price_cents, margin_bps, use_suggested."""
    try:
        data = request.get_json(silent=True) or {}
        item = stock_service.update_pricing(
            item_id,
            selling_price_cents=data.get("selling_price_cents"),
            margin_bps=data.get("margin_bps"),
            use_suggested=bool(data.get("use_suggested", False)),
        )
        return jsonify({"item": _item_payload(item)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update pricing")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/receipts")
@require_actor
def receive_stock_route():
    """Book a stock purchase. Body: lines[{item_id, quantity, unit_cost_cents}], distributor_name, note."""
    try:
        data = request.get_json(silent=True) or {}
        result = stock_service.receive_stock(
            data.get("lines") or [],
            actor_id=g.actor_id,
            actor_name=g.actor_name,
            distributor_name=data.get("distributor_name"),
            note=data.get("note"),
            occurred_at=data.get("occurred_at"),
        )
        return jsonify(result.to_dict()), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/receipts/<int:receipt_id>/cancel")
@require_actor
def cancel_receipt_route(receipt_id: int):
    try:
        data = request.get_json(silent=True) or {}
        result = stock_service.cancel_receipt(receipt_id, actor_id=g.actor_id, reason=data.get("reason"))
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel stock receipt")
        return jsonify({"error": "Internal server error"}), 500
