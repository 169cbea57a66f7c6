# Overview: Stock ledger; derives and applies item quantity changes, records stock receipts.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from sqlalchemy import func

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import Item, Movement, MovementLine, StockReceipt, StockReceiptLine
from ..time_utils import utcnow
from .concurrency import atomically, lock_for_update
from .ledger_service import append_ledger_event
from .movement_store import resolve_occurred_at
"""
Stock invariants (authoritative)

- Item.quantity is derived:
      initial_quantity
      + sum(lines of ACTIVE stock receipts)
      - sum(lines of non-CANCELLED sale movements)
  apply_deltas() is the ONLY code path that changes it, always inside the
  same commit as the movement/receipt write that caused the change.
- Quantity may never go negative. The check runs against the NET delta of
  everything a single operation does: editing a sale merges "give back the
  old lines" with "take the new lines" before checking, so replacing 5 x A
  with 6 x A only needs one more unit of A on hand.
- Items are locked in id order to keep concurrent writers from deadlocking.
"""

STOCK_OUT = "OUT"  # sale: stock leaves
STOCK_IN = "IN"    # purchase, or a cancelled sale giving its units back

MISSING_RAISE = "raise"
MISSING_SKIP = "skip"


def _line_value(line, key: str):
    if isinstance(line, dict):
        return line.get(key)
    return getattr(line, key, None)


def parse_quantity(value, *, field: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be a positive integer")
    if value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def parse_cents(value, *, field: str, allow_zero: bool = True) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount of cents")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'non-negative' if allow_zero else 'positive'}")
    return value


DESCRIPTION_MAX_LENGTH = 255
REASON_MAX_LENGTH = 150


def parse_text(value, *, field: str, max_length: int) -> str | None:
    """Optional free text: stripped, blank becomes None, never longer than max_length."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            details={"field": field, "max_length": max_length, "length": len(value)},
        )
    return value or None


def compute_delta(lines: Iterable, direction: str) -> dict[str, int]:
    """
    Signed quantity change per item implied by `lines`.

    Lines may be dicts or objects exposing item_id/quantity. Several lines for
    the same item are summed.
    """
    if direction == STOCK_OUT:
        sign = -1
    elif direction == STOCK_IN:
        sign = 1
    else:
        raise ValueError(f"unknown stock direction {direction!r}")

    deltas: dict[str, int] = defaultdict(int)
    for line in lines:
        item_id = _line_value(line, "item_id")
        if not item_id:
            raise ValidationError("item_id required on every line")
        deltas[str(item_id)] += sign * parse_quantity(_line_value(line, "quantity"))
    return dict(deltas)


def merge_deltas(*deltas: dict[str, int]) -> dict[str, int]:
    """Net several delta maps into one, dropping items that cancel out."""
    net: dict[str, int] = defaultdict(int)
    for delta in deltas:
        for item_id, qty in delta.items():
            net[item_id] += qty
    return {item_id: qty for item_id, qty in net.items() if qty != 0}


def get_item(item_id: str, *, lock: bool = False) -> Item:
    query = db.session.query(Item).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFound("Item not found", details={"item_id": item_id})
    return item


def get_items(item_ids: Iterable[str]) -> dict[str, Item]:
    """Load several items; NotFound lists every id that does not exist."""
    wanted = sorted({str(i) for i in item_ids})
    if not wanted:
        return {}
    items = db.session.query(Item).filter(Item.id.in_(wanted)).all()
    by_id = {item.id: item for item in items}
    missing = [i for i in wanted if i not in by_id]
    if missing:
        raise NotFound("Item not found", details={"item_ids": missing})
    return by_id


def apply_deltas(deltas: dict[str, int], *, missing: str = MISSING_RAISE) -> dict[str, int]:
    """
    Add `deltas` to item quantities, all or nothing.

    Every resulting quantity is checked before any row is touched;
    InsufficientStock reports all offending items at once. Missing items
    raise NotFound, or with missing="skip" are logged and left out (a sale
    that references an item deleted from the catalog since).

    Returns the new quantity per item actually updated. Runs inside the
    caller's transaction; flushes, never commits.
    """
    deltas = {item_id: qty for item_id, qty in deltas.items() if qty != 0}
    if not deltas:
        return {}

    ids = sorted(deltas)
    items = (
        lock_for_update(db.session.query(Item).filter(Item.id.in_(ids)))
        .order_by(Item.id)
        .populate_existing()
        .all()
    )
    by_id = {item.id: item for item in items}

    absent = [item_id for item_id in ids if item_id not in by_id]
    if absent:
        if missing != MISSING_SKIP:
            raise NotFound("Item not found", details={"item_ids": absent})
        for item_id in absent:
            current_app.logger.warning(
                "Item %s no longer exists; skipping stock change of %+d",
                item_id,
                deltas[item_id],
            )

    insufficient = []
    for item in items:
        resulting = item.quantity + deltas[item.id]
        if resulting < 0:
            insufficient.append({
                "item_id": item.id,
                "item_name": item.name,
                "on_hand": item.quantity,
                "requested": -deltas[item.id],
                "shortfall": -resulting,
            })
    if insufficient:
        raise InsufficientStock(insufficient)

    result = {}
    for item in items:
        item.quantity = item.quantity + deltas[item.id]
        result[item.id] = item.quantity

    db.session.flush()
    return result


def derive_quantity(item_id: str) -> int:
    """Quantity the history says `item_id` should have right now."""
    item = get_item(item_id)

    received = (
        db.session.query(func.coalesce(func.sum(StockReceiptLine.quantity), 0))
        .join(StockReceipt, StockReceiptLine.receipt_id == StockReceipt.id)
        .filter(StockReceiptLine.item_id == item_id, StockReceipt.state == "ACTIVE")
        .scalar()
    )
    sold = (
        db.session.query(func.coalesce(func.sum(MovementLine.quantity), 0))
        .join(Movement, MovementLine.movement_id == Movement.id)
        .filter(MovementLine.item_id == item_id, Movement.state != "CANCELLED")
        .scalar()
    )
    return int(item.initial_quantity) + int(received or 0) - int(sold or 0)


def verify_stock() -> list[dict]:
    """Items whose stored quantity disagrees with their history."""
    mismatches = []
    for item in db.session.query(Item).order_by(Item.id).all():
        derived = derive_quantity(item.id)
        if derived != item.quantity:
            mismatches.append({"item_id": item.id, "stored": item.quantity, "derived": derived})
    return mismatches


# ---------------------------------------------------------------------------
# Catalog touch points (full catalog CRUD lives outside the ledger)
# ---------------------------------------------------------------------------

def register_item(
    *,
    item_id: str,
    name: str,
    quantity: int = 0,
    selling_price_cents: int = 0,
    min_stock: int = 0,
    last_cost_cents: int | None = None,
    margin_bps: int | None = None,
) -> Item:
    """Create a stock-tracked item; `quantity` becomes its initial stock."""
    if not item_id or not str(item_id).strip():
        raise ValidationError("item_id required")
    if not name or not name.strip():
        raise ValidationError("name required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("quantity must be a non-negative integer")
    parse_cents(selling_price_cents, field="selling_price_cents")
    if last_cost_cents is not None:
        parse_cents(last_cost_cents, field="last_cost_cents")
    if margin_bps is not None and (isinstance(margin_bps, bool) or not isinstance(margin_bps, int)):
        raise ValidationError("margin_bps must be an integer")

    def _op():
        if db.session.query(Item).filter_by(id=item_id).first() is not None:
            raise ValidationError("Item already exists", details={"item_id": item_id})
        item = Item(
            id=str(item_id).strip(),
            name=name.strip(),
            quantity=quantity,
            initial_quantity=quantity,
            min_stock=min_stock,
            selling_price_cents=selling_price_cents,
            last_cost_cents=last_cost_cents,
            margin_bps=margin_bps,
        )
        db.session.add(item)
        db.session.flush()
        return item

    return atomically(_op, label="register item")


def suggested_price_cents(last_cost_cents: int | None, margin_bps: int | None) -> int | None:
    """last cost marked up by margin, nearest cent (half-up)."""
    if last_cost_cents is None or margin_bps is None:
        return None
    return (last_cost_cents * (10_000 + margin_bps) + 5_000) // 10_000


def update_pricing(
    item_id: str,
    *,
    selling_price_cents: int | None = None,
    margin_bps: int | None = None,
    use_suggested: bool = False,
) -> Item:
    """
    Change selling price and/or margin.

    use_suggested=True sets the selling price from last cost + margin.
    """
    if selling_price_cents is not None:
        parse_cents(selling_price_cents, field="selling_price_cents")
    if margin_bps is not None and (isinstance(margin_bps, bool) or not isinstance(margin_bps, int)):
        raise ValidationError("margin_bps must be an integer")

    def _op():
        item = get_item(item_id, lock=True)
        if margin_bps is not None:
            item.margin_bps = margin_bps
        if use_suggested:
            suggested = suggested_price_cents(item.last_cost_cents, item.margin_bps)
            if suggested is None:
                raise ValidationError(
                    "Cannot suggest a price without last cost and margin",
                    details={"item_id": item_id},
                )
            item.selling_price_cents = suggested
        elif selling_price_cents is not None:
            item.selling_price_cents = selling_price_cents
        db.session.flush()
        return item

    return atomically(_op, label="update pricing")


def list_low_stock() -> list[Item]:
    return (
        db.session.query(Item)
        .filter(Item.quantity <= Item.min_stock)
        .order_by(Item.quantity.asc(), Item.id.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Stock receipts (purchases from distributors)
# ---------------------------------------------------------------------------

@dataclass
class ReceiptResult:
    receipt: StockReceipt
    outcome: str  # RECEIVED, CANCELLED, ALREADY_CANCELLED

    def to_dict(self) -> dict:
        return {"receipt": self.receipt.to_dict(), "outcome": self.outcome}


def receive_stock(
    lines: list[dict],
    *,
    actor_id: str,
    actor_name: str | None = None,
    distributor_name: str | None = None,
    note: str | None = None,
    occurred_at=None,
) -> ReceiptResult:
    """
    Book a stock purchase: receipt + lines + positive deltas in one commit.

    Each item's last_cost_cents becomes the unit cost it was received at.
    """
    if not lines:
        raise ValidationError("at least one line required")
    if not actor_id:
        raise ValidationError("actor_id required")

    parsed = []
    for raw in lines:
        item_id = _line_value(raw, "item_id")
        if not item_id:
            raise ValidationError("item_id required on every line")
        parsed.append({
            "item_id": str(item_id),
            "quantity": parse_quantity(_line_value(raw, "quantity")),
            "unit_cost_cents": parse_cents(_line_value(raw, "unit_cost_cents"), field="unit_cost_cents"),
        })
    note = parse_text(note, field="note", max_length=DESCRIPTION_MAX_LENGTH)
    distributor_name = parse_text(distributor_name, field="distributor_name", max_length=DESCRIPTION_MAX_LENGTH)

    occurred_dt = resolve_occurred_at(occurred_at)

    def _op():
        apply_deltas(compute_delta(parsed, STOCK_IN))

        receipt = StockReceipt(
            state="ACTIVE",
            distributor_name=distributor_name,
            note=note,
            actor_id=actor_id,
            actor_name=actor_name,
            occurred_at=occurred_dt,
        )
        total = 0
        for number, line in enumerate(parsed, start=1):
            line_total = line["quantity"] * line["unit_cost_cents"]
            total += line_total
            receipt.lines.append(StockReceiptLine(
                line_number=number,
                item_id=line["item_id"],
                quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                line_total_cents=line_total,
            ))
            get_item(line["item_id"]).last_cost_cents = line["unit_cost_cents"]
        receipt.total_cost_cents = total
        db.session.add(receipt)
        db.session.flush()

        append_ledger_event(
            event_type="stock.received",
            entity_type="stock_receipt",
            entity_id=receipt.id,
            actor_id=actor_id,
            occurred_at=receipt.occurred_at,
            note=note,
            payload={"lines": [dict(line) for line in parsed]},
        )
        return ReceiptResult(receipt=receipt, outcome="RECEIVED")

    return atomically(_op, label="receive stock")


def cancel_receipt(receipt_id: int, *, actor_id: str, reason: str | None = None) -> ReceiptResult:
    """
    Take a receipt's units back out of stock.

    Fails with InsufficientStock when some of those units were sold since.
    Cancelling twice is a no-op reported as ALREADY_CANCELLED.
    """
    if not actor_id:
        raise ValidationError("actor_id required")
    reason = parse_text(reason, field="reason", max_length=REASON_MAX_LENGTH)

    def _op():
        receipt = lock_for_update(db.session.query(StockReceipt).filter_by(id=receipt_id)).first()
        if receipt is None:
            raise NotFound("Stock receipt not found", details={"receipt_id": receipt_id})
        if receipt.state == "CANCELLED":
            return ReceiptResult(receipt=receipt, outcome="ALREADY_CANCELLED")

        apply_deltas(compute_delta(receipt.lines, STOCK_OUT), missing=MISSING_SKIP)

        receipt.state = "CANCELLED"
        receipt.cancelled_at = utcnow()
        receipt.cancelled_by = actor_id
        receipt.cancel_reason = reason
        db.session.flush()

        append_ledger_event(
            event_type="stock.receipt_cancelled",
            entity_type="stock_receipt",
            entity_id=receipt.id,
            actor_id=actor_id,
            occurred_at=receipt.cancelled_at,
            note=reason,
        )
        return ReceiptResult(receipt=receipt, outcome="CANCELLED")

    return atomically(_op, label="cancel stock receipt")

