from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Item(db.Model):
    """
    Stock-tracked product, keyed by its external code (usually the barcode).

    quantity is DERIVED and only moves through stock_service.apply_deltas():
        quantity = initial_quantity
                   + sum(non-cancelled receipt lines)
                   - sum(lines of non-cancelled sale movements)
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.Index("ix_items_name", "name"),
    )

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    # Stock on hand when the item was registered; baseline for derive_quantity()
    initial_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    last_cost_cents = db.Column(db.Integer, nullable=True)
    # Margin over last cost, in basis points (2500 = 25%)
    margin_bps = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id!r} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "initial_quantity": self.initial_quantity,
            "min_stock": self.min_stock,
            "selling_price_cents": self.selling_price_cents,
            "last_cost_cents": self.last_cost_cents,
            "margin_percent": (self.margin_bps / 100) if self.margin_bps is not None else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class StockReceipt(db.Model):
    """
    Stock purchased from a distributor.

    Receipts increase item quantity. They are never deleted; cancelling one
    takes the units back out of stock.
    """
    __tablename__ = "stock_receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    state = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, CANCELLED

    distributor_name = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    actor_id = db.Column(db.String(64), nullable=False)
    actor_name = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "StockReceiptLine",
        order_by="StockReceiptLine.line_number",
        lazy="selectin",
        back_populates="receipt",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "state": self.state,
            "distributor_name": self.distributor_name,
            "note": self.note,
            "total_cost_cents": self.total_cost_cents,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "occurred_at": to_utc_z(self.occurred_at),
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "lines": [line.to_dict() for line in self.lines],
        }


class StockReceiptLine(db.Model):
    __tablename__ = "stock_receipt_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("stock_receipts.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # No FK: receipts outlive catalog deletions
    item_id = db.Column(db.String(64), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    receipt = db.relationship("StockReceipt", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }
