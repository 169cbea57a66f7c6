from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Movement lifecycle states
ACTIVE = "ACTIVE"
CANCELLED = "CANCELLED"
RESTORED = "RESTORED"
MODIFIED = "MODIFIED"

# Direction relative to the account balance
OUTFLOW = "OUTFLOW"  # sale / purchase on account: balance goes down
INFLOW = "INFLOW"    # payment received: balance goes up

KINDS = (OUTFLOW, INFLOW)


class Movement(db.Model):
    """
    A financial event against exactly one account.

    Movements are never deleted. Cancel/restore/modify only move the state
    label and fill the matching audit columns. The concrete shape is a tagged
    variant (single-table inheritance on `shape`):

    - SimpleMovement: amount only (manual purchase on account, payment).
      Edited in place.
    - LineItemMovement: a multi-item sale whose lines drive item stock.
      Never edited in place; see mutation_service.edit_movement().

    balance_after_cents is DERIVED and only written by
    balance_service.recalculate().
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        db.UniqueConstraint("idempotency_key", name="uq_movements_idempotency_key"),
        # Replay order for recalculation: (occurred_at, id)
        db.Index("ix_movements_account_occurred", "account_id", "occurred_at", "id"),
        {"sqlite_autoincrement": True},
    )

    # Monotonic; doubles as insertion order for timestamp ties
    id = db.Column(db.Integer, primary_key=True)
    shape = db.Column(db.String(16), nullable=False)

    account_id = db.Column(db.String(64), db.ForeignKey("accounts.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    balance_after_cents = db.Column(db.Integer, nullable=False, default=0)

    actor_id = db.Column(db.String(64), nullable=False)
    actor_name = db.Column(db.String(255), nullable=True)

    state = db.Column(db.String(16), nullable=False, default=ACTIVE, index=True)

    # Cancellation audit trail
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    # Restoration audit trail (survives later cancellations)
    restored_at = db.Column(db.DateTime(timezone=True), nullable=True)
    restored_by = db.Column(db.String(64), nullable=True)

    # Modification audit trail
    modify_reason = db.Column(db.String(255), nullable=True)
    modified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    modified_by = db.Column(db.String(64), nullable=True)
    prior_snapshot = db.Column(db.JSON, nullable=True)

    # Cancel-and-recreate links between a sale and its replacement
    replaces_movement_id = db.Column(db.Integer, db.ForeignKey("movements.id"), nullable=True)
    replaced_by_movement_id = db.Column(db.Integer, db.ForeignKey("movements.id"), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account")

    __mapper_args__ = {
        "polymorphic_on": shape,
        "version_id_col": version_id,
    }

    @property
    def is_cancelled(self) -> bool:
        return self.state == CANCELLED

    @property
    def signed_amount_cents(self) -> int:
        """Contribution to the account balance; cancelled movements count zero."""
        if self.state == CANCELLED:
            return 0
        return self.amount_cents if self.kind == INFLOW else -self.amount_cents

    def snapshot(self) -> dict:
        """Editable fields, as stored in prior_snapshot before a modification."""
        return {
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "balance_after_cents": self.balance_after_cents,
            "state": self.state,
        }

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} account_id={self.account_id!r} "
            f"kind={self.kind} amount_cents={self.amount_cents} state={self.state}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shape": self.shape,
            "account_id": self.account_id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
            "balance_after_cents": self.balance_after_cents,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "state": self.state,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "restored_at": to_utc_z(self.restored_at) if self.restored_at else None,
            "restored_by": self.restored_by,
            "modify_reason": self.modify_reason,
            "modified_at": to_utc_z(self.modified_at) if self.modified_at else None,
            "modified_by": self.modified_by,
            "prior_snapshot": self.prior_snapshot,
            "replaces_movement_id": self.replaces_movement_id,
            "replaced_by_movement_id": self.replaced_by_movement_id,
            "lines": [],
            "version_id": self.version_id,
        }


class SimpleMovement(Movement):
    """Amount-only movement: manual purchase on account or a payment."""

    __mapper_args__ = {"polymorphic_identity": "SIMPLE"}


class LineItemMovement(Movement):
    """Multi-item sale. Its lines are written once and never updated."""

    lines = db.relationship(
        "MovementLine",
        order_by="MovementLine.line_number",
        lazy="selectin",
        back_populates="movement",
    )

    __mapper_args__ = {"polymorphic_identity": "LINE_ITEMS"}

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["lines"] = [line.to_dict() for line in self.lines]
        return data


class MovementLine(db.Model):
    """One item/quantity/price entry within a sale."""
    __tablename__ = "movement_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_movement_lines_quantity_positive"),
        db.UniqueConstraint("movement_id", "line_number", name="uq_movement_lines_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("movements.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # No FK: sale history outlives catalog deletions
    item_id = db.Column(db.String(64), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    movement = db.relationship("LineItemMovement", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
