from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Account(db.Model):
    """
    A customer tab, or the generic walk-in counterparty.

    balance_cents is DERIVED: only balance_service.recalculate() writes it.
    It always equals the signed sum of the account's non-cancelled movements
    as of the last recalculation.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_name", "name"),
    )

    # Caller-chosen identifier (customer code, auth uid, "walk-in", ...)
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_walk_in = db.Column(db.Boolean, nullable=False, default=False)

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
        return f"<Account id={self.id!r} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance_cents": self.balance_cents,
            "is_enabled": self.is_enabled,
            "is_walk_in": self.is_walk_in,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
