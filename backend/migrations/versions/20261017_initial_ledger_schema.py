"""Initial ledger schema: accounts, items, stock receipts, movements, audit events

Revision ID: 20261017_initial_ledger
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("accounts", schema=None) as batch_op:
        batch_op.create_index("ix_accounts_name", ["name"], unique=False)

    op.create_table(
        "items",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("initial_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("selling_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_cost_cents", sa.Integer(), nullable=True),
        sa.Column("margin_bps", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("items", schema=None) as batch_op:
        batch_op.create_index("ix_items_name", ["name"], unique=False)

    op.create_table(
        "stock_receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("distributor_name", sa.String(255), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("total_cost_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_name", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        _timestamp("created_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_receipts", schema=None) as batch_op:
        batch_op.create_index("ix_stock_receipts_state", ["state"], unique=False)
        batch_op.create_index("ix_stock_receipts_occurred_at", ["occurred_at"], unique=False)

    op.create_table(
        "stock_receipt_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("receipt_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["receipt_id"], ["stock_receipts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_receipt_lines", schema=None) as batch_op:
        batch_op.create_index("ix_stock_receipt_lines_receipt_id", ["receipt_id"], unique=False)
        batch_op.create_index("ix_stock_receipt_lines_item_id", ["item_id"], unique=False)

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shape", sa.String(16), nullable=False),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_name", sa.String(255), nullable=True),
        sa.Column("state", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("restored_by", sa.String(64), nullable=True),
        sa.Column("modify_reason", sa.String(255), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_by", sa.String(64), nullable=True),
        sa.Column("prior_snapshot", sa.JSON(), nullable=True),
        sa.Column("replaces_movement_id", sa.Integer(), nullable=True),
        sa.Column("replaced_by_movement_id", sa.Integer(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        _timestamp("created_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["replaces_movement_id"], ["movements.id"]),
        sa.ForeignKeyConstraint(["replaced_by_movement_id"], ["movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_movements_idempotency_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("movements", schema=None) as batch_op:
        batch_op.create_index("ix_movements_account_id", ["account_id"], unique=False)
        batch_op.create_index("ix_movements_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_movements_state", ["state"], unique=False)
        batch_op.create_index("ix_movements_account_occurred", ["account_id", "occurred_at", "id"], unique=False)

    op.create_table(
        "movement_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("movement_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_movement_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["movement_id"], ["movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("movement_id", "line_number", name="uq_movement_lines_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("movement_lines", schema=None) as batch_op:
        batch_op.create_index("ix_movement_lines_movement_id", ["movement_id"], unique=False)
        batch_op.create_index("ix_movement_lines_item_id", ["item_id"], unique=False)

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(64), nullable=True),
        sa.Column("actor_id", sa.String(64), nullable=True),
        _timestamp("occurred_at"),
        _timestamp("created_at"),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_events", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_ledger_events_account_occurred", ["account_id", "occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_events_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    op.drop_table("ledger_events")
    op.drop_table("movement_lines")
    op.drop_table("movements")
    op.drop_table("stock_receipt_lines")
    op.drop_table("stock_receipts")
    op.drop_table("items")
    op.drop_table("accounts")
