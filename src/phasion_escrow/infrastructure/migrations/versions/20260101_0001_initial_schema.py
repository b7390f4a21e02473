"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-01-01 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
_AMOUNT = sa.Numeric(28, 9)


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("display_name", sa.String(120), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "role IN ('customer', 'designer', 'admin')", name="ck_profile_valid_role"
        ),
    )

    op.create_table(
        "escrow_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("designer_id", sa.Uuid(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("amount", _AMOUNT, nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("actual_amount_received", _AMOUNT, nullable=True),
        sa.Column("vault_balance_before", _AMOUNT, nullable=True),
        sa.Column("vault_balance_after", _AMOUNT, nullable=True),
        sa.Column("deposit_tx_ref", sa.String(128), nullable=True, unique=True),
        sa.Column("release_tx_ref", sa.String(128), nullable=True),
        sa.Column("refund_tx_ref", sa.String(128), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=False),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("shipping_notes", sa.Text(), nullable=True),
        sa.Column("shipment_proofs", _JSON, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'shipped', 'delivered', "
            "'released', 'refunded', 'cancelled')",
            name="ck_order_valid_status",
        ),
        sa.CheckConstraint("currency IN ('NATIVE', 'TOKEN')", name="ck_order_valid_currency"),
        sa.CheckConstraint("amount > 0", name="ck_order_positive_amount"),
        sa.CheckConstraint(
            "NOT (release_tx_ref IS NOT NULL AND refund_tx_ref IS NOT NULL)",
            name="ck_order_single_payout",
        ),
    )
    op.create_index("idx_order_status", "escrow_orders", ["status"])
    op.create_index("idx_order_customer", "escrow_orders", ["customer_id"])
    op.create_index("idx_order_designer", "escrow_orders", ["designer_id"])
    op.create_index("idx_order_created_at", "escrow_orders", ["created_at"])

    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("escrow_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("designer_id", sa.Uuid(), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("decision", sa.String(16), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('open', 'resolved')", name="ck_dispute_valid_status"),
        sa.CheckConstraint(
            "decision IS NULL OR decision IN ('favor_customer', 'favor_designer')",
            name="ck_dispute_valid_decision",
        ),
    )
    op.create_index("idx_dispute_order", "disputes", ["order_id"])
    op.create_index("idx_dispute_status", "disputes", ["status"])
    op.create_index(
        "uq_dispute_one_open_per_order",
        "disputes",
        ["order_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "order_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("escrow_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(16), nullable=True),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("tx_ref", sa.String(128), nullable=True),
        sa.Column("metadata", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_event_order", "order_events", ["order_id"])
    op.create_index("idx_event_type", "order_events", ["event_type"])
    op.create_index("idx_event_created_at", "order_events", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(48), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", _JSON, nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("delivery_state", sa.String(16), nullable=False),
        sa.Column("delivery_attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_notification_user", "notifications", ["user_id"])
    op.create_index("idx_notification_delivery", "notifications", ["delivery_state"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("order_events")
    op.drop_table("disputes")
    op.drop_table("escrow_orders")
    op.drop_table("profiles")
