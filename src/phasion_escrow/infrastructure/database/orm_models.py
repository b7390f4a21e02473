"""SQLAlchemy 2.0 ORM models for the Phasion escrow engine.

Five tables:
    1. profiles        — Marketplace participants and their ledger wallets.
    2. escrow_orders   — The escrowed orders between a customer and a designer.
    3. disputes        — Customer complaints against a shipped order.
    4. order_events    — Append-only audit log of every transition and payout.
    5. notifications   — In-app notifications, also the outbound delivery queue.

Design decisions:
    - UUIDs as primary keys (generic Uuid type: native on PostgreSQL, CHAR on SQLite).
    - Decimal for amounts, scale 9 so both asset classes fit exactly.
    - JSON columns (JSONB on PostgreSQL) for shipment proofs and event metadata.
    - CHECK constraints on status columns to reject invalid values at DB level.
    - Partial unique index: at most one open dispute per order.
    - order_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONVariant = JSON().with_variant(JSONB(), "postgresql")
AMOUNT = Numeric(28, 9)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. profiles
# ---------------------------------------------------------------------------
class Profile(Base):
    """A marketplace participant, synced from the external auth/profile store."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="customer",
        comment="customer, designer or admin",
    )
    wallet_address: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Public key of the participant's ledger wallet",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('customer', 'designer', 'admin')",
            name="ck_profile_valid_role",
        ),
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} role={self.role} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# 2. escrow_orders
# ---------------------------------------------------------------------------
class EscrowOrder(Base):
    """An escrowed purchase of a catalog item from a designer."""

    __tablename__ = "escrow_orders"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Parties (immutable after creation) ---
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    designer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Catalog item identifier (catalog is an external collaborator)",
    )

    # --- Economics ---
    amount: Mapped[Decimal] = mapped_column(
        AMOUNT, nullable=False, comment="Quoted amount in human units"
    )
    currency: Mapped[str] = mapped_column(
        String(8), nullable=False, comment="AssetClass value: NATIVE or TOKEN"
    )
    actual_amount_received: Mapped[Decimal | None] = mapped_column(
        AMOUNT,
        nullable=True,
        default=None,
        comment="Measured deposit; authoritative for release/refund math",
    )
    vault_balance_before: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    vault_balance_after: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)

    # --- Ledger references ---
    deposit_tx_ref: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True, default=None
    )
    release_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    refund_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Logistics ---
    delivery_address: Mapped[str] = mapped_column(Text, nullable=False)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipping_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipment_proofs: Mapped[list] = mapped_column(
        JSONVariant,
        nullable=False,
        default=list,
        comment="References (URLs / storage keys) of shipment-proof images",
    )

    # --- Status (guarded by OrderStateMachine + compare-and-swap writes) ---
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Relationships ---
    customer: Mapped[Profile] = relationship("Profile", foreign_keys=[customer_id], lazy="selectin")
    designer: Mapped[Profile] = relationship("Profile", foreign_keys=[designer_id], lazy="selectin")
    disputes: Mapped[list[Dispute]] = relationship(
        "Dispute",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Dispute.created_at.desc()",
    )
    events: Mapped[list[OrderEvent]] = relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.created_at.asc()",
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'shipped', 'delivered', "
            "'released', 'refunded', 'cancelled')",
            name="ck_order_valid_status",
        ),
        CheckConstraint("currency IN ('NATIVE', 'TOKEN')", name="ck_order_valid_currency"),
        CheckConstraint("amount > 0", name="ck_order_positive_amount"),
        CheckConstraint(
            "NOT (release_tx_ref IS NOT NULL AND refund_tx_ref IS NOT NULL)",
            name="ck_order_single_payout",
        ),
        Index("idx_order_status", "status"),
        Index("idx_order_customer", "customer_id"),
        Index("idx_order_designer", "designer_id"),
        Index("idx_order_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowOrder id={self.id} status={self.status} "
            f"amount={self.amount} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 3. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A complaint against one escrow order, resolved by an admin."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_orders.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    designer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Denormalized from the order at creation"
    )

    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")

    decision: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    order: Mapped[EscrowOrder] = relationship("EscrowOrder", back_populates="disputes")

    __table_args__ = (
        CheckConstraint("status IN ('open', 'resolved')", name="ck_dispute_valid_status"),
        CheckConstraint(
            "decision IS NULL OR decision IN ('favor_customer', 'favor_designer')",
            name="ck_dispute_valid_decision",
        ),
        Index("idx_dispute_order", "order_id"),
        Index("idx_dispute_status", "status"),
        Index(
            "uq_dispute_one_open_per_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} order={self.order_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. order_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class OrderEvent(Base):
    """Immutable audit record of every transition and payout submission.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "order_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_orders.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (profile id or SYSTEM)",
    )
    tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONVariant,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    order: Mapped[EscrowOrder] = relationship("EscrowOrder", back_populates="events")

    __table_args__ = (
        Index("idx_event_order", "order_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 5. notifications (in-app + outbound queue)
# ---------------------------------------------------------------------------
class Notification(Base):
    """An in-app notification; undelivered rows form the outbound queue."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[str] = mapped_column(String(48), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONVariant, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    delivery_state: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    delivery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_notification_user", "user_id"),
        Index("idx_notification_delivery", "delivery_state"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} kind={self.kind} user={self.user_id}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(EscrowOrder, "before_update", _set_updated_at)
