"""Domain enumerations for the Phasion escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class OrderStatus(enum.StrEnum):
    """Lifecycle states of an escrow order.

    State transitions are enforced by the OrderStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RELEASED = "released"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class AssetClass(enum.StrEnum):
    """The two asset classes an order can be settled in.

    NATIVE is the ledger's own coin (9 decimal places); TOKEN is a
    fungible token held in associated token accounts (6 decimal places).
    """

    NATIVE = "NATIVE"
    TOKEN = "TOKEN"

    @property
    def decimals(self) -> int:
        return ASSET_DECIMALS[self]


ASSET_DECIMALS: dict[AssetClass, int] = {
    AssetClass.NATIVE: 9,
    AssetClass.TOKEN: 6,
}


class DisputeStatus(enum.StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"


class DisputeDecision(enum.StrEnum):
    """Admin verdict on a dispute; decides whether refund or release fires."""

    FAVOR_CUSTOMER = "favor_customer"
    FAVOR_DESIGNER = "favor_designer"


class DisputeReason(enum.StrEnum):
    DELIVERY_ISSUE = "delivery_issue"
    WRONG_ITEM = "wrong_item"
    DAMAGED_ITEM = "damaged_item"
    QUALITY_ISSUE = "quality_issue"
    SIZE_ISSUE = "size_issue"
    DESIGNER_UNRESPONSIVE = "designer_unresponsive"
    OTHER = "other"


class ProfileRole(enum.StrEnum):
    CUSTOMER = "customer"
    DESIGNER = "designer"
    ADMIN = "admin"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the order_events table.

    Every status transition produces exactly one event. Ledger payout
    submissions are also recorded so an unconfirmed transfer can be
    recovered instead of re-sent.
    """

    # Lifecycle events
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"

    # Settlement events
    PAYOUT_SUBMITTED = "PAYOUT_SUBMITTED"
    PAYOUT_FAILED = "PAYOUT_FAILED"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    FUNDS_REFUNDED = "FUNDS_REFUNDED"

    # Dispute events
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED_CUSTOMER = "DISPUTE_RESOLVED_CUSTOMER"
    DISPUTE_RESOLVED_DESIGNER = "DISPUTE_RESOLVED_DESIGNER"


class PayoutKind(enum.StrEnum):
    RELEASE = "release"
    REFUND = "refund"


class NotificationKind(enum.StrEnum):
    DESIGNER_NEW_ORDER = "designer_new_order"
    DESIGNER_PAYMENT_CONFIRMED = "designer_payment_confirmed"
    CUSTOMER_ORDER_STATUS_CHANGED = "customer_order_status_changed"
    ADMIN_DELIVERY_REVIEW_NEEDED = "admin_delivery_review_needed"
    ADMIN_DISPUTE_OPENED = "admin_dispute_opened"
    DESIGNER_PAYMENT_RELEASED = "designer_payment_released"
    CUSTOMER_REFUND_ISSUED = "customer_refund_issued"


class DeliveryState(enum.StrEnum):
    """Outbound delivery state of a notification row."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class TxStatus(enum.StrEnum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"


class LedgerErrorKind(enum.StrEnum):
    """Structured failure kinds reported by the ledger adapter."""

    USER_REJECTED = "user_rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK = "network"
    SIMULATION_FAILED = "simulation_failed"
    TIMEOUT = "timeout"
