"""Pydantic schemas for the order API.

These schemas define the request/response shapes for the REST API. They
are separate from the ORM models to keep a clean boundary between the API
and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from phasion_escrow.domain.enums import AssetClass, OrderStatus

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateOrderRequest(BaseModel):
    """Request body for creating a new escrow order."""

    customer_id: uuid.UUID = Field(..., description="Profile id of the paying customer")
    designer_id: uuid.UUID = Field(..., description="Profile id of the designer being paid")
    item_id: str = Field(..., min_length=1, max_length=64, description="Catalog item id")
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=9,
        description="Quoted price in human units of the chosen currency",
        examples=["10.00"],
    )
    currency: AssetClass = Field(..., description="NATIVE (9 decimals) or TOKEN (6 decimals)")
    delivery_address: str = Field(..., min_length=5, max_length=2000)
    special_instructions: str | None = Field(default=None, max_length=2000)
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional idempotency key to prevent duplicate order creation",
    )


class ConfirmPaymentRequest(BaseModel):
    """Request body for confirming a deposit the customer's wallet submitted."""

    tx_ref: str = Field(
        ...,
        min_length=16,
        max_length=128,
        description="Ledger transaction reference (signature) of the deposit",
    )
    actor_id: uuid.UUID | None = None


class CancelPaymentRequest(BaseModel):
    reason: str = Field(default="Transaction rejected by signer", max_length=500)
    actor_id: uuid.UUID | None = None


class UpdateOrderStatusRequest(BaseModel):
    """Request body for the generic status update used by the UI.

    `extra` carries the fields the target status needs, e.g. for shipped:
    {"tracking_number": "...", "shipment_proofs": ["https://..."], "shipping_notes": "..."}
    """

    status: OrderStatus
    extra: dict = Field(default_factory=dict)
    actor_id: uuid.UUID | None = None


class ReleaseFundsRequest(BaseModel):
    actor_id: uuid.UUID | None = None


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)
    actor_id: uuid.UUID | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    """Response schema for an escrow order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    designer_id: uuid.UUID
    item_id: str
    amount: Decimal
    currency: str
    status: str
    actual_amount_received: Decimal | None
    vault_balance_before: Decimal | None
    vault_balance_after: Decimal | None
    deposit_tx_ref: str | None
    release_tx_ref: str | None
    refund_tx_ref: str | None
    refund_reason: str | None
    delivery_address: str
    special_instructions: str | None
    tracking_number: str | None
    shipping_notes: str | None
    shipment_proofs: list[str]
    created_at: datetime
    updated_at: datetime


class OrderEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    order_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    tx_ref: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class OrderStatusResponse(BaseModel):
    """Lightweight status check response."""

    order_id: uuid.UUID
    status: str
    has_open_dispute: bool
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class InstructionResponse(BaseModel):
    kind: str
    payer: str | None = None
    owner: str | None = None
    source: str | None = None
    destination: str | None = None
    units: int | None = None


class UnsignedDepositResponse(BaseModel):
    """Unsigned customer -> vault transfer for the external wallet signer."""

    order_id: uuid.UUID
    fee_payer: str
    recent_checkpoint: str
    amount: Decimal
    amount_units: int
    asset: str
    vault_address: str
    instructions: list[InstructionResponse]


class PayoutResponse(BaseModel):
    order_id: uuid.UUID
    status: str
    tx_ref: str
