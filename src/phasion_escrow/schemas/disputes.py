"""Pydantic schemas for disputes, profiles, notifications and health."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from phasion_escrow.domain.enums import DisputeDecision, DisputeReason, ProfileRole

# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


class CreateDisputeRequest(BaseModel):
    """Request body for a customer opening a dispute on a shipped order."""

    order_id: uuid.UUID
    customer_id: uuid.UUID
    reason: DisputeReason
    description: str = Field(
        ...,
        min_length=10,
        max_length=5000,
        description="Detailed description of the problem",
    )


class ResolveDisputeRequest(BaseModel):
    decision: DisputeDecision
    notes: str | None = Field(default=None, max_length=5000)
    admin_id: uuid.UUID | None = None


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    customer_id: uuid.UUID
    designer_id: uuid.UUID
    reason: str
    description: str
    status: str
    decision: str | None
    resolution_notes: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class UpsertProfileRequest(BaseModel):
    """Profile data synced from the external auth/profile store."""

    display_name: str = Field(..., min_length=1, max_length=120)
    role: ProfileRole = ProfileRole.CUSTOMER
    wallet_address: str | None = Field(
        default=None,
        min_length=32,
        max_length=64,
        description="Public key of the participant's ledger wallet",
    )


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    display_name: str
    role: str
    wallet_address: str | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    kind: str
    title: str
    message: str
    data: dict | None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    unread: int
    notifications: list[NotificationResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    ledger: str = "unknown"
