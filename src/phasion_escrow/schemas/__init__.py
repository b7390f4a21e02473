"""Pydantic API schemas."""

from phasion_escrow.schemas.disputes import (
    CreateDisputeRequest,
    DisputeResponse,
    HealthResponse,
    NotificationListResponse,
    NotificationResponse,
    ProfileResponse,
    ResolveDisputeRequest,
    UpsertProfileRequest,
)
from phasion_escrow.schemas.orders import (
    CancelPaymentRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    OrderEventResponse,
    OrderResponse,
    OrderStatusResponse,
    PayoutResponse,
    RefundRequest,
    ReleaseFundsRequest,
    UnsignedDepositResponse,
    UpdateOrderStatusRequest,
)

__all__ = [
    "CancelPaymentRequest",
    "ConfirmPaymentRequest",
    "CreateDisputeRequest",
    "CreateOrderRequest",
    "DisputeResponse",
    "HealthResponse",
    "NotificationListResponse",
    "NotificationResponse",
    "OrderEventResponse",
    "OrderResponse",
    "OrderStatusResponse",
    "PayoutResponse",
    "ProfileResponse",
    "RefundRequest",
    "ReleaseFundsRequest",
    "ResolveDisputeRequest",
    "UnsignedDepositResponse",
    "UpdateOrderStatusRequest",
    "UpsertProfileRequest",
]
