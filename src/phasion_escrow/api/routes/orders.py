"""Escrow order REST API routes.

Routes:
    POST   /api/v1/orders                       — Create a new escrow order
    GET    /api/v1/orders?customer_id=|designer_id= — List orders for a party
    GET    /api/v1/orders/{id}                  — Get order details
    GET    /api/v1/orders/{id}/status           — Lightweight status check
    GET    /api/v1/orders/{id}/events           — Audit trail
    POST   /api/v1/orders/{id}/deposit          — Build the unsigned deposit transfer
    POST   /api/v1/orders/{id}/confirm-payment  — Reconcile the deposit -> paid
    POST   /api/v1/orders/{id}/cancel           — Signer rejected the deposit -> cancelled
    POST   /api/v1/orders/{id}/status           — Generic status update (shipped/delivered/cancelled)
    POST   /api/v1/orders/{id}/release          — Release escrow to the designer
    POST   /api/v1/orders/{id}/refund           — Refund the customer (open dispute required)
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends, HTTPException, Query

from phasion_escrow.api.deps import (
    get_funds_service,
    get_order_service,
    get_reconciliation_service,
)
from phasion_escrow.domain.ledger_protocol import CreateAssociatedAccount, UnsignedTransaction
from phasion_escrow.logging_config import get_logger
from phasion_escrow.schemas.orders import (
    CancelPaymentRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    InstructionResponse,
    OrderEventResponse,
    OrderResponse,
    OrderStatusResponse,
    PayoutResponse,
    RefundRequest,
    ReleaseFundsRequest,
    UnsignedDepositResponse,
    UpdateOrderStatusRequest,
)
from phasion_escrow.services.funds_service import FundsService
from phasion_escrow.services.order_service import OrderService
from phasion_escrow.services.reconciliation_service import PaymentReconciliationService

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / query
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Create a new escrow order",
)
async def create_order(
    request: CreateOrderRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Create a new escrow order in PENDING state."""
    order = await svc.create_order(
        customer_id=request.customer_id,
        designer_id=request.designer_id,
        item_id=request.item_id,
        amount=request.amount,
        currency=request.currency,
        delivery_address=request.delivery_address,
        special_instructions=request.special_instructions,
        idempotency_key=request.idempotency_key,
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=list[OrderResponse], summary="List orders for a party")
async def list_orders(
    customer_id: uuid.UUID | None = Query(default=None),
    designer_id: uuid.UUID | None = Query(default=None),
    svc: OrderService = Depends(get_order_service),
) -> list[OrderResponse]:
    if (customer_id is None) == (designer_id is None):
        raise HTTPException(status_code=422, detail="Pass exactly one of customer_id, designer_id")
    if customer_id is not None:
        orders = await svc.list_by_customer(customer_id)
    else:
        orders = await svc.list_by_designer(designer_id)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order details")
async def get_order(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return OrderResponse.model_validate(await svc.get_order(order_id))


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Lightweight status check",
)
async def get_order_status(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> OrderStatusResponse:
    """Return the current status and the state machine events allowed next."""
    return OrderStatusResponse(**await svc.get_status(order_id))


@router.get(
    "/{order_id}/events",
    response_model=list[OrderEventResponse],
    summary="Get audit trail",
)
async def get_order_events(
    order_id: uuid.UUID,
    svc: OrderService = Depends(get_order_service),
) -> list[OrderEventResponse]:
    events = await svc.get_events(order_id)
    return [OrderEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


def _deposit_response(order_id: uuid.UUID, unsigned: UnsignedTransaction, vault: str) -> UnsignedDepositResponse:
    instructions = []
    for ix in unsigned.instructions:
        if isinstance(ix, CreateAssociatedAccount):
            instructions.append(
                InstructionResponse(kind="create_associated_account", payer=ix.payer, owner=ix.owner)
            )
        else:
            instructions.append(
                InstructionResponse(
                    kind="transfer", source=ix.source, destination=ix.destination, units=ix.units
                )
            )
    return UnsignedDepositResponse(
        order_id=order_id,
        fee_payer=unsigned.fee_payer,
        recent_checkpoint=unsigned.recent_checkpoint,
        amount=unsigned.amount,
        amount_units=unsigned.amount_units,
        asset=unsigned.asset.value,
        vault_address=vault,
        instructions=instructions,
    )


@router.post(
    "/{order_id}/deposit",
    response_model=UnsignedDepositResponse,
    summary="Build the unsigned deposit transfer",
)
async def prepare_deposit(
    order_id: uuid.UUID,
    svc: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> UnsignedDepositResponse:
    """Return the customer -> vault transfer for the customer's wallet to sign and submit."""
    unsigned = await svc.prepare_deposit(order_id)
    return _deposit_response(order_id, unsigned, unsigned.instructions[-1].destination)


@router.post(
    "/{order_id}/confirm-payment",
    response_model=OrderResponse,
    summary="Confirm a submitted deposit",
)
async def confirm_payment(
    order_id: uuid.UUID,
    request: ConfirmPaymentRequest,
    svc: PaymentReconciliationService = Depends(get_reconciliation_service),
) -> OrderResponse:
    """Verify the deposit against the vault balance. Transitions PENDING -> PAID."""
    order = await svc.confirm_payment(order_id, request.tx_ref, actor_id=request.actor_id)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel a pending order",
)
async def cancel_payment(
    order_id: uuid.UUID,
    request: CancelPaymentRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Record that the customer's signer rejected the deposit. Transitions PENDING -> CANCELLED."""
    order = await svc.cancel_payment(order_id, reason=request.reason, actor_id=request.actor_id)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: uuid.UUID,
    request: UpdateOrderStatusRequest,
    svc: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Ship, confirm delivery of, or cancel an order.

    Confirming delivery also releases the escrowed funds to the designer.
    """
    order = await svc.update_order_status(
        order_id, request.status, extra=request.extra, actor_id=request.actor_id
    )
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Funds
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/release",
    response_model=PayoutResponse,
    summary="Release escrowed funds to the designer",
)
async def release_funds(
    order_id: uuid.UUID,
    request: ReleaseFundsRequest,
    funds: FundsService = Depends(get_funds_service),
) -> PayoutResponse:
    """Release a delivered order's funds. Also retries a release that failed after delivery."""
    tx_ref = await funds.release_funds(order_id, actor_id=request.actor_id)
    return PayoutResponse(order_id=order_id, status="released", tx_ref=tx_ref)


@router.post(
    "/{order_id}/refund",
    response_model=PayoutResponse,
    summary="Refund the customer",
)
async def refund_customer(
    order_id: uuid.UUID,
    request: RefundRequest,
    funds: FundsService = Depends(get_funds_service),
) -> PayoutResponse:
    """Refund a disputed order and resolve its open dispute in the customer's favour."""
    tx_ref = await funds.refund_customer(order_id, reason=request.reason, actor_id=request.actor_id)
    return PayoutResponse(order_id=order_id, status="refunded", tx_ref=tx_ref)
