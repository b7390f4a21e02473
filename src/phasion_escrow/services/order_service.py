"""Order Service — escrow order creation and the shipping/delivery lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access, compare-and-swap status writes)
    - Event log (audit trail)
    - Notification outbox

Payment confirmation is delegated to PaymentReconciliationService and fund
movements to FundsService; both REST routes and the simulation script call
into this service for everything else.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from phasion_escrow.domain.amounts import to_minimal_units
from phasion_escrow.domain.enums import (
    AssetClass,
    EventType,
    NotificationKind,
    OrderStatus,
    ProfileRole,
)
from phasion_escrow.domain.exceptions import (
    DisputeOpenError,
    DuplicateOperationError,
    InvalidStateTransitionError,
    LedgerError,
    ShipmentProofMissingError,
)
from phasion_escrow.domain.state_machine import OrderStateMachine
from phasion_escrow.infrastructure.database.orm_models import EscrowOrder
from phasion_escrow.infrastructure.redis_client import claim_idempotency, release_idempotency
from phasion_escrow.logging_config import get_logger
from phasion_escrow.services.base import OrderServiceBase, actor_label

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.services.funds_service import FundsService

logger = get_logger(__name__)


class OrderService(OrderServiceBase):
    """Manages the escrow order lifecycle outside of fund movements."""

    def __init__(self, session: AsyncSession, funds: FundsService | None = None) -> None:
        super().__init__(session)
        self._funds = funds

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_order(
        self,
        customer_id: uuid.UUID,
        designer_id: uuid.UUID,
        item_id: str,
        amount: Decimal,
        currency: AssetClass,
        delivery_address: str,
        special_instructions: str | None = None,
        idempotency_key: str | None = None,
    ) -> EscrowOrder:
        """Create a new escrow order in PENDING state.

        Both parties must have a registered wallet: the customer pays from it
        and is refunded to it, the designer is paid out to it.
        """
        if to_minimal_units(amount, currency) <= 0:
            raise ValueError(f"Amount {amount} is below the smallest {currency} unit")

        await self._wallet_of(customer_id, ProfileRole.CUSTOMER)
        await self._wallet_of(designer_id, ProfileRole.DESIGNER)

        if idempotency_key and not await claim_idempotency(f"order:{idempotency_key}"):
            raise DuplicateOperationError(idempotency_key)

        try:
            order = await self._orders.create(
                EscrowOrder(
                    customer_id=customer_id,
                    designer_id=designer_id,
                    item_id=item_id,
                    amount=amount,
                    currency=currency.value,
                    delivery_address=delivery_address,
                    special_instructions=special_instructions,
                    status=OrderStatus.PENDING.value,
                    shipment_proofs=[],
                )
            )
            await self._events.record(
                order_id=order.id,
                event_type=EventType.ORDER_CREATED,
                old_status=None,
                new_status=OrderStatus.PENDING,
                actor=str(customer_id),
                metadata={"item_id": item_id, "amount": str(amount), "currency": currency.value},
            )
        except SQLAlchemyError:
            if idempotency_key:
                await release_idempotency(f"order:{idempotency_key}")
            raise

        logger.info(
            "order.created",
            order_id=str(order.id),
            amount=amount,
            currency=currency.value,
        )
        return order

    # ------------------------------------------------------------------
    # Payment cancellation
    # ------------------------------------------------------------------

    async def cancel_payment(
        self,
        order_id: uuid.UUID,
        reason: str = "Transaction rejected by signer",
        actor_id: uuid.UUID | None = None,
    ) -> EscrowOrder:
        """Mark a pending order cancelled after the customer's signer rejected the deposit."""
        order = await self._get_order_or_raise(order_id)
        await self._require_actor(order, actor_id, order.customer_id)
        await self._transition(
            order,
            "payment_cancelled",
            EventType.PAYMENT_CANCELLED,
            actor=actor_label(actor_id),
            metadata={"reason": reason},
        )
        logger.info("order.cancelled", order_id=str(order.id), reason=reason)
        return order

    # ------------------------------------------------------------------
    # Shipping
    # ------------------------------------------------------------------

    async def mark_shipped(
        self,
        order_id: uuid.UUID,
        tracking_number: str | None,
        shipment_proofs: list[str] | None,
        shipping_notes: str | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> EscrowOrder:
        """Designer marks a paid order shipped with tracking number and proof photos."""
        order = await self._get_order_or_raise(order_id)

        missing = []
        if not tracking_number or not tracking_number.strip():
            missing.append("tracking number")
        proofs = [p for p in (shipment_proofs or []) if p and p.strip()]
        if not proofs:
            missing.append("shipment proof image")
        if missing:
            raise ShipmentProofMissingError(str(order.id), missing)

        await self._require_actor(order, actor_id, order.designer_id)
        await self._transition(
            order,
            "designer_ships",
            EventType.ORDER_SHIPPED,
            actor=actor_label(actor_id),
            metadata={"tracking_number": tracking_number.strip(), "proofs": len(proofs)},
            tracking_number=tracking_number.strip(),
            shipping_notes=shipping_notes,
            shipment_proofs=proofs,
        )

        designer_name = await self._display_name(order.designer_id)
        await self._notifications.enqueue(
            order.customer_id,
            NotificationKind.CUSTOMER_ORDER_STATUS_CHANGED,
            "Your order has shipped",
            f"{designer_name} shipped your order. Tracking number: {order.tracking_number}.",
            {"order_id": str(order.id), "status": order.status},
        )

        logger.info("order.shipped", order_id=str(order.id), tracking=order.tracking_number)
        return order

    # ------------------------------------------------------------------
    # Delivery (chains into release)
    # ------------------------------------------------------------------

    async def confirm_delivery(
        self,
        order_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> EscrowOrder:
        """Customer confirms delivery; the release to the designer follows.

        The delivered status is committed before the release starts, so a
        failed release leaves the order delivered (the ledger error still
        propagates) and can be retried with FundsService.release_funds().

        Disputes are checked again after the status CAS: the UPDATE holds the
        order row, so a dispute opened before it committed is visible here.
        """
        order = await self._get_order_or_raise(order_id)
        await self._require_actor(order, actor_id, order.customer_id)
        if await self._disputes.get_open_for_order(order.id) is not None:
            raise DisputeOpenError(str(order.id))

        await self._transition(
            order,
            "customer_confirms_delivery",
            EventType.DELIVERY_CONFIRMED,
            actor=actor_label(actor_id),
        )
        if await self._disputes.get_open_for_order(order.id) is not None:
            await self._session.rollback()
            logger.warning("order.delivery_raced_dispute", order_id=str(order_id))
            raise DisputeOpenError(str(order_id))
        await self._notifications.notify_admins(
            NotificationKind.ADMIN_DELIVERY_REVIEW_NEEDED,
            "Delivery confirmed",
            f"Order {order.id} was confirmed delivered; payout to the designer is starting.",
            {"order_id": str(order.id)},
        )
        await self._session.commit()
        logger.info("order.delivered", order_id=str(order.id))

        if self._funds is None:
            return order

        try:
            await self._funds.release_funds(order.id, actor_id)
        except LedgerError as exc:
            logger.error(
                "order.release_deferred",
                order_id=str(order.id),
                error_code=exc.code,
                error=exc.message,
            )
            raise
        return await self._get_order_or_raise(order.id, fresh=True)

    # ------------------------------------------------------------------
    # Generic status update (UI entry point)
    # ------------------------------------------------------------------

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        extra: dict | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> EscrowOrder:
        """Route a requested status change to the operation that performs it.

        Only shipped, delivered and cancelled can be requested directly; paid
        comes from payment confirmation and released/refunded from the funds
        engine.
        """
        extra = extra or {}
        if new_status == OrderStatus.SHIPPED:
            return await self.mark_shipped(
                order_id,
                tracking_number=extra.get("tracking_number"),
                shipment_proofs=extra.get("shipment_proofs"),
                shipping_notes=extra.get("shipping_notes"),
                actor_id=actor_id,
            )
        if new_status == OrderStatus.DELIVERED:
            return await self.confirm_delivery(order_id, actor_id=actor_id)
        if new_status == OrderStatus.CANCELLED:
            return await self.cancel_payment(
                order_id,
                reason=extra.get("reason", "Cancelled by customer"),
                actor_id=actor_id,
            )

        order = await self._get_order_or_raise(order_id)
        raise InvalidStateTransitionError(order.status, new_status.value)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> EscrowOrder:
        return await self._get_order_or_raise(order_id)

    async def list_by_customer(self, customer_id: uuid.UUID) -> list[EscrowOrder]:
        return await self._orders.list_by_customer(customer_id)

    async def list_by_designer(self, designer_id: uuid.UUID) -> list[EscrowOrder]:
        return await self._orders.list_by_designer(designer_id)

    async def get_status(self, order_id: uuid.UUID) -> dict:
        """Get order status with allowed events."""
        order = await self._get_order_or_raise(order_id)
        sm = OrderStateMachine(current_status=order.status)
        open_dispute = await self._disputes.get_open_for_order(order.id)
        return {
            "order_id": str(order.id),
            "status": order.status,
            "allowed_events": sm.get_allowed_events(),
            "has_open_dispute": open_dispute is not None,
        }

    async def get_events(self, order_id: uuid.UUID) -> list:
        """Get audit trail."""
        await self._get_order_or_raise(order_id)
        return await self._events.get_by_order(order_id)
