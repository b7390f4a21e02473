"""Dispute Resolution — opening disputes and settling them through the funds engine.

A dispute is only marked resolved after the refund or release it calls for
has been recorded. If the payout fails the dispute stays open and the admin
retries; nothing is compensated automatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from phasion_escrow.domain.enums import (
    DisputeDecision,
    DisputeReason,
    DisputeStatus,
    EventType,
    NotificationKind,
    OrderStatus,
)
from phasion_escrow.domain.exceptions import (
    DisputeAlreadyOpenError,
    DisputeAlreadyResolvedError,
    DisputeNotFoundError,
    InvalidStateTransitionError,
)
from phasion_escrow.infrastructure.database.orm_models import Dispute
from phasion_escrow.logging_config import get_logger
from phasion_escrow.services.base import OrderServiceBase

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.services.funds_service import FundsService

logger = get_logger(__name__)


class DisputeService(OrderServiceBase):
    def __init__(self, session: AsyncSession, funds: FundsService) -> None:
        super().__init__(session)
        self._funds = funds

    async def create_dispute(
        self,
        order_id: uuid.UUID,
        customer_id: uuid.UUID,
        reason: DisputeReason,
        description: str,
    ) -> Dispute:
        """Open a dispute on a shipped order. At most one may be open per order.

        The order row is locked while the dispute is inserted, so a concurrent
        delivery confirmation either finishes first (and this call sees the
        new status) or waits and then sees the open dispute.
        """
        order = await self._get_order_or_raise(order_id, for_update=True)
        await self._require_actor(order, customer_id, order.customer_id)

        if order.status != OrderStatus.SHIPPED:
            raise InvalidStateTransitionError(order.status, "open_dispute")
        if await self._disputes.get_open_for_order(order.id) is not None:
            raise DisputeAlreadyOpenError(str(order.id))

        try:
            dispute = await self._disputes.create(
                Dispute(
                    order_id=order.id,
                    customer_id=order.customer_id,
                    designer_id=order.designer_id,
                    reason=reason.value,
                    description=description,
                    status=DisputeStatus.OPEN.value,
                )
            )
        except IntegrityError as exc:
            # Lost a race against a concurrent open on the partial unique index
            raise DisputeAlreadyOpenError(str(order.id)) from exc

        await self._events.record(
            order_id=order.id,
            event_type=EventType.DISPUTE_OPENED,
            old_status=OrderStatus.SHIPPED,
            new_status=OrderStatus.SHIPPED,
            actor=str(customer_id),
            metadata={"dispute_id": str(dispute.id), "reason": reason.value},
        )

        customer_name = await self._display_name(order.customer_id)
        await self._notifications.notify_admins(
            NotificationKind.ADMIN_DISPUTE_OPENED,
            "Dispute opened",
            f"{customer_name} opened a dispute ({reason.value}) on order {order.id}.",
            {"order_id": str(order.id), "dispute_id": str(dispute.id)},
        )

        logger.info(
            "dispute.opened",
            dispute_id=str(dispute.id),
            order_id=str(order.id),
            reason=reason.value,
        )
        return dispute

    async def resolve_dispute(
        self,
        dispute_id: uuid.UUID,
        decision: DisputeDecision,
        notes: str | None = None,
        admin_id: uuid.UUID | None = None,
    ) -> Dispute:
        """Settle the dispute: refund the customer or release to the designer.

        Raises:
            DisputeAlreadyResolvedError: The dispute is not open.
            NotOrderPartyError: `admin_id` is not an admin profile.
            LedgerError: The payout failed; the dispute stays open.
        """
        dispute = await self._get_dispute_or_raise(dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise DisputeAlreadyResolvedError(str(dispute.id))

        tx_ref = await self._funds.settle_dispute(dispute, decision, admin_id, notes)

        logger.info(
            "dispute.resolved",
            dispute_id=str(dispute.id),
            order_id=str(dispute.order_id),
            decision=decision.value,
            tx_ref=tx_ref,
        )
        return dispute

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        return await self._get_dispute_or_raise(dispute_id)

    async def list_disputes(self, status: DisputeStatus = DisputeStatus.OPEN) -> list[Dispute]:
        return await self._disputes.list_by_status(status)

    async def _get_dispute_or_raise(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._disputes.get_by_id(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute
