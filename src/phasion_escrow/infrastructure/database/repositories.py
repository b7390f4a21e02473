"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Status writes on escrow orders are compare-and-swap: the UPDATE is guarded
by the set of statuses the caller expects the order to be in, and a stale
caller gets StaleOrderStateError instead of silently re-applying a transition.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from phasion_escrow.domain.enums import DeliveryState, DisputeStatus, EventType
from phasion_escrow.domain.exceptions import StaleOrderStateError
from phasion_escrow.infrastructure.database.orm_models import (
    Dispute,
    EscrowOrder,
    Notification,
    OrderEvent,
    Profile,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.domain.enums import OrderStatus


class ProfileRepository:
    """Data access for marketplace profiles."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, profile_id: uuid.UUID) -> Profile | None:
        result = await self._session.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()

    async def get_admins(self) -> list[Profile]:
        result = await self._session.execute(
            select(Profile).where(Profile.role == "admin").order_by(Profile.created_at)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        profile_id: uuid.UUID,
        display_name: str,
        role: str,
        wallet_address: str | None,
    ) -> Profile:
        """Insert or update a profile synced from the external profile store."""
        profile = await self.get_by_id(profile_id)
        if profile is None:
            profile = Profile(
                id=profile_id,
                display_name=display_name,
                role=role,
                wallet_address=wallet_address,
            )
            self._session.add(profile)
        else:
            profile.display_name = display_name
            profile.role = role
            profile.wallet_address = wallet_address
        await self._session.flush()
        return profile


class OrderRepository:
    """Data access for escrow orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: EscrowOrder) -> EscrowOrder:
        """Insert a new escrow order."""
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(
        self,
        order_id: uuid.UUID,
        fresh: bool = False,
        for_update: bool = False,
    ) -> EscrowOrder | None:
        """Fetch an order by its UUID.

        Args:
            fresh: Overwrite any in-session copy with the row as stored now.
                Used inside the custodial lock before building a transfer.
            for_update: Also lock the row until the transaction ends, so a
                concurrent status CAS waits for it. Implies fresh. Backends
                without row locks (SQLite) skip the lock.
        """
        stmt = select(EscrowOrder).where(EscrowOrder.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        if fresh or for_update:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_deposit_tx_ref(self, tx_ref: str) -> EscrowOrder | None:
        result = await self._session.execute(
            select(EscrowOrder).where(EscrowOrder.deposit_tx_ref == tx_ref)
        )
        return result.scalar_one_or_none()

    async def list_by_customer(self, customer_id: uuid.UUID) -> list[EscrowOrder]:
        """Fetch all orders placed by a customer, newest first."""
        result = await self._session.execute(
            select(EscrowOrder)
            .where(EscrowOrder.customer_id == customer_id)
            .order_by(EscrowOrder.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_designer(self, designer_id: uuid.UUID) -> list[EscrowOrder]:
        """Fetch all orders received by a designer, newest first."""
        result = await self._session.execute(
            select(EscrowOrder)
            .where(EscrowOrder.designer_id == designer_id)
            .order_by(EscrowOrder.created_at.desc())
        )
        return list(result.scalars().all())

    async def transition(
        self,
        order: EscrowOrder,
        expected: Iterable[str],
        new_status: OrderStatus,
        **values: Any,
    ) -> EscrowOrder:
        """Atomically move `order` to `new_status` if it is still in `expected`.

        Any extra column values are written in the same UPDATE.

        Raises:
            StaleOrderStateError: If no row matched (another actor got there first).
        """
        expected = [str(s) for s in expected]
        result = await self._session.execute(
            update(EscrowOrder)
            .where(EscrowOrder.id == order.id, EscrowOrder.status.in_(expected))
            .values(status=new_status.value, updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleOrderStateError(str(order.id), expected, new_status.value)
        await self._session.refresh(order)
        return order


class DisputeRepository:
    """Data access for disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(select(Dispute).where(Dispute.id == dispute_id))
        return result.scalar_one_or_none()

    async def get_open_for_order(self, order_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.order_id == order_id,
                Dispute.status == DisputeStatus.OPEN.value,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: DisputeStatus) -> list[Dispute]:
        """Fetch disputes with a given status, oldest first (review queue order)."""
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.status == status.value)
            .order_by(Dispute.created_at.asc())
        )
        return list(result.scalars().all())

    async def mark_resolved(
        self,
        dispute: Dispute,
        decision: str,
        notes: str | None,
        resolved_by: str,
    ) -> Dispute:
        dispute.status = DisputeStatus.RESOLVED.value
        dispute.decision = decision
        dispute.resolution_notes = notes
        dispute.resolved_by = resolved_by
        dispute.resolved_at = datetime.now(UTC)
        await self._session.flush()
        return dispute


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        order_id: uuid.UUID,
        event_type: EventType,
        old_status: OrderStatus | None,
        new_status: OrderStatus,
        actor: str = "SYSTEM",
        tx_ref: str | None = None,
        metadata: dict | None = None,
    ) -> OrderEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = OrderEvent(
            order_id=order_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            tx_ref=tx_ref,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_order(self, order_id: uuid.UUID) -> list[OrderEvent]:
        """Fetch all events for an order in chronological order."""
        result = await self._session.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_unsettled_payout(self, order_id: uuid.UUID) -> OrderEvent | None:
        """Return the latest payout submission with no recorded outcome, if any."""
        result = await self._session.execute(
            select(OrderEvent)
            .where(
                OrderEvent.order_id == order_id,
                OrderEvent.event_type.in_(
                    [
                        EventType.PAYOUT_SUBMITTED.value,
                        EventType.PAYOUT_FAILED.value,
                        EventType.FUNDS_RELEASED.value,
                        EventType.FUNDS_REFUNDED.value,
                    ]
                ),
            )
            .order_by(OrderEvent.created_at.asc())
        )
        events = list(result.scalars().all())
        settled = {
            e.tx_ref for e in events if e.event_type != EventType.PAYOUT_SUBMITTED.value
        }
        submitted = [
            e
            for e in events
            if e.event_type == EventType.PAYOUT_SUBMITTED.value and e.tx_ref not in settled
        ]
        return submitted[-1] if submitted else None


class NotificationRepository:
    """Data access for in-app notifications and the outbound queue."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def list_for_user(self, user_id: uuid.UUID) -> list[Notification]:
        result = await self._session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return int(result.scalar_one())

    async def mark_read(self, notification_id: uuid.UUID) -> bool:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_undelivered(self, limit: int = 50) -> list[Notification]:
        result = await self._session.execute(
            select(Notification)
            .where(Notification.delivery_state == DeliveryState.PENDING.value)
            .order_by(Notification.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
