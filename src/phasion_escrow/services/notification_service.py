"""Notification Service — in-app notifications and the outbound dispatcher.

Business operations never talk to the delivery sink directly. They call
`NotificationService.enqueue()`, which writes a row in the same transaction
as the status change it describes. `NotificationDispatcher` drains
undelivered rows to the sink in its own sessions; a sink failure is logged
and counted against the row and never touches order state.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from phasion_escrow.domain.enums import DeliveryState, NotificationKind
from phasion_escrow.domain.ledger_protocol import OutboundNotification
from phasion_escrow.infrastructure.database.orm_models import Notification
from phasion_escrow.infrastructure.database.repositories import (
    NotificationRepository,
    ProfileRepository,
)
from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from phasion_escrow.domain.ledger_protocol import NotificationSink

logger = get_logger(__name__)


class NotificationService:
    """Writes and reads in-app notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = NotificationRepository(session)
        self._profiles = ProfileRepository(session)

    async def enqueue(
        self,
        user_id: uuid.UUID,
        kind: NotificationKind,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> Notification:
        notification = await self._repo.add(
            Notification(
                user_id=user_id,
                kind=kind.value,
                title=title,
                message=message,
                data=data,
                delivery_state=DeliveryState.PENDING.value,
            )
        )
        logger.debug("notification.enqueued", kind=kind.value, user_id=str(user_id))
        return notification

    async def notify_admins(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> list[Notification]:
        admins = await self._profiles.get_admins()
        if not admins:
            logger.warning("notification.no_admins", kind=kind.value)
        return [await self.enqueue(a.id, kind, title, message, data) for a in admins]

    async def list_for_user(self, user_id: uuid.UUID) -> list[Notification]:
        return await self._repo.list_for_user(user_id)

    async def unread_count(self, user_id: uuid.UUID) -> int:
        return await self._repo.unread_count(user_id)

    async def mark_read(self, notification_id: uuid.UUID) -> bool:
        return await self._repo.mark_read(notification_id)

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        return await self._repo.mark_all_read(user_id)


class NotificationDispatcher:
    """Drains the notification outbox to a delivery sink."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sink: NotificationSink,
        max_attempts: int = 5,
        batch_size: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._sink = sink
        self._max_attempts = max_attempts
        self._batch_size = batch_size

    async def dispatch_pending(self) -> int:
        """Deliver one batch of undelivered notifications.

        Returns:
            The number of notifications delivered in this pass.
        """
        delivered = 0
        async with self._session_factory() as session:
            rows = await NotificationRepository(session).get_undelivered(self._batch_size)
            for row in rows:
                try:
                    await self._sink.deliver(
                        OutboundNotification(
                            notification_id=str(row.id),
                            user_id=str(row.user_id),
                            kind=row.kind,
                            title=row.title,
                            message=row.message,
                            data=row.data or {},
                        )
                    )
                except Exception as exc:
                    row.delivery_attempts += 1
                    row.last_error = str(exc)[:500]
                    if row.delivery_attempts >= self._max_attempts:
                        row.delivery_state = DeliveryState.FAILED.value
                    logger.warning(
                        "notification.delivery_failed",
                        notification_id=str(row.id),
                        kind=row.kind,
                        attempts=row.delivery_attempts,
                        error=str(exc),
                    )
                    continue
                row.delivery_attempts += 1
                row.delivery_state = DeliveryState.DELIVERED.value
                row.last_error = None
                delivered += 1
            await session.commit()
        return delivered

    async def run_forever(self, interval_seconds: float) -> None:
        """Dispatch loop started from the FastAPI lifespan; cancelled on shutdown."""
        logger.info("notification.dispatcher_started", interval=interval_seconds)
        while True:
            try:
                await self.dispatch_pending()
            except Exception as exc:
                logger.error("notification.dispatch_pass_failed", error=str(exc))
            await asyncio.sleep(interval_seconds)
