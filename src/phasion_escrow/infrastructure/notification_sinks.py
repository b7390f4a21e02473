"""Outbound notification sinks.

The email/push provider is an external collaborator; these sinks are the
two ways the dispatcher can reach it:
    - LoggingSink: writes the notification to the structured log (default).
    - WebhookSink: POSTs the notification as JSON to a configured URL.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

import httpx

from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from phasion_escrow.domain.ledger_protocol import NotificationSink, OutboundNotification

logger = get_logger(__name__)


class LoggingSink:
    async def deliver(self, notification: OutboundNotification) -> None:
        logger.info(
            "notification.delivered",
            notification_id=notification.notification_id,
            user_id=notification.user_id,
            kind=notification.kind,
            title=notification.title,
        )


class WebhookSink:
    """Delivers notifications to an HTTP endpoint.

    A non-2xx response raises httpx.HTTPStatusError; the dispatcher counts it
    as a failed attempt and retries on its next pass.
    """

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def deliver(self, notification: OutboundNotification) -> None:
        response = await self._client.post(
            self._url,
            json=asdict(notification),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


def build_sink(webhook_url: str) -> NotificationSink:
    if webhook_url:
        logger.info("notification.sink_webhook", url=webhook_url)
        return WebhookSink(webhook_url)
    return LoggingSink()
