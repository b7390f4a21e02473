"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
configured services and settings. Services are built per request around the
request's session; the ledger client and the custodial signer are process
singletons kept on app.state by the lifespan.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from phasion_escrow.config import Settings, get_settings
from phasion_escrow.infrastructure.database.engine import get_async_session
from phasion_escrow.infrastructure.ledger import LedgerContext
from phasion_escrow.services.custodial import CustodialSigner
from phasion_escrow.services.dispute_service import DisputeService
from phasion_escrow.services.funds_service import FundsService
from phasion_escrow.services.notification_service import NotificationService
from phasion_escrow.services.order_service import OrderService
from phasion_escrow.services.reconciliation_service import PaymentReconciliationService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_ledger(request: Request) -> LedgerContext:
    return request.app.state.ledger


def get_custodial(request: Request) -> CustodialSigner:
    return request.app.state.custodial


def get_funds_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> FundsService:
    return FundsService(
        session,
        ledger=get_ledger(request).client,
        custodial=get_custodial(request),
        confirmation_timeout=settings.ledger_confirmation_timeout_seconds,
    )


def get_order_service(
    session: AsyncSession = Depends(get_db_session),
    funds: FundsService = Depends(get_funds_service),
) -> OrderService:
    return OrderService(session, funds=funds)


def get_reconciliation_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        session,
        ledger=get_ledger(request).client,
        settle_delay_seconds=settings.settle_delay_seconds,
        tolerance=settings.amount_tolerance,
        block_on_mismatch=settings.block_on_amount_mismatch,
    )


def get_dispute_service(
    session: AsyncSession = Depends(get_db_session),
    funds: FundsService = Depends(get_funds_service),
) -> DisputeService:
    return DisputeService(session, funds=funds)


def get_notification_service(
    session: AsyncSession = Depends(get_db_session),
) -> NotificationService:
    return NotificationService(session)
