"""FastAPI application entry point for the Phasion escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the ledger client and the
       custodial signer, then start the notification dispatcher.
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Stop the dispatcher, then close the ledger, sink, database
       and Redis connections.

Run with:
    uv run uvicorn phasion_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from phasion_escrow.config import get_settings
from phasion_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        ledger_simulated=settings.ledger_simulate,
    )

    # 2. Initialize database
    from phasion_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis (optional: locks and idempotency fall back to in-process)
    from phasion_escrow.infrastructure.redis_client import (
        close_redis,
        custodial_lock,
        init_redis,
    )

    await init_redis()

    # 4. Ledger client + the one custodial signing handle for this process
    from phasion_escrow.infrastructure.ledger import build_ledger
    from phasion_escrow.services.custodial import CustodialSigner

    ledger = build_ledger(settings)
    app.state.ledger = ledger
    app.state.custodial = CustodialSigner(
        ledger.custodial_signer,
        lock_timeout=settings.custodial_lock_timeout_seconds,
        distributed_lock=custodial_lock,
    )

    # 5. Notification outbox dispatcher
    from phasion_escrow.infrastructure.notification_sinks import build_sink
    from phasion_escrow.services.notification_service import NotificationDispatcher

    sink = build_sink(settings.notification_webhook_url)
    dispatcher = NotificationDispatcher(
        get_session_factory(),
        sink,
        max_attempts=settings.notification_max_attempts,
    )
    dispatcher_task = asyncio.create_task(
        dispatcher.run_forever(settings.notification_dispatch_interval_seconds)
    )

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        vault=ledger.client.custodial_address,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    dispatcher_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await dispatcher_task
    await ledger.close()
    close_sink = getattr(sink, "close", None)
    if close_sink is not None:
        await close_sink()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Phasion Escrow",
        description=(
            "Custodial escrow and order lifecycle for the Phasion garment marketplace."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from phasion_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from phasion_escrow.api.routes.disputes import router as disputes_router
    from phasion_escrow.api.routes.health import router as health_router
    from phasion_escrow.api.routes.orders import router as orders_router
    from phasion_escrow.api.routes.profiles import notifications_router, profiles_router

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(disputes_router)
    app.include_router(profiles_router)
    app.include_router(notifications_router)

    return app


# The app instance used by Uvicorn
app = create_app()
