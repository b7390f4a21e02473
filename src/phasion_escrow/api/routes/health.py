"""Health check endpoint.

Verifies connectivity to the database, Redis and the ledger, and returns a
structured status. Used by Docker healthchecks, load balancers, and
monitoring systems. Redis is optional, so its absence does not degrade
the overall status.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from phasion_escrow.domain.enums import AssetClass
from phasion_escrow.domain.exceptions import LedgerError
from phasion_escrow.infrastructure.database.engine import get_session_factory
from phasion_escrow.infrastructure.redis_client import get_redis, redis_available
from phasion_escrow.logging_config import get_logger
from phasion_escrow.schemas.disputes import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check connectivity to the database, Redis and the ledger RPC."""
    db_status = "unknown"
    redis_status = "not configured"
    ledger_status = "unknown"

    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if redis_available():
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    ledger = getattr(request.app.state, "ledger", None)
    if ledger is not None:
        try:
            await ledger.client.get_custodial_balance(AssetClass.NATIVE)
            ledger_status = "simulated" if ledger.simulated else "healthy"
        except LedgerError as exc:
            ledger_status = f"unhealthy: {exc.message}"
            logger.error("health.ledger_check_failed", error=exc.message)

    healthy = {"healthy", "simulated"}
    overall = (
        "ok"
        if db_status == "healthy"
        and ledger_status in healthy
        and redis_status in {"healthy", "not configured"}
        else "degraded"
    )

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        ledger=ledger_status,
    )
