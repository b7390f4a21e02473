"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles the browser-based marketplace UI
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from phasion_escrow.domain.exceptions import (
    AmountMismatchError,
    CounterpartyWalletMissingError,
    DisputeAlreadyOpenError,
    DisputeAlreadyResolvedError,
    DisputeNotFoundError,
    DisputeOpenError,
    DuplicateOperationError,
    EscrowError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerTransientError,
    NotOrderPartyError,
    OrderNotFoundError,
    PayoutUnrecordedError,
    ShipmentProofMissingError,
    UserRejectedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Most specific first: the first matching class wins
_STATUS_BY_ERROR: tuple[tuple[type[EscrowError], int], ...] = (
    (OrderNotFoundError, 404),
    (DisputeNotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (DuplicateOperationError, 409),
    (DisputeOpenError, 409),
    (DisputeAlreadyOpenError, 409),
    (DisputeAlreadyResolvedError, 409),
    (InsufficientFundsError, 402),
    (NotOrderPartyError, 403),
    (ShipmentProofMissingError, 422),
    (CounterpartyWalletMissingError, 422),
    (AmountMismatchError, 422),
    (UserRejectedError, 400),
    (LedgerTransientError, 503),
    (PayoutUnrecordedError, 500),
)


def status_for(exc: EscrowError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowError as exc:
            status = status_for(exc)
            log = logger.error if status >= 500 else logger.warning
            log("domain.error", code=exc.code, error=exc.message, status=status)
            content = {"error": exc.code, "message": exc.message}
            if status == 503:
                content["retryable"] = True
            tx_ref = getattr(exc, "tx_ref", None)
            if tx_ref:
                content["tx_ref"] = tx_ref
            return JSONResponse(status_code=status, content=content)
        except ValueError as exc:
            logger.warning("request.invalid", error=str(exc))
            return JSONResponse(
                status_code=422,
                content={"error": "INVALID_REQUEST", "message": str(exc)},
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI, allow_origins: list[str] | None = None) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
