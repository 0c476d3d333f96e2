"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based check-in and wallet clients
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from attendance_escrow.domain.exceptions import (
    ConflictError,
    EscrowPlatformError,
    InvalidTransitionError,
    LedgerTransportError,
    NotFoundError,
    PendingConfirmationError,
    UnauthorizedError,
    VerificationFailedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: EscrowPlatformError, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, **extra},
    )


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

        # Bound ids also become the correlation_id of published domain events
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
        except PendingConfirmationError as exc:
            # Not a failure: the client polls again later
            logger.info(
                "escrow.pending_confirmation",
                tx_ref=exc.tx_ref,
                confirmations=exc.confirmations,
            )
            return _error(
                202,
                exc,
                verified=False,
                tx_hash=exc.tx_ref,
                confirmations=exc.confirmations,
                required_confirmations=exc.required,
            )
        except NotFoundError as exc:
            logger.warning("resource.not_found", error=exc.message, code=exc.code)
            return _error(404, exc)
        except InvalidTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
                code=exc.code,
            )
            return _error(409, exc)
        except ConflictError as exc:
            logger.warning("conflict", error=exc.message, code=exc.code)
            return _error(409, exc)
        except VerificationFailedError as exc:
            logger.warning("escrow.verification_failed", reason=exc.reason, tx_ref=exc.tx_ref)
            return _error(422, exc)
        except UnauthorizedError as exc:
            logger.warning("authorization.denied", error=exc.message)
            return _error(403, exc)
        except LedgerTransportError as exc:
            logger.error("ledger.unavailable", error=exc.message)
            return _error(503, exc)
        except EscrowPlatformError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
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
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
