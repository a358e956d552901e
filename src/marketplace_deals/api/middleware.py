"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles the browser front-end
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from marketplace_deals.domain.exceptions import (
    DuplicateOperationError,
    EntityNotFoundError,
    EscrowIneligibleForUpdateError,
    InvalidStateTransitionError,
    MarketplaceError,
    PermissionDeniedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


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
# Most specific first: ConcurrentUpdateError is caught as a state transition.
_ERROR_STATUS: tuple[tuple[type[MarketplaceError], int, str], ...] = (
    (EntityNotFoundError, 404, "entity.not_found"),
    (PermissionDeniedError, 403, "permission.denied"),
    (InvalidStateTransitionError, 409, "state_machine.invalid_transition"),
    (EscrowIneligibleForUpdateError, 409, "escrow.ineligible_for_update"),
    (DuplicateOperationError, 409, "idempotency.duplicate"),
)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Translate domain exceptions into structured JSON error responses.

    Every body has the shape ``{"error": CODE, "message": ...}`` so the
    front-end can show the plain-language reason next to the entity.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except MarketplaceError as exc:
            for error_type, status_code, event in _ERROR_STATUS:
                if isinstance(exc, error_type):
                    logger.warning(event, path=request.url.path, **exc.to_dict())
                    return JSONResponse(status_code=status_code, content=exc.to_dict())
            logger.error("domain.error", path=request.url.path, **exc.to_dict())
            return JSONResponse(status_code=400, content=exc.to_dict())
        except Exception as exc:
            logger.exception("unhandled.error", path=request.url.path, error=str(exc))
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
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
