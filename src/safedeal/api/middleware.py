"""HTTP middleware: request correlation, the error envelope, and CORS.

Outermost first:
    1. RequestIDMiddleware: binds X-Request-ID into the log context and echoes it
    2. ErrorHandlerMiddleware: maps SafeDealError subclasses to status codes
    3. CORSMiddleware: lets browser clients poll the API
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from safedeal.domain.exceptions import (
    ActiveTransactionExistsError,
    ConflictError,
    DuplicateOperationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SafeDealError,
    ValidationError,
)
from safedeal.logging_config import bind_request_context, get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = get_logger(__name__)


def _error(status_code: int, exc: SafeDealError, **extra: object) -> JSONResponse:
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
        bind_request_context(request_id=request_id)

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
        except ConflictError as exc:
            logger.info(
                "transaction.conflict",
                transaction_id=exc.transaction_id,
                expected=exc.expected_version,
                current=exc.current_version,
            )
            return _error(409, exc, current_version=exc.current_version)
        except DuplicateOperationError as exc:
            logger.warning("idempotency.duplicate", key=exc.idempotency_key)
            return _error(409, exc)
        except ActiveTransactionExistsError as exc:
            logger.info("transaction.active_exists", error=exc.message)
            return _error(400, exc, transaction_id=exc.transaction_id)
        except ValidationError as exc:
            logger.info("request.invalid", error=exc.message, field=exc.field)
            return _error(400, exc, field=exc.field)
        except NotFoundError as exc:
            logger.warning("entity.not_found", entity=exc.entity, entity_id=exc.entity_id)
            return _error(404, exc)
        except PermissionDeniedError as exc:
            logger.warning("permission.denied", actor=exc.actor_id, action=exc.action)
            return _error(403, exc)
        except InvalidTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_status,
                attempted=exc.target_status,
            )
            return _error(422, exc)
        except SafeDealError as exc:
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
    """Install the middleware stack. Starlette wraps in reverse order of registration."""
    # Innermost
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_middleware(ErrorHandlerMiddleware)

    # Outermost, so error responses carry the request id too
    app.add_middleware(RequestIDMiddleware)
