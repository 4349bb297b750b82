"""Error taxonomy for the availability service.

Write-path failures are classified exactly once, by ``classify_error``, when
they cross the ``RetryingWriter`` boundary. Everything upstream only looks at
the resulting ``ResponseWriteError``.

Register the HTTP handlers in main.py:

    from availability.errors import register_exception_handlers
    register_exception_handlers(app)
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import exc as sa_exc

logger = logging.getLogger(__name__)


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.UNKNOWN)


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.PERMISSION: (
        "You don't have permission to update this response. "
        "Refresh and try again."
    ),
    ErrorKind.TRANSIENT: "Network issue - check your connection and try again.",
    ErrorKind.VALIDATION: "Something went wrong - try again in a moment.",
    ErrorKind.UNKNOWN: "Something went wrong - try again in a moment.",
}

_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.PERMISSION: 403,
    ErrorKind.VALIDATION: 422,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.UNKNOWN: 500,
}

_PERMISSION_MARKERS = (
    "permission denied",
    "row-level security",
    "rls",
    "policy",
    "not authorized",
)
_VALIDATION_MARKERS = ("violates", "constraint", "invalid input")
_TRANSIENT_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "database is locked",
    "temporarily unavailable",
)


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for errors raised by the response store."""


class MissingGroupScopeError(StoreError):
    """A store call arrived without a group identifier."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} requires a group_id")


class PermissionDeniedError(StoreError):
    """The row-level write policy rejected the writer."""


class ValidationFailedError(StoreError):
    """Malformed identifiers or decision values."""


# ---------------------------------------------------------------------------
# Write-path and coordinator errors
# ---------------------------------------------------------------------------


class ResponseWriteError(Exception):
    """Terminal failure of a retried response write.

    ``retries_exhausted`` is True when the failure was retryable and the
    attempt budget ran out, False when a non-retryable error aborted early.
    """

    def __init__(
        self,
        kind: ErrorKind,
        attempts: int,
        retries_exhausted: bool,
        detail: str = "",
    ) -> None:
        self.kind = kind
        self.attempts = attempts
        self.retries_exhausted = retries_exhausted
        self.detail = detail
        super().__init__(f"{kind} after {attempts} attempt(s): {detail}")

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class PromptStateError(Exception):
    """A prompt operation was requested in a phase that does not allow it."""


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised by a store write onto an ``ErrorKind``."""
    message = str(error).lower()

    if isinstance(error, PermissionDeniedError) or any(
        marker in message for marker in _PERMISSION_MARKERS
    ):
        return ErrorKind.PERMISSION

    if isinstance(
        error, (ValidationFailedError, MissingGroupScopeError, sa_exc.IntegrityError)
    ) or any(marker in message for marker in _VALIDATION_MARKERS):
        return ErrorKind.VALIDATION

    if isinstance(
        error,
        (
            TimeoutError,
            ConnectionError,
            sa_exc.OperationalError,
            sa_exc.DisconnectionError,
            sa_exc.TimeoutError,
        ),
    ) or any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT

    return ErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# HTTP handlers
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    detail: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None


async def response_write_error_handler(
    request: Request, exc: ResponseWriteError
) -> JSONResponse:
    status_code = _STATUS_CODES[exc.kind]
    logger.warning(
        "Response write failed: %s (status=%d, path=%s)",
        exc,
        status_code,
        request.url.path,
    )
    body = ErrorResponse(
        error=str(exc.kind),
        detail=exc.user_message,
        error_code="retries_exhausted" if exc.retries_exhausted else "aborted",
        context={"attempts": exc.attempts},
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def missing_group_scope_handler(
    request: Request, exc: MissingGroupScopeError
) -> JSONResponse:
    logger.warning("Rejected unscoped %s (path=%s)", exc.operation, request.url.path)
    body = ErrorResponse(error="bad_request", detail=str(exc))
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


async def prompt_state_error_handler(
    request: Request, exc: PromptStateError
) -> JSONResponse:
    body = ErrorResponse(error="conflict", detail=str(exc))
    return JSONResponse(status_code=409, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(ResponseWriteError, response_write_error_handler)
    app.add_exception_handler(MissingGroupScopeError, missing_group_scope_handler)
    app.add_exception_handler(PromptStateError, prompt_state_error_handler)
