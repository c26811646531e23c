"""Fetch error taxonomy and FastAPI exception handlers.

Every error that leaves the orchestrator is a FetchError subclass. The
FastAPI exception handlers catch these errors (plus Pydantic's
RequestValidationError and unhandled exceptions) and return a consistent JSON
envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import logging
import math
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """Base error for all fetch-core errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class ValidationError(FetchError):
    """Invalid fetch request or configuration update."""

    status_code = 422
    message = "Validation error"


class UpstreamUnavailableError(FetchError):
    """Circuit breaker open for the upstream target."""

    status_code = 503
    message = "Service unavailable"

    def __init__(
        self,
        message: str | None = None,
        *,
        target: str | None = None,
        retry_after: float = 0.0,
    ) -> None:
        self.target = target
        self.retry_after = max(0.0, retry_after)
        super().__init__(message, target=target, retry_after=round(self.retry_after, 3))


class FetchTimeoutError(FetchError):
    """A single fetch attempt exceeded its deadline."""

    status_code = 504
    message = "Fetch attempt timed out"


class ExhaustedRetriesError(FetchError):
    """Every fetch attempt failed; wraps the last underlying error."""

    status_code = 500
    message = "Fetch failed after all retry attempts"

    def __init__(
        self,
        message: str | None = None,
        *,
        last_error: BaseException | None = None,
        attempts: int = 0,
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            message,
            attempts=attempts,
            last_error=str(last_error) if last_error is not None else None,
        )


class PoolExhaustedError(FetchError):
    """No capacity: backpressure or worker wait timed out."""

    status_code = 503
    message = "Worker pool exhausted"


class ProxySourceError(FetchError):
    """A proxy-list source failed to refresh."""

    status_code = 502
    message = "Proxy source failed"


class RateLimitedError(FetchError):
    """Caller exceeded its request rate."""

    status_code = 429
    message = "Too many requests"

    def __init__(self, message: str | None = None, *, retry_after: float = 0.0) -> None:
        self.retry_after = max(0.0, retry_after)
        super().__init__(message, retry_after=round(self.retry_after, 3))


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
        headers=headers,
    )


async def _fetch_error_handler(_request: Request, exc: FetchError) -> JSONResponse:
    """Handle FetchError subclasses."""
    meta = exc.details if exc.details else None
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(retry_after)))}
    return _envelope(exc.status_code, exc.message, meta=meta, headers=headers)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (422)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log traceback, return generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


# ---------------------------------------------------------------------------
# Registration helper
# ---------------------------------------------------------------------------


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(FetchError, _fetch_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
