"""Middleware package: error taxonomy and request ID."""

from animescrape.middleware.error_handler import (
    ExhaustedRetriesError,
    FetchError,
    FetchTimeoutError,
    PoolExhaustedError,
    ProxySourceError,
    RateLimitedError,
    UpstreamUnavailableError,
    ValidationError,
    register_error_handlers,
)
from animescrape.middleware.request_id import RequestIdMiddleware

__all__ = [
    "ExhaustedRetriesError",
    "FetchError",
    "FetchTimeoutError",
    "PoolExhaustedError",
    "ProxySourceError",
    "RateLimitedError",
    "RequestIdMiddleware",
    "UpstreamUnavailableError",
    "ValidationError",
    "register_error_handlers",
]
