"""Public models for the fetch service."""

from animescrape.models.requests import (
    FetchRequest,
    RequestKind,
    request_fingerprint,
)
from animescrape.models.responses import ApiResponse

__all__ = [
    "ApiResponse",
    "FetchRequest",
    "RequestKind",
    "request_fingerprint",
]
