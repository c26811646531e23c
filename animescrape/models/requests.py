"""Pydantic request models and request fingerprinting."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

ParamValue = str | int | float | bool


class RequestKind(str, Enum):
    """Volatility class of a fetch; selects TTL, URL template and post-processing."""

    SEARCH = "search"
    MEDIA_LINKS = "media_links"
    METADATA = "metadata"
    PAGE = "page"


class FetchRequest(BaseModel):
    """A single fetch request. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., min_length=1, max_length=2048)
    kind: RequestKind = RequestKind.PAGE
    params: dict[str, ParamValue] = Field(default_factory=dict)
    priority: int = 0  # Reserved; the queue is FIFO
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)

    @property
    def is_url(self) -> bool:
        """True when ``target`` is an absolute http(s) URL rather than a query."""
        parts = urlsplit(self.target.strip())
        return parts.scheme in ("http", "https") and bool(parts.netloc)


def _normalize_target(request: FetchRequest) -> str:
    target = request.target.strip()
    if not request.is_url:
        return " ".join(target.lower().split())
    parts = urlsplit(target)
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, "")
    )


def request_fingerprint(request: FetchRequest) -> str:
    """Stable cache and single-flight key for *request*.

    Scheme/host case, whitespace in queries, fragments and param ordering do
    not change the key. ``priority`` and ``timeout_seconds`` are not part of
    the key.
    """
    normalized = {
        "kind": request.kind.value,
        "target": _normalize_target(request),
        "params": {str(k): v for k, v in sorted(request.params.items())},
    }
    payload = json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
