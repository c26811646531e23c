"""Fetch endpoints.

- POST /api/v1/fetch: run one FetchRequest through the orchestrator
- GET  /api/v1/search?q=&page=: search-kind fetch for a free-text query
- GET  /api/v1/links?url=: media links found on a page

All fetch endpoints are rate limited per client address.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query, Request

from animescrape.models.requests import FetchRequest, RequestKind, request_fingerprint
from animescrape.models.responses import ApiResponse

if TYPE_CHECKING:
    from animescrape.resilience.rate_limiter import TokenBucketLimiter
    from animescrape.services.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


def create_fetch_router(
    *,
    orchestrator: FetchOrchestrator,
    client_limiter: TokenBucketLimiter,
) -> APIRouter:
    """Factory that creates the fetch router with injected dependencies."""

    def limit_client(request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        client_limiter.check(client)

    fetch_router = APIRouter(
        prefix="/api/v1",
        tags=["fetch"],
        dependencies=[Depends(limit_client)],
    )

    async def _run(fetch_request: FetchRequest) -> dict:
        result = await orchestrator.fetch(fetch_request)
        return ApiResponse.ok(
            result,
            kind=fetch_request.kind.value,
            fingerprint=request_fingerprint(fetch_request),
        )

    @fetch_router.post("/fetch")
    async def fetch(body: FetchRequest) -> dict:
        """Fetch any target with the given kind."""
        return await _run(body)

    @fetch_router.get("/search")
    async def search(
        q: str = Query(..., min_length=1, max_length=256),
        page: int = Query(default=1, ge=1),
    ) -> dict:
        """Search-kind fetch expanded through the search URL template."""
        return await _run(FetchRequest(target=q, kind=RequestKind.SEARCH, params={"page": page}))

    @fetch_router.get("/links")
    async def links(url: str = Query(..., min_length=1, max_length=2048)) -> dict:
        """Media links (m3u8/mp4/mkv/avi) found on *url*, shortest first."""
        return await _run(FetchRequest(target=url, kind=RequestKind.MEDIA_LINKS))

    return fetch_router
