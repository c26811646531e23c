"""Anime metadata endpoints backed by the Jikan API.

- GET /api/v1/anime/search?q=&page=
- GET /api/v1/anime/{anime_id}
- GET /api/v1/anime/{anime_id}/{characters,staff,videos,statistics,recommendations}
- GET /api/v1/anime/{anime_id}/{episodes,news}?page=
- GET /api/v1/anime/{anime_id}/reviews?page=&preliminary=&spoilers=

Each call is a metadata fetch through the orchestrator, so results are
cached and share the Jikan breaker and politeness limiter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Query, Request

from animescrape.models.responses import ApiResponse

if TYPE_CHECKING:
    from animescrape.integration.jikan import JikanClient
    from animescrape.resilience.rate_limiter import TokenBucketLimiter


def create_anime_router(
    *,
    jikan: JikanClient,
    client_limiter: TokenBucketLimiter,
) -> APIRouter:
    """Factory that creates the anime router with injected dependencies."""

    def limit_client(request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        client_limiter.check(client)

    anime_router = APIRouter(
        prefix="/api/v1/anime",
        tags=["anime"],
        dependencies=[Depends(limit_client)],
    )

    def _ok(data: Any, anime_id: int | None = None) -> dict:
        if anime_id is None:
            return ApiResponse.ok(data, source="jikan")
        return ApiResponse.ok(data, source="jikan", anime_id=anime_id)

    # Declared before /{anime_id} so "search" is not read as an id
    @anime_router.get("/search")
    async def search(
        q: str = Query(..., min_length=1, max_length=256),
        page: int = Query(default=1, ge=1),
    ) -> dict:
        return _ok(await jikan.search(q, page))

    @anime_router.get("/{anime_id}")
    async def detail(anime_id: int) -> dict:
        """Full anime record."""
        return _ok(await jikan.get_anime(anime_id), anime_id)

    @anime_router.get("/{anime_id}/characters")
    async def characters(anime_id: int) -> dict:
        return _ok(await jikan.get_characters(anime_id), anime_id)

    @anime_router.get("/{anime_id}/staff")
    async def staff(anime_id: int) -> dict:
        return _ok(await jikan.get_staff(anime_id), anime_id)

    @anime_router.get("/{anime_id}/episodes")
    async def episodes(anime_id: int, page: int = Query(default=1, ge=1)) -> dict:
        return _ok(await jikan.get_episodes(anime_id, page), anime_id)

    @anime_router.get("/{anime_id}/news")
    async def news(anime_id: int, page: int = Query(default=1, ge=1)) -> dict:
        return _ok(await jikan.get_news(anime_id, page), anime_id)

    @anime_router.get("/{anime_id}/videos")
    async def videos(anime_id: int) -> dict:
        return _ok(await jikan.get_videos(anime_id), anime_id)

    @anime_router.get("/{anime_id}/statistics")
    async def statistics(anime_id: int) -> dict:
        return _ok(await jikan.get_statistics(anime_id), anime_id)

    @anime_router.get("/{anime_id}/recommendations")
    async def recommendations(anime_id: int) -> dict:
        return _ok(await jikan.get_recommendations(anime_id), anime_id)

    @anime_router.get("/{anime_id}/reviews")
    async def reviews(
        anime_id: int,
        page: int = Query(default=1, ge=1),
        preliminary: bool = True,
        spoilers: bool = True,
    ) -> dict:
        """Reviews, including preliminary and spoiler reviews unless turned off."""
        data = await jikan.get_reviews(
            anime_id, page, preliminary=preliminary, spoilers=spoilers
        )
        return _ok(data, anime_id)

    return anime_router
