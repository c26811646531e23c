"""Jikan (MyAnimeList) metadata API client.

Every call is expressed as a ``metadata`` FetchRequest and goes through the
FetchOrchestrator, so it shares the cache, breaker, retry policy and the
per-upstream politeness limiter with every other fetch.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from animescrape.middleware.error_handler import ValidationError
from animescrape.models.requests import FetchRequest, ParamValue, RequestKind

if TYPE_CHECKING:
    from animescrape.services.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)

JIKAN_BASE_URL = "https://api.jikan.moe/v4"


class JikanClient:
    """Typed accessors for the Jikan v4 anime endpoints.

    Parameters
    ----------
    orchestrator:
        Fetch core used for every request.
    base_url:
        Jikan API root (default the public v4 API).
    """

    def __init__(self, orchestrator: FetchOrchestrator, base_url: str = JIKAN_BASE_URL) -> None:
        self._orchestrator = orchestrator
        self._base_url = base_url.rstrip("/")

    def build_request(self, path: str, **params: ParamValue) -> FetchRequest:
        return FetchRequest(
            target=f"{self._base_url}/{path.lstrip('/')}",
            kind=RequestKind.METADATA,
            params=params,
        )

    async def _get(self, path: str, **params: ParamValue) -> Any:
        return await self._orchestrator.fetch(self.build_request(path, **params))

    async def get_anime(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}")

    async def get_characters(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/characters")

    async def get_staff(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/staff")

    async def get_episodes(self, anime_id: int, page: int = 1) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/episodes", page=_check_page(page))

    async def get_news(self, anime_id: int, page: int = 1) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/news", page=_check_page(page))

    async def get_videos(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/videos")

    async def get_statistics(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/statistics")

    async def get_recommendations(self, anime_id: int) -> Any:
        return await self._get(f"anime/{_check_id(anime_id)}/recommendations")

    async def get_reviews(
        self,
        anime_id: int,
        page: int = 1,
        *,
        preliminary: bool = True,
        spoilers: bool = True,
    ) -> Any:
        """Reviews for *anime_id*, optionally including preliminary and spoiler reviews."""
        return await self._get(
            f"anime/{_check_id(anime_id)}/reviews",
            page=_check_page(page),
            preliminary=preliminary,
            spoilers=spoilers,
        )

    async def search(self, query: str, page: int = 1) -> Any:
        """Free-text anime search."""
        if not query.strip():
            raise ValidationError("Search query must not be empty", field="q")
        return await self._get("anime", q=query.strip(), page=_check_page(page))


def _check_id(anime_id: object) -> int:
    # bool is an int subclass; True is not an id
    if isinstance(anime_id, bool) or not isinstance(anime_id, int) or anime_id < 1:
        raise ValidationError("Invalid anime ID", field="anime_id", value=repr(anime_id))
    return anime_id


def _check_page(page: object) -> int:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError("Invalid page number", field="page", value=repr(page))
    return page
