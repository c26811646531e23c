"""Proxy rotation manager with round-robin selection, refresh and health checks.

The pool holds statically configured endpoints plus proxies pulled from
configured list sources. ``refresh()`` merges fresh proxies into the pool,
``check_health()`` probes each proxy against a fixed reachability URL, and
``next_proxy()`` rotates round-robin over non-dead entries. Background loops
run refresh and health checks periodically without blocking selection.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time

import httpx

from animescrape.middleware.error_handler import ProxySourceError
from animescrape.proxy.sources import load_user_agents, normalize_proxy, parse_proxy_list
from animescrape.proxy.types import ProxyEntry, ProxyHealth

logger = logging.getLogger(__name__)


class ProxyManager:
    """Manages a pool of upstream proxies and user-agent strings."""

    def __init__(
        self,
        *,
        sources: list[str] | None = None,
        static_endpoints: list[str] | None = None,
        user_agents: list[str] | None = None,
        health_check_url: str = "https://www.google.com",
        health_check_timeout_seconds: float = 5.0,
        refresh_interval_seconds: float = 300.0,
        health_check_interval_seconds: float = 60.0,
        rng: random.Random | None = None,
    ) -> None:
        self._sources = list(sources or [])
        self._proxies: list[ProxyEntry] = []
        self._index: int = 0
        self._user_agents = list(user_agents) if user_agents else load_user_agents(None)
        self._health_check_url = health_check_url
        self._health_check_timeout = health_check_timeout_seconds
        self._refresh_interval = refresh_interval_seconds
        self._health_check_interval = health_check_interval_seconds
        self._rng = rng or random.Random()
        self._tasks: list[asyncio.Task[None]] = []

        self._merge(static_endpoints or [])

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> int:
        """Fetch every source and merge new proxies into the pool.

        A failing source is logged and skipped. Returns the number of proxies
        added.
        """
        if not self._sources:
            return 0

        results = await asyncio.gather(
            *(self._fetch_source(url) for url in self._sources),
            return_exceptions=True,
        )

        fresh: list[str] = []
        for url, result in zip(self._sources, results):
            if isinstance(result, ProxySourceError):
                logger.warning("Proxy source skipped: %s", result.message, extra={"target": url})
                continue
            if isinstance(result, BaseException):
                raise result
            fresh.extend(result)

        added = self._merge(fresh)
        logger.info(
            "Proxy refresh complete: %d new, %d total",
            added,
            len(self._proxies),
        )
        return added

    async def _fetch_source(self, url: str) -> list[str]:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(10.0)) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProxySourceError(f"Proxy source {url} failed: {exc}", source=url)
        return parse_proxy_list(response.text)

    def _merge(self, candidates: list[str]) -> int:
        """Append unseen proxies; the list is swapped, never edited in place."""
        known = {entry.address for entry in self._proxies}
        merged = list(self._proxies)
        for raw in candidates:
            address = normalize_proxy(raw)
            if address is None or address in known:
                continue
            known.add(address)
            merged.append(ProxyEntry(address=address))
        added = len(merged) - len(self._proxies)
        self._proxies = merged
        return added

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def next_proxy(self) -> ProxyEntry | None:
        """Return the next non-dead proxy in round-robin order.

        Wraps after one full scan. If every proxy is dead the first entry is
        returned anyway (degraded mode). Returns None only for an empty pool.
        """
        proxies = self._proxies  # snapshot
        if not proxies:
            return None

        pool_size = len(proxies)
        for _ in range(pool_size):
            proxy = proxies[self._index % pool_size]
            self._index = (self._index + 1) % pool_size
            if not proxy.is_dead:
                return proxy

        logger.warning("All %d proxies are dead, using %s", pool_size, proxies[0].address)
        return proxies[0]

    def random_user_agent(self) -> str:
        """Pick a user agent uniformly at random."""
        return self._rng.choice(self._user_agents)

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def check_health(self) -> None:
        """Probe every proxy once and record its health."""
        proxies = self._proxies
        if not proxies:
            return
        await asyncio.gather(*(self._probe(proxy) for proxy in proxies))
        healthy = sum(1 for p in proxies if p.health == ProxyHealth.HEALTHY)
        logger.info("Proxy health check: %d/%d healthy", healthy, len(proxies))

    async def _probe(self, proxy: ProxyEntry) -> None:
        try:
            async with httpx.AsyncClient(
                proxy=proxy.address,
                timeout=httpx.Timeout(self._health_check_timeout),
            ) as client:
                response = await client.get(self._health_check_url)
            proxy.health = ProxyHealth.HEALTHY if response.status_code < 500 else ProxyHealth.DEAD
        except (httpx.HTTPError, OSError, ValueError):
            proxy.health = ProxyHealth.DEAD
            logger.debug("Health check failed for proxy", extra={"proxy_used": proxy.address})
        proxy.last_checked = time.time()

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run an initial refresh, then start the refresh and health-check loops."""
        await self.refresh()
        self._tasks = [
            asyncio.create_task(self._refresh_loop(), name="proxy-refresh"),
            asyncio.create_task(self._health_check_loop(), name="proxy-health-check"),
        ]

    async def stop(self) -> None:
        """Cancel the background loops."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Proxy refresh failed")

    async def _health_check_loop(self) -> None:
        while True:
            await asyncio.sleep(self._health_check_interval)
            try:
                await self.check_health()
            except Exception:
                logger.exception("Proxy health check failed")

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Return proxy pool statistics for the health endpoint."""
        proxies = self._proxies
        counts = {health.value: 0 for health in ProxyHealth}
        for proxy in proxies:
            counts[proxy.health.value] += 1
        return {
            "total": len(proxies),
            **counts,
            "user_agents": len(self._user_agents),
        }
