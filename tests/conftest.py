"""Shared test fixtures for the fetch-core test suite."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import Any

import pytest

from animescrape.browser.backends import WorkerBackend
from animescrape.browser.pool import WorkerPool
from animescrape.config.kind_policies import builtin_policies
from animescrape.config.runtime import RuntimeConfig, RuntimeConfigStore
from animescrape.config.settings import FetchSettings
from animescrape.proxy.manager import ProxyManager
from animescrape.resilience.rate_limiter import TokenBucketLimiter
from animescrape.services.cache import ResultCache
from animescrape.services.orchestrator import FetchOrchestrator
from animescrape.services.task_queue import TaskQueue


# ---------------------------------------------------------------------------
# Keep the environment from leaking into FetchSettings
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ANIMESCRAPE_* variables and pin a plain-HTTP backend."""
    for key in list(os.environ):
        if key.startswith("ANIMESCRAPE_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("ANIMESCRAPE_WORKER_BACKEND", "http")


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> FetchSettings:
    """Test settings with small pools and no backoff."""
    return FetchSettings(
        worker_backend="http",
        pool_size=2,
        pool_min_size=1,
        pool_max_size=10,
        retry_base_delay_seconds=0.0,
        proxy_endpoints=["http://proxy1:8080", "http://proxy2:8080"],
    )


# ---------------------------------------------------------------------------
# Fake worker backend
# ---------------------------------------------------------------------------

class FakeBackend(WorkerBackend):
    """In-memory backend that records calls and peak concurrency.

    ``responses`` maps URL to body; unknown URLs return ``default_body``.
    ``fail_next`` failures are raised before successes resume; with
    ``fail_always`` every fetch fails.
    """

    def __init__(
        self,
        responses: dict[str, str] | None = None,
        *,
        default_body: str = '{"ok": true}',
        delay: float = 0.0,
        fail_next: int = 0,
        fail_always: bool = False,
    ) -> None:
        self.responses = dict(responses or {})
        self.default_body = default_body
        self.delay = delay
        self.fail_next = fail_next
        self.fail_always = fail_always
        self.calls: list[str] = []
        self.sessions: list[dict[str, Any]] = []
        self.closed = 0
        self.active = 0
        self.max_active = 0
        self.started = False
        self.shut_down = False

    async def start(self) -> None:
        self.started = True

    async def launch(self, proxy_url: str | None, user_agent: str) -> dict[str, Any]:
        session = {"proxy": proxy_url, "user_agent": user_agent, "n": len(self.sessions) + 1}
        self.sessions.append(session)
        return session

    async def fetch(self, session: dict[str, Any], url: str, timeout: float) -> str:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_always or self.fail_next > 0:
                self.fail_next = max(0, self.fail_next - 1)
                raise RuntimeError(f"upstream failure for {url}")
            return self.responses.get(url, self.default_body)
        finally:
            self.active -= 1

    async def close(self, session: dict[str, Any]) -> None:
        self.closed += 1

    async def shutdown(self) -> None:
        self.shut_down = True


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_backend_cls() -> type[FakeBackend]:
    return FakeBackend


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def proxy_manager() -> ProxyManager:
    return ProxyManager(static_endpoints=["http://proxy1:8080", "http://proxy2:8080"])


@pytest.fixture
def build_orchestrator() -> Callable[..., FetchOrchestrator]:
    """Factory for an unstarted orchestrator over a given backend."""

    def _build(
        backend: WorkerBackend,
        *,
        pool_size: int = 2,
        min_size: int = 1,
        max_size: int = 10,
        max_concurrency: int = 100,
        enqueue_timeout: float | None = None,
        cache: ResultCache | None = None,
        **config: Any,
    ) -> FetchOrchestrator:
        config.setdefault("retry_base_delay_seconds", 0.0)
        config.setdefault("pool_min_size", min_size)
        config.setdefault("pool_max_size", max_size)
        config.setdefault("kind_policies", builtin_policies())
        runtime = RuntimeConfig(**config)

        proxies = ProxyManager(static_endpoints=["http://proxy1:8080", "http://proxy2:8080"])
        pool = WorkerPool(
            backend,
            proxies,
            min_size=runtime.pool_min_size,
            max_size=runtime.pool_max_size,
        )
        queue = TaskQueue(
            pool,
            max_concurrency=max_concurrency,
            task_timeout_seconds=runtime.request_timeout_seconds,
            enqueue_timeout_seconds=enqueue_timeout,
        )
        return FetchOrchestrator(
            proxy_manager=proxies,
            worker_pool=pool,
            task_queue=queue,
            cache=cache if cache is not None else ResultCache(),
            config_store=RuntimeConfigStore(runtime),
            upstream_limiter=TokenBucketLimiter(tokens=10_000, interval_seconds=1.0),
            pool_size=pool_size,
        )

    return _build
