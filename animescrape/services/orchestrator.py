"""Fetch orchestrator: the single entry point of the fetch core.

``fetch(request)`` runs the full pipeline:

1. fingerprint the request and serve a cache hit without touching the pool;
2. coalesce concurrent identical requests onto one shared execution;
3. resolve the request to a URL and its upstream host;
4. consult the upstream's circuit breaker;
5. run ``scrape_with_retry``: each attempt takes an upstream rate-limit
   token, goes through the TaskQueue to an idle worker, and is
   post-processed for its kind;
6. record the outcome on the breaker and cache successes with the kind's TTL.

It also owns the component lifecycle (start/shutdown, autoscale and cache
sweep loops) and the admin operations exposed over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from urllib.parse import quote_plus

import httpx

from animescrape.browser.backends import WorkerBackend, create_backend
from animescrape.browser.pool import WorkerPool
from animescrape.config.kind_policies import KindPolicy
from animescrape.config.runtime import RuntimeConfig, RuntimeConfigStore
from animescrape.config.settings import FetchSettings
from animescrape.middleware.error_handler import (
    ExhaustedRetriesError,
    FetchTimeoutError,
    PoolExhaustedError,
    UpstreamUnavailableError,
    ValidationError,
)
from animescrape.models.requests import FetchRequest, request_fingerprint
from animescrape.proxy.manager import ProxyManager
from animescrape.proxy.sources import load_user_agents
from animescrape.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from animescrape.resilience.rate_limiter import TokenBucketLimiter
from animescrape.resilience.retry import RetryPolicy
from animescrape.services.cache import ResultCache
from animescrape.services.hooks import FetchHooks, FetchStats
from animescrape.services.postprocess import postprocess
from animescrape.services.task_queue import Task, TaskQueue

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """Facade over the proxy manager, worker pool, queue, breakers and cache.

    Parameters
    ----------
    proxy_manager, worker_pool, task_queue, cache:
        The components the orchestrator drives. The pool and queue must be
        wired together (the queue dispatches onto the pool).
    config_store:
        Source of the tunables read on every fetch.
    upstream_limiter:
        Per-upstream politeness limiter; one token per attempt.
    hooks:
        Metrics callbacks. Defaults to an in-memory ``FetchStats`` recorder.
    """

    def __init__(
        self,
        *,
        proxy_manager: ProxyManager,
        worker_pool: WorkerPool,
        task_queue: TaskQueue,
        cache: ResultCache,
        config_store: RuntimeConfigStore,
        upstream_limiter: TokenBucketLimiter | None = None,
        hooks: FetchHooks | None = None,
        pool_size: int = 15,
        autoscale_interval_seconds: float = 10.0,
        cache_sweep_interval_seconds: float = 300.0,
        graceful_shutdown_seconds: float = 30.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._proxy_manager = proxy_manager
        self._pool = worker_pool
        self._queue = task_queue
        self._cache = cache
        self._config = config_store
        self._upstream_limiter = upstream_limiter or TokenBucketLimiter()
        self.stats: FetchStats | None = None
        if hooks is None:
            self.stats = FetchStats()
            hooks = self.stats.hooks()
        self._hooks = hooks
        task_queue.on_task_complete = self._on_attempt_complete
        self._pool_size = pool_size
        self._autoscale_interval = autoscale_interval_seconds
        self._cache_sweep_interval = cache_sweep_interval_seconds
        self._graceful_shutdown = graceful_shutdown_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep

        config = config_store.current
        self._breakers = CircuitBreakerRegistry(
            max_failures=config.cb_max_failures,
            cooldown_seconds=config.cb_cooldown_seconds,
            on_transition=self._on_breaker_transition,
        )
        self._retry_policy = self._build_retry_policy(config)
        config_store.subscribe(self._apply_config)

        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._consecutive_exhaustions = 0
        self._rotation: asyncio.Task[None] | None = None
        self._loops: list[asyncio.Task[None]] = []
        self._started = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: FetchSettings,
        *,
        backend: WorkerBackend | None = None,
        hooks: FetchHooks | None = None,
    ) -> "FetchOrchestrator":
        """Wire every component from ``FetchSettings``."""
        proxy_manager = ProxyManager(
            sources=settings.proxy_sources,
            static_endpoints=settings.proxy_endpoints,
            user_agents=load_user_agents(settings.user_agents_path),
            health_check_url=settings.proxy_health_check_url,
            health_check_timeout_seconds=settings.proxy_health_check_timeout_seconds,
            refresh_interval_seconds=settings.proxy_refresh_interval_seconds,
            health_check_interval_seconds=settings.proxy_health_check_interval_seconds,
        )
        worker_pool = WorkerPool(
            backend or create_backend(settings.worker_backend),
            proxy_manager,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            task_limit=settings.worker_task_limit,
            close_timeout_seconds=settings.worker_close_timeout_seconds,
        )
        task_queue = TaskQueue(
            worker_pool,
            max_concurrency=settings.max_concurrency,
            task_timeout_seconds=settings.request_timeout_seconds,
            enqueue_timeout_seconds=settings.enqueue_timeout_seconds,
        )
        return cls(
            proxy_manager=proxy_manager,
            worker_pool=worker_pool,
            task_queue=task_queue,
            cache=ResultCache(max_entries=settings.cache_max_entries),
            config_store=RuntimeConfigStore(RuntimeConfig.from_settings(settings)),
            upstream_limiter=TokenBucketLimiter(
                tokens=settings.upstream_rate_limit_tokens,
                interval_seconds=settings.upstream_rate_limit_interval_seconds,
            ),
            hooks=hooks,
            pool_size=settings.pool_size,
            autoscale_interval_seconds=settings.autoscale_interval_seconds,
            cache_sweep_interval_seconds=settings.cache_sweep_interval_seconds,
            graceful_shutdown_seconds=settings.graceful_shutdown_seconds,
        )

    @property
    def config(self) -> RuntimeConfig:
        return self._config.current

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, request: FetchRequest) -> Any:
        """Return the processed result for *request*.

        Raises
        ------
        ValidationError
            The request cannot be resolved to a URL.
        UpstreamUnavailableError
            The upstream's breaker is open.
        PoolExhaustedError
            No capacity to run the fetch.
        ExhaustedRetriesError
            Every attempt failed.
        """
        key = request_fingerprint(request)

        cached = await self._cache.get(key)
        if cached is not None:
            self._hooks.fire("on_cache_hit", request.kind)
            logger.debug(
                "Cache hit",
                extra={"fingerprint": key, "kind": request.kind.value, "cache": "hit"},
            )
            return cached
        self._hooks.fire("on_cache_miss", request.kind)

        shared = self._inflight.get(key)
        if shared is not None:
            self._hooks.fire("on_coalesced", request.kind)
            logger.debug("Joining in-flight fetch", extra={"fingerprint": key, "cache": "coalesced"})
        else:
            shared = asyncio.ensure_future(self._fetch_uncached(request, key))
            self._inflight[key] = shared
            shared.add_done_callback(lambda f, k=key: self._settle_inflight(k, f))

        # Cancelling this caller must not cancel the shared execution
        return await asyncio.shield(shared)

    def _settle_inflight(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            # Mark the exception retrieved when every waiter has gone away
            future.exception()

    async def _fetch_uncached(self, request: FetchRequest, key: str) -> Any:
        config = self._config.current
        policy = config.policy_for(request.kind)
        url = self.resolve_url(request, policy)
        upstream = httpx.URL(url).host
        log_extra = {"fingerprint": key, "kind": request.kind.value, "upstream": upstream}

        breaker = self._breakers.get(upstream)
        timeout = request.timeout_seconds or policy.timeout_seconds or config.request_timeout_seconds
        task = Task(request=request, url=url, timeout=timeout)
        start = time.monotonic()

        try:
            # Exhaustion and cancellation never reached the upstream
            result = await breaker.execute(
                lambda: self.scrape_with_retry(task, upstream),
                neutral=(PoolExhaustedError,),
            )
        except UpstreamUnavailableError:
            raise
        except (PoolExhaustedError, asyncio.CancelledError):
            self._hooks.fire("on_fetch_duration", request.kind, time.monotonic() - start, "rejected")
            raise
        except Exception as exc:
            elapsed = time.monotonic() - start
            self._hooks.fire("on_fetch_duration", request.kind, elapsed, "failure")
            logger.warning(
                "Fetch failed after %d attempts",
                task.attempts,
                extra={
                    **log_extra,
                    "target": url,
                    "attempt": task.attempts,
                    "duration_ms": round(elapsed * 1000, 2),
                    "error_reason": str(exc),
                },
            )
            self._note_exhaustion()
            raise ExhaustedRetriesError(
                f"Fetch of {url} failed after {task.attempts} attempts",
                last_error=exc,
                attempts=task.attempts,
            ) from exc

        self._consecutive_exhaustions = 0
        elapsed = time.monotonic() - start
        self._hooks.fire("on_fetch_duration", request.kind, elapsed, "success")
        await self._cache.set(key, result, policy.cache_ttl_seconds)
        logger.info(
            "Fetch succeeded",
            extra={
                **log_extra,
                "target": url,
                "attempt": task.attempts,
                "duration_ms": round(elapsed * 1000, 2),
                "cache": "miss",
            },
        )
        return result

    @staticmethod
    def resolve_url(request: FetchRequest, policy: KindPolicy) -> str:
        """Resolve *request* to the URL a worker should load.

        URL targets get ``params`` merged into their query string. Query
        targets are expanded through the kind's ``url_template``.
        """
        if request.is_url:
            url = httpx.URL(request.target.strip())
        else:
            if not policy.url_template:
                raise ValidationError(
                    f"Request kind '{request.kind.value}' has no URL template; "
                    "target must be an absolute http(s) URL",
                    kind=request.kind.value,
                )
            query = quote_plus(" ".join(request.target.split()))
            url = httpx.URL(policy.url_template.replace("{query}", query))

        if request.params:
            url = url.copy_merge_params(dict(request.params))
        return str(url)

    async def scrape_with_retry(self, task: Task, upstream: str) -> Any:
        """Run *task* through the queue with retries and post-processing.

        ``PoolExhaustedError`` is not retried. The final attempt's error
        propagates unchanged.
        """

        async def attempt(number: int) -> Any:
            await self._upstream_limiter.acquire(upstream)
            content = await self._queue.submit(task)
            return postprocess(task.request.kind, content)

        def on_retry(number: int, exc: Exception, delay: float) -> None:
            logger.info(
                "Attempt %d failed, retrying in %.2fs",
                number,
                delay,
                extra={
                    "target": task.url,
                    "upstream": upstream,
                    "attempt": number,
                    "error_reason": str(exc),
                },
            )

        return await self._retry_policy.run(
            attempt,
            should_retry=lambda exc: not isinstance(exc, PoolExhaustedError),
            on_retry=on_retry,
            sleep=self._sleep,
        )

    async def fetch_settled(self, requests: Iterable[FetchRequest]) -> list[Any]:
        """Fetch all *requests* concurrently; errors are returned in place."""
        return await asyncio.gather(
            *(self.fetch(request) for request in requests),
            return_exceptions=True,
        )

    async def fetch_all(self, requests: Iterable[FetchRequest]) -> list[Any]:
        """Fetch concurrently and flatten the successful results.

        List results are concatenated, other results appended; failures are
        logged and left out.
        """
        requests = list(requests)
        merged: list[Any] = []
        for request, outcome in zip(requests, await self.fetch_settled(requests)):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Fan-out fetch failed: %s",
                    outcome,
                    extra={"kind": request.kind.value, "target": request.target},
                )
            elif isinstance(outcome, list):
                merged.extend(outcome)
            else:
                merged.append(outcome)
        return merged

    async def fetch_with_fallback(self, primary: FetchRequest, fallback: FetchRequest) -> Any:
        """Fetch *primary*; on breaker or retry exhaustion fetch *fallback*."""
        try:
            return await self.fetch(primary)
        except (UpstreamUnavailableError, ExhaustedRetriesError) as exc:
            logger.warning(
                "Primary fetch failed (%s), using fallback",
                exc.__class__.__name__,
                extra={"target": primary.target},
            )
            return await self.fetch(fallback)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def scale_pool(self, target_size: int) -> int:
        """Resize the worker pool; returns the size after clamping."""
        return await self._pool.scale(target_size)

    async def rotate_proxies(self) -> None:
        """Refresh the proxy list and rebuild every worker on new proxies."""
        await self._proxy_manager.refresh()
        await self._pool.rotate()

    def breaker_state(self, target: str) -> CircuitState:
        return self._breakers.get_state(target)

    def breaker_states(self) -> dict[str, CircuitState]:
        return self._breakers.get_all_states()

    def breaker_retry_after(self, target: str) -> float:
        """Seconds until *target*'s open breaker admits its trial call."""
        return self._breakers.get(target).retry_after() if target in self.breaker_states() else 0.0

    async def update_config(self, partial: dict[str, Any]) -> RuntimeConfig:
        """Validate and apply a partial runtime config update."""
        old = self._config.current
        new = self._config.update(partial)
        if (old.pool_min_size, old.pool_max_size) != (new.pool_min_size, new.pool_max_size):
            await self._pool.scale(self._pool.size)
        return new

    def get_stats(self) -> dict:
        """Aggregate component statistics."""
        return {
            "pool": self._pool.get_stats(),
            "queue": self._queue.get_stats(),
            "cache": self._cache.get_stats(),
            "proxies": self._proxy_manager.get_stats(),
            "breakers": {target: state.value for target, state in self.breaker_states().items()},
            "inflight": len(self._inflight),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start proxies, pool, queue and the background loops."""
        if self._started:
            return
        await self._proxy_manager.start()
        await self._pool.init(self._pool_size)
        await self._queue.start()
        self._loops = [
            asyncio.create_task(self._autoscale_loop(), name="pool-autoscale"),
            asyncio.create_task(self._cache_sweep_loop(), name="cache-sweep"),
        ]
        self._started = True
        logger.info("Fetch orchestrator started")

    async def shutdown(self) -> None:
        """Drain the queue, stop background work and close the pool."""
        if not self._started:
            return
        self._started = False
        await self._queue.drain(timeout=self._graceful_shutdown)

        pending = list(self._loops)
        if self._rotation is not None and not self._rotation.done():
            pending.append(self._rotation)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._loops = []

        await self._proxy_manager.stop()
        await self._pool.shutdown()
        logger.info("Fetch orchestrator shut down")

    async def _autoscale_loop(self) -> None:
        while True:
            await asyncio.sleep(self._autoscale_interval)
            try:
                target = self._pool.target_size_for(self._queue.depth, self._pool.busy_count)
                if target != self._pool.size:
                    await self._pool.scale(target)
            except Exception:
                logger.exception("Autoscale iteration failed")

    async def _cache_sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cache_sweep_interval)
            try:
                await self._cache.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _note_exhaustion(self) -> None:
        """Start a background rotation after too many exhausted fetches in a row."""
        self._consecutive_exhaustions += 1
        threshold = self._config.current.rotate_after_failures
        if self._consecutive_exhaustions < threshold:
            return
        if self._rotation is not None and not self._rotation.done():
            return
        self._consecutive_exhaustions = 0
        logger.warning("%d consecutive fetch failures, rotating proxies", threshold)
        self._rotation = asyncio.create_task(self._rotate_in_background(), name="proxy-rotation")

    async def _rotate_in_background(self) -> None:
        try:
            await self.rotate_proxies()
        except Exception:
            logger.exception("Background proxy rotation failed")

    def _on_breaker_transition(self, target: str, old: CircuitState, new: CircuitState) -> None:
        self._hooks.fire("on_breaker_transition", target, old, new)

    def _on_attempt_complete(self, task: Task, error: BaseException | None) -> None:
        if error is None:
            outcome = "success"
        elif isinstance(error, FetchTimeoutError):
            outcome = "timeout"
        else:
            outcome = "failure"
        self._hooks.fire("on_attempt", task.request.kind, outcome)

    def _apply_config(self, old: RuntimeConfig, new: RuntimeConfig) -> None:
        self._breakers.reconfigure(new.cb_max_failures, new.cb_cooldown_seconds)
        self._pool.set_bounds(new.pool_min_size, new.pool_max_size)
        self._retry_policy = self._build_retry_policy(new)

    def _build_retry_policy(self, config: RuntimeConfig) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay_seconds,
            jitter=config.retry_jitter_seconds,
            rng=self._rng,
        )
