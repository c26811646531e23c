"""Elastic worker pool.

Manages a pool of worker handles, each owning one backend session (a
headless browser or an HTTP client) bound to one proxy and one user agent
for its whole life. Handles track tasks processed and are recycled after a
configurable threshold to prevent memory leaks. The pool grows and shrinks
between a floor and a ceiling; shrinking retires the newest handles first.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from animescrape.middleware.error_handler import PoolExhaustedError

if TYPE_CHECKING:
    from animescrape.browser.backends import WorkerBackend
    from animescrape.proxy.manager import ProxyManager

logger = logging.getLogger(__name__)


@dataclass
class WorkerHandle:
    """A single managed worker in the pool."""

    id: str
    proxy: str | None
    user_agent: str
    session: Any  # backend session; None once closed
    created_seq: int
    busy: bool = False
    retired: bool = False
    tasks_processed: int = 0
    created_at: float = field(default_factory=time.monotonic)

    def needs_recycling(self, task_limit: int) -> bool:
        """Return ``True`` if this handle should be replaced."""
        return self.tasks_processed >= task_limit


class WorkerPool:
    """Pool of worker handles with LIFO shrink and full rotation.

    Lifecycle
    ---------
    1. ``init(size)``: launch *size* handles (clamped to the bounds).
    2. ``acquire(timeout)``: mark a random idle handle busy (waits if none).
    3. ``release(handle)``: return it; closes and replaces it if needed.
    4. ``scale(n)`` / ``rotate()``: resize or rebuild under the resize lock.
    5. ``shutdown()``: close every handle and the backend.
    """

    def __init__(
        self,
        backend: WorkerBackend,
        proxy_manager: ProxyManager,
        *,
        min_size: int = 5,
        max_size: int = 30,
        task_limit: int = 100,
        close_timeout_seconds: float = 10.0,
        rng: random.Random | None = None,
    ) -> None:
        if min_size < 1 or min_size > max_size:
            raise ValueError("pool bounds must satisfy 1 <= min_size <= max_size")
        self._backend = backend
        self._proxy_manager = proxy_manager
        self._min_size = min_size
        self._max_size = max_size
        self._task_limit = task_limit
        self._close_timeout = close_timeout_seconds
        self._rng = rng or random.Random()

        self._handles: list[WorkerHandle] = []  # live, non-retired
        self._cond = asyncio.Condition()
        self._resize_lock = asyncio.Lock()
        self._seq = 0
        self._recycled_count = 0
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._handles)

    @property
    def busy_count(self) -> int:
        return sum(1 for h in self._handles if h.busy)

    @property
    def idle_count(self) -> int:
        return self.size - self.busy_count

    @property
    def bounds(self) -> tuple[int, int]:
        return self._min_size, self._max_size

    def clamp(self, size: int) -> int:
        """Clamp *size* to ``[min_size, max_size]``."""
        return max(self._min_size, min(self._max_size, size))

    def target_size_for(self, pending: int, busy: int) -> int:
        """Desired pool size for the given queue depth and busy workers."""
        return self.clamp(busy + pending)

    # ------------------------------------------------------------------
    # init / scale / rotate
    # ------------------------------------------------------------------

    async def init(self, size: int) -> None:
        """Start the backend and launch the initial set of handles."""
        target = self.clamp(size)
        await self._backend.start()
        async with self._resize_lock:
            handles = [await self._launch_handle() for _ in range(target)]
            async with self._cond:
                self._handles.extend(handles)
                self._cond.notify_all()
        logger.info(
            "Worker pool initialized: size=%d, bounds=[%d, %d], task_limit=%d",
            target,
            self._min_size,
            self._max_size,
            self._task_limit,
        )

    async def scale(self, target_size: int) -> int:
        """Grow or shrink toward *target_size*; returns the resulting size."""
        target = self.clamp(target_size)
        async with self._resize_lock:
            current = self.size
            if target > current:
                launched = await self._launch_many(target - current)
                async with self._cond:
                    self._handles.extend(launched)
                    self._cond.notify_all()
            elif target < current:
                async with self._cond:
                    victims = sorted(self._handles, key=lambda h: h.created_seq, reverse=True)
                    victims = victims[: current - target]
                    for handle in victims:
                        handle.retired = True
                        self._handles.remove(handle)
                idle_victims = [h for h in victims if not h.busy]
                for handle in idle_victims:
                    await self._close_handle(handle)
            if target != current:
                logger.info("Worker pool scaled %d -> %d", current, self.size)
            return self.size

    async def rotate(self) -> None:
        """Replace every handle with a fresh one bound to a new proxy."""
        async with self._resize_lock:
            old = list(self._handles)
            fresh = await self._launch_many(len(old))
            async with self._cond:
                for handle in old:
                    handle.retired = True
                    if handle in self._handles:
                        self._handles.remove(handle)
                self._handles.extend(fresh)
                self._cond.notify_all()
            for handle in old:
                if not handle.busy:
                    await self._close_handle(handle)
        logger.info("Worker pool rotated: %d handles replaced", len(old))

    def set_bounds(self, min_size: int, max_size: int) -> None:
        """Apply new bounds; callers resize with ``scale(size)`` afterwards."""
        if min_size < 1 or min_size > max_size:
            raise ValueError("pool bounds must satisfy 1 <= min_size <= max_size")
        self._min_size = min_size
        self._max_size = max_size

    # ------------------------------------------------------------------
    # acquire / release
    # ------------------------------------------------------------------

    async def acquire(self, timeout: float | None = None) -> WorkerHandle:
        """Return an idle handle marked busy.

        Blocks up to *timeout* seconds (forever if None). Raises
        :class:`PoolExhaustedError` if no handle becomes idle in time.
        """
        if timeout is None:
            return await self._wait_for_idle()
        try:
            return await asyncio.wait_for(self._wait_for_idle(), timeout=timeout)
        except asyncio.TimeoutError:
            raise PoolExhaustedError(f"No worker available within {timeout}s timeout")

    async def _wait_for_idle(self) -> WorkerHandle:
        async with self._cond:
            while True:
                if self._shutting_down:
                    raise PoolExhaustedError("Worker pool is shutting down")
                idle = [h for h in self._handles if not h.busy]
                if idle:
                    handle = self._rng.choice(idle)
                    handle.busy = True
                    logger.debug("Acquired worker %s", handle.id, extra={"worker_id": handle.id})
                    return handle
                await self._cond.wait()

    async def release(self, handle: WorkerHandle, *, recycle: bool = False) -> None:
        """Return *handle* to the pool.

        A handle that is retired, asked to be recycled, or over its task limit
        is closed. Recycled and over-limit handles are replaced.
        """
        close = (
            recycle
            or handle.retired
            or self._shutting_down
            or handle.needs_recycling(self._task_limit)
        )
        if not close:
            async with self._cond:
                handle.busy = False
                self._cond.notify()
            return

        replace = not handle.retired and not self._shutting_down
        async with self._cond:
            if handle in self._handles:
                self._handles.remove(handle)
            handle.busy = False
            handle.retired = True
        await self._close_handle(handle)

        if not replace:
            return

        self._recycled_count += 1
        logger.info(
            "Recycling worker %s after %d tasks",
            handle.id,
            handle.tasks_processed,
            extra={"worker_id": handle.id},
        )
        try:
            replacement = await self._launch_handle()
        except Exception:
            logger.error("Failed to launch replacement for worker %s", handle.id, exc_info=True)
            return
        async with self._cond:
            if self._shutting_down:
                replacement.retired = True
            else:
                self._handles.append(replacement)
                self._cond.notify()
        if replacement.retired:
            await self._close_handle(replacement)

    async def run_on(self, handle: WorkerHandle, url: str, timeout: float) -> str:
        """Fetch *url* with the session owned by *handle*."""
        return await self._backend.fetch(handle.session, url, timeout)

    # ------------------------------------------------------------------
    # shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every handle and stop the backend."""
        self._shutting_down = True
        logger.info("Shutting down worker pool...")
        async with self._cond:
            handles = list(self._handles)
            self._handles.clear()
            for handle in handles:
                handle.retired = True
            self._cond.notify_all()
        for handle in handles:
            await self._close_handle(handle)
        await self._backend.shutdown()
        logger.info("Worker pool shut down")

    # ------------------------------------------------------------------
    # get_stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Return pool statistics for the health endpoint."""
        busy = self.busy_count
        return {
            "size": self.size,
            "busy": busy,
            "idle": self.size - busy,
            "min_size": self._min_size,
            "max_size": self._max_size,
            "recycled_count": self._recycled_count,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _launch_handle(self) -> WorkerHandle:
        proxy = self._proxy_manager.next_proxy()
        proxy_url = proxy.address if proxy is not None else None
        user_agent = self._proxy_manager.random_user_agent()
        session = await self._backend.launch(proxy_url, user_agent)

        self._seq += 1
        handle = WorkerHandle(
            id=str(uuid4()),
            proxy=proxy_url,
            user_agent=user_agent,
            session=session,
            created_seq=self._seq,
        )
        logger.debug(
            "Launched worker %s",
            handle.id,
            extra={"worker_id": handle.id, "proxy_used": proxy_url},
        )
        return handle

    async def _launch_many(self, count: int) -> list[WorkerHandle]:
        results = await asyncio.gather(
            *(self._launch_handle() for _ in range(count)),
            return_exceptions=True,
        )
        handles: list[WorkerHandle] = []
        for result in results:
            if isinstance(result, Exception):
                logger.error("Failed to launch worker: %s", result)
            elif isinstance(result, BaseException):
                raise result
            else:
                handles.append(result)
        return handles

    async def _close_handle(self, handle: WorkerHandle) -> None:
        if handle.session is None:
            return
        session, handle.session = handle.session, None
        try:
            # A hung worker may never finish closing
            await asyncio.wait_for(self._backend.close(session), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Worker %s did not close within %.1fs, abandoning it",
                handle.id,
                self._close_timeout,
                extra={"worker_id": handle.id},
            )
        except Exception:
            logger.debug("Error closing worker %s", handle.id, exc_info=True)
