"""Bounded FIFO task queue with backpressure and worker dispatch.

``enqueue`` admits a task only while queued plus running tasks stay below
``max_concurrency``; otherwise the caller waits (optionally with a timeout)
until capacity frees. A single dispatch loop acquires an idle worker from
the WorkerPool first and only then pops the oldest live task, so a task
never waits in hand for a worker.

Each task runs under its per-attempt timeout. A timed-out or cancelled
execution recycles the worker that ran it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from animescrape.middleware.error_handler import FetchTimeoutError, PoolExhaustedError
from animescrape.models.requests import FetchRequest

if TYPE_CHECKING:
    from animescrape.browser.pool import WorkerHandle, WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Task:
    """One unit of fetch work. Re-enqueued once per attempt."""

    request: FetchRequest
    url: str
    timeout: float | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    enqueued_at: float = 0.0
    attempts: int = 0
    future: asyncio.Future[str] | None = field(default=None, repr=False)


TaskCallback = Callable[[Task, "BaseException | None"], None]


class TaskQueue:
    """FIFO queue feeding the worker pool.

    Parameters
    ----------
    worker_pool:
        Pool the dispatch loop acquires workers from.
    max_concurrency:
        Maximum queued plus running tasks. ``enqueue`` blocks beyond this.
    task_timeout_seconds:
        Default per-attempt timeout for tasks that do not carry their own.
    enqueue_timeout_seconds:
        How long ``enqueue`` may wait for capacity before raising
        ``PoolExhaustedError``. None waits forever.
    on_task_complete:
        Optional ``callback(task, error)`` invoked after each execution. Kept
        as a public attribute so the owner can install it after construction.
    """

    def __init__(
        self,
        worker_pool: WorkerPool,
        *,
        max_concurrency: int = 100,
        task_timeout_seconds: float = 15.0,
        enqueue_timeout_seconds: float | None = None,
        on_task_complete: TaskCallback | None = None,
    ) -> None:
        self._pool = worker_pool
        self._max_concurrency = max_concurrency
        self._task_timeout = task_timeout_seconds
        self._enqueue_timeout = enqueue_timeout_seconds
        self.on_task_complete = on_task_complete

        self._capacity = asyncio.Semaphore(max_concurrency)
        self._pending: deque[Task] = deque()
        self._work = asyncio.Event()
        self._running: set[asyncio.Task[None]] = set()
        self._dispatcher: asyncio.Task[None] | None = None
        self._draining = False

        # Stats tracking
        self._completed_count = 0
        self._failed_count = 0
        self._total_duration_ms = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        """Tasks waiting for a worker."""
        return len(self._pending)

    @property
    def running(self) -> int:
        return len(self._running)

    async def enqueue(self, task: Task) -> asyncio.Future[str]:
        """Admit *task* and return the future that resolves with its content.

        Raises
        ------
        PoolExhaustedError
            If the queue is draining or capacity did not free in time.
        """
        if self._draining:
            raise PoolExhaustedError("Task queue is draining, not accepting new tasks")

        try:
            if self._enqueue_timeout is None:
                await self._capacity.acquire()
            else:
                await asyncio.wait_for(self._capacity.acquire(), timeout=self._enqueue_timeout)
        except asyncio.TimeoutError:
            raise PoolExhaustedError(
                f"Task queue at capacity ({self._max_concurrency}) "
                f"for {self._enqueue_timeout}s"
            )

        task.attempts += 1
        task.enqueued_at = time.monotonic()
        task.future = asyncio.get_running_loop().create_future()
        self._pending.append(task)
        self._work.set()
        logger.debug(
            "Enqueued task %s (attempt=%d, queue_depth=%d)",
            task.id,
            task.attempts,
            len(self._pending),
            extra={"target": task.url, "attempt": task.attempts},
        )
        return task.future

    async def submit(self, task: Task) -> str:
        """Enqueue *task* and wait for its content.

        Cancelling the caller cancels the task: a queued task is skipped and
        a running one is interrupted and its worker recycled.
        """
        future = await self.enqueue(task)
        return await future

    async def start(self) -> None:
        """Start the dispatch loop."""
        if self._dispatcher is not None:
            logger.warning("Dispatch loop already started, skipping")
            return
        self._draining = False
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="task-queue-dispatch")
        logger.info("Task queue started (max_concurrency=%d)", self._max_concurrency)

    async def drain(self, timeout: float = 30.0) -> None:
        """Stop accepting tasks and wait for queued and running tasks.

        Anything still unfinished after *timeout* seconds is cancelled.
        """
        self._draining = True
        logger.info("Draining task queue (timeout=%.1fs)...", timeout)

        try:
            await asyncio.wait_for(self._wait_until_idle(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Drain timed out: %d queued, %d running tasks abandoned",
                len(self._pending),
                len(self._running),
            )
            while self._pending:
                task = self._pending.popleft()
                self._capacity.release()
                if task.future is not None and not task.future.done():
                    task.future.set_exception(PoolExhaustedError("Task queue drained"))
            for runner in list(self._running):
                runner.cancel()
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        logger.info("Task queue drained")

    def get_stats(self) -> dict:
        """Return current queue statistics."""
        finished = self._completed_count + self._failed_count
        avg_ms = self._total_duration_ms / finished if finished > 0 else 0.0
        return {
            "depth": len(self._pending),
            "running": len(self._running),
            "max_concurrency": self._max_concurrency,
            "completed": self._completed_count,
            "failed": self._failed_count,
            "avg_duration_ms": round(avg_ms, 2),
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _wait_until_idle(self) -> None:
        while self._pending or self._running:
            if self._running:
                await asyncio.wait(set(self._running))
            else:
                await asyncio.sleep(0.01)

    async def _dispatch_loop(self) -> None:
        """Pair the oldest live task with an idle worker, forever."""
        while True:
            while not self._pending:
                self._work.clear()
                await self._work.wait()

            try:
                handle = await self._pool.acquire()
            except PoolExhaustedError:
                logger.error("Worker pool unavailable, dispatch loop stopping")
                return

            task = self._pop_live()
            if task is None:
                await self._pool.release(handle)
                continue

            runner = asyncio.create_task(self._run(task, handle), name=f"task-{task.id}")
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)
            assert task.future is not None
            task.future.add_done_callback(lambda f, r=runner: _cancel_if_abandoned(f, r))

    def _pop_live(self) -> Task | None:
        """Pop the oldest task whose caller is still waiting."""
        while self._pending:
            task = self._pending.popleft()
            if task.future is not None and task.future.done():
                # Caller gave up while queued
                self._capacity.release()
                logger.debug("Skipping cancelled task %s", task.id)
                continue
            return task
        return None

    async def _run(self, task: Task, handle: WorkerHandle) -> None:
        """Execute *task* on *handle* and settle the task's future.

        The caller is answered and the queue slot freed before the worker
        goes back to the pool, so recycling never delays a result.
        """
        timeout = task.timeout if task.timeout is not None else self._task_timeout
        start = time.monotonic()
        recycle = False

        try:
            content = await asyncio.wait_for(
                self._pool.run_on(handle, task.url, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            recycle = True
            self._settle(
                task,
                handle,
                start,
                error=FetchTimeoutError(
                    f"Fetch of {task.url} timed out after {timeout}s",
                    url=task.url,
                    timeout=timeout,
                ),
            )
        except asyncio.CancelledError as exc:
            recycle = True
            self._settle(task, handle, start, error=exc)
            raise
        except Exception as exc:
            self._settle(task, handle, start, error=exc)
        else:
            self._settle(task, handle, start, content=content)
        finally:
            await self._pool.release(handle, recycle=recycle)

    def _settle(
        self,
        task: Task,
        handle: WorkerHandle,
        start: float,
        *,
        content: Any = None,
        error: BaseException | None = None,
    ) -> None:
        handle.tasks_processed += 1
        self._capacity.release()
        self._record(task, handle, error, (time.monotonic() - start) * 1000)

        assert task.future is not None
        if task.future.done():
            # Caller already gone
            return
        if isinstance(error, asyncio.CancelledError):
            reason = "Task queue drained" if self._draining else "Task cancelled"
            task.future.set_exception(PoolExhaustedError(reason))
        elif error is None:
            task.future.set_result(content)
        else:
            task.future.set_exception(error)

    def _record(
        self,
        task: Task,
        handle: WorkerHandle,
        error: BaseException | None,
        duration_ms: float,
    ) -> None:
        self._total_duration_ms += duration_ms
        if error is None:
            self._completed_count += 1
            logger.debug(
                "Task %s completed",
                task.id,
                extra={"worker_id": handle.id, "duration_ms": round(duration_ms, 2)},
            )
        else:
            self._failed_count += 1
            logger.info(
                "Task %s failed on attempt %d: %s",
                task.id,
                task.attempts,
                error.__class__.__name__,
                extra={
                    "target": task.url,
                    "attempt": task.attempts,
                    "worker_id": handle.id,
                    "proxy_used": handle.proxy,
                    "duration_ms": round(duration_ms, 2),
                    "error_reason": str(error),
                },
            )

        if self.on_task_complete is not None:
            try:
                self.on_task_complete(task, error)
            except Exception:
                logger.exception("on_task_complete callback error for task %s", task.id)


def _cancel_if_abandoned(future: asyncio.Future[str], runner: asyncio.Task[None]) -> None:
    if future.cancelled() and not runner.done():
        runner.cancel()
