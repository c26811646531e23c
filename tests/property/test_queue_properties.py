"""Property tests for the FIFO task queue.

Validates dispatch order, the bound on concurrent fetches, and that every
submitted task settles exactly once.
"""

from __future__ import annotations

import asyncio
import random

from hypothesis import given, settings
from hypothesis import strategies as st

from animescrape.browser.backends import WorkerBackend
from animescrape.browser.pool import WorkerPool
from animescrape.models.requests import FetchRequest
from animescrape.proxy.manager import ProxyManager
from animescrape.services.task_queue import Task, TaskQueue


class RecordingBackend(WorkerBackend):
    def __init__(self, failing: set[str] | None = None) -> None:
        self.order: list[str] = []
        self.failing = failing or set()
        self.active = 0
        self.max_active = 0

    async def launch(self, proxy_url, user_agent):
        return object()

    async def fetch(self, session, url, timeout):
        self.order.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if url in self.failing:
                raise RuntimeError(url)
            return url
        finally:
            self.active -= 1

    async def close(self, session):
        pass


def _task(url: str) -> Task:
    return Task(request=FetchRequest(target=url), url=url)


async def _queue_over(backend: WorkerBackend, workers: int) -> TaskQueue:
    pool = WorkerPool(backend, ProxyManager(), min_size=1, max_size=20, rng=random.Random(0))
    await pool.init(workers)
    queue = TaskQueue(pool, task_timeout_seconds=5)
    await queue.start()
    return queue


@settings(max_examples=100, deadline=None)
@given(n=st.integers(min_value=1, max_value=30))
def test_single_worker_dispatches_in_fifo_order(n: int) -> None:
    urls = [f"https://example.com/{i}" for i in range(n)]
    backend = RecordingBackend()

    async def _run() -> None:
        queue = await _queue_over(backend, workers=1)
        futures = [await queue.enqueue(_task(url)) for url in urls]
        await asyncio.gather(*futures)
        await queue.drain(timeout=5)

    asyncio.run(_run())
    assert backend.order == urls


@settings(max_examples=100, deadline=None)
@given(
    workers=st.integers(min_value=1, max_value=8),
    n=st.integers(min_value=1, max_value=40),
    data=st.data(),
)
def test_concurrency_bounded_and_all_settle(workers: int, n: int, data: st.DataObject) -> None:
    urls = [f"https://example.com/{i}" for i in range(n)]
    failing = set(data.draw(st.lists(st.sampled_from(urls), max_size=n, unique=True)))
    backend = RecordingBackend(failing)

    async def _run() -> tuple[list, dict]:
        queue = await _queue_over(backend, workers=workers)
        results = await asyncio.gather(
            *(queue.submit(_task(url)) for url in urls), return_exceptions=True
        )
        await queue.drain(timeout=5)
        return results, queue.get_stats()

    results, stats = asyncio.run(_run())

    assert backend.max_active <= workers
    assert sorted(backend.order) == sorted(urls)
    for url, result in zip(urls, results):
        if url in failing:
            assert isinstance(result, RuntimeError)
        else:
            assert result == url
    assert stats["completed"] == n - len(failing)
    assert stats["failed"] == len(failing)
    assert stats["depth"] == 0
    assert stats["running"] == 0
