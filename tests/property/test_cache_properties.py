"""Property tests for the TTL result cache."""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from animescrape.services.cache import ResultCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


ttls = st.integers(min_value=1, max_value=7200)
keys = st.text(alphabet="abcdef0123456789", min_size=1, max_size=8)


@settings(max_examples=100)
@given(ttl=ttls, elapsed=st.floats(min_value=0, max_value=10_000, allow_nan=False))
def test_entry_visible_only_before_expiry(ttl: int, elapsed: float) -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)

    async def _run() -> object:
        await cache.set("k", "v", ttl)
        clock.now += elapsed
        return await cache.get("k")

    result = asyncio.run(_run())
    assert result == ("v" if elapsed < ttl else None)


@settings(max_examples=100)
@given(
    max_entries=st.integers(min_value=1, max_value=10),
    writes=st.lists(st.tuples(keys, ttls), min_size=1, max_size=40),
)
def test_size_never_exceeds_capacity(max_entries: int, writes: list[tuple[str, int]]) -> None:
    cache = ResultCache(max_entries=max_entries, clock=FakeClock())

    async def _run() -> None:
        for key, ttl in writes:
            await cache.set(key, key, ttl)
            assert len(cache) <= max_entries
        # The last write always survives
        last_key = writes[-1][0]
        assert await cache.get(last_key) == last_key

    asyncio.run(_run())


@settings(max_examples=100)
@given(entries=st.dictionaries(keys, ttls, min_size=1, max_size=20), at=st.integers(min_value=0, max_value=8000))
def test_sweep_removes_exactly_expired(entries: dict[str, int], at: int) -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)

    async def _run() -> int:
        for key, ttl in entries.items():
            await cache.set(key, key, ttl)
        clock.now = at
        return await cache.sweep()

    removed = asyncio.run(_run())
    assert removed == sum(1 for ttl in entries.values() if ttl <= at)
    assert len(cache) == len(entries) - removed
