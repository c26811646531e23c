"""In-memory TTL result cache keyed by request fingerprint.

Expiry is passive: a read past ``expires_at`` is a miss and drops the entry.
``sweep()`` clears expired entries in bulk. When ``max_entries`` is reached
the entry closest to expiry is evicted first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float  # clock() value


class ResultCache:
    """TTL key-value store guarded by an ``asyncio.Lock``."""

    def __init__(
        self,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        """Return the cached value for *key*, or None if absent or expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store *value* for *ttl* seconds. None values are not stored."""
        if value is None or ttl <= 0:
            return
        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_one()
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def _evict_one(self) -> None:
        victim = min(self._entries.values(), key=lambda entry: entry.expires_at)
        del self._entries[victim.key]

    def get_stats(self) -> dict:
        return {
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
        }
