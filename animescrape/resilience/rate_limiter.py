"""Keyed token bucket rate limiter.

One bucket per key with a configurable capacity and refill interval. The
same limiter serves two roles:

- upstream politeness: ``acquire(upstream)`` blocks (async sleep) until a
  token is available, so each upstream host sees a bounded request rate;
- caller limiting: ``check(client)`` never blocks and raises
  ``RateLimitedError`` (HTTP 429) with a retry-after hint when the client's
  bucket is empty.

Rate limiting on one key does not affect other keys.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from animescrape.middleware.error_handler import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """Token bucket state for a single key."""

    key: str
    tokens: float
    max_tokens: int
    refill_rate: float  # tokens per second
    last_refill: float  # time.monotonic()


class TokenBucketLimiter:
    """Per-key token bucket rate limiter.

    Args:
        tokens: Bucket capacity (burst size) per key.
        interval_seconds: Seconds to refill a full bucket.
        max_keys: Buckets kept before idle full buckets are dropped.
    """

    def __init__(
        self,
        tokens: int = 3,
        interval_seconds: float = 1.0,
        max_keys: int = 10_000,
    ) -> None:
        self._tokens = tokens
        self._interval = interval_seconds
        self._max_keys = max_keys
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    @property
    def refill_rate(self) -> float:
        return self._tokens / self._interval if self._interval > 0 else float(self._tokens)

    def _get_or_create_bucket(self, key: str) -> TokenBucket:
        """Get existing bucket for a key or create a full one."""
        bucket = self._buckets.get(key)
        if bucket is None:
            if len(self._buckets) >= self._max_keys:
                self._prune()
            bucket = TokenBucket(
                key=key,
                tokens=float(self._tokens),
                max_tokens=self._tokens,
                refill_rate=self.refill_rate,
                last_refill=time.monotonic(),
            )
            self._buckets[key] = bucket
        return bucket

    def _refill(self, bucket: TokenBucket) -> None:
        """Refill tokens based on elapsed time since last refill."""
        now = time.monotonic()
        elapsed = now - bucket.last_refill
        if elapsed <= 0:
            return
        bucket.tokens = min(bucket.tokens + elapsed * bucket.refill_rate, float(bucket.max_tokens))
        bucket.last_refill = now

    def _prune(self) -> None:
        """Drop buckets that have refilled completely; they carry no state."""
        for key in list(self._buckets):
            bucket = self._buckets[key]
            self._refill(bucket)
            if bucket.tokens >= bucket.max_tokens:
                del self._buckets[key]

    def _wait_time(self, bucket: TokenBucket) -> float:
        if bucket.refill_rate <= 0:
            return 1.0
        return (1.0 - bucket.tokens) / bucket.refill_rate

    def try_acquire(self, key: str) -> bool:
        """Take a token for *key* if one is available; never blocks."""
        bucket = self._get_or_create_bucket(key)
        self._refill(bucket)
        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return True
        return False

    def check(self, key: str) -> None:
        """Take a token for *key* or raise ``RateLimitedError``."""
        if not self.try_acquire(key):
            retry_after = self._wait_time(self._buckets[key])
            logger.info("Rate limit exceeded for %s (retry in %.2fs)", key, retry_after)
            raise RateLimitedError(retry_after=retry_after)

    async def acquire(self, key: str) -> None:
        """Block until a token is available for *key*."""
        while True:
            async with self._lock:
                bucket = self._get_or_create_bucket(key)
                self._refill(bucket)

                if bucket.tokens >= 1.0:
                    bucket.tokens -= 1.0
                    return

                wait_time = self._wait_time(bucket)

            # Sleep outside the lock so other keys can proceed
            await asyncio.sleep(wait_time)

    def get_stats(self, key: str) -> dict:
        """Current tokens and capacity for *key* (a full bucket if unknown)."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return {
                "current_tokens": float(self._tokens),
                "max_tokens": self._tokens,
                "refill_rate": self.refill_rate,
            }
        self._refill(bucket)
        return {
            "current_tokens": bucket.tokens,
            "max_tokens": bucket.max_tokens,
            "refill_rate": bucket.refill_rate,
        }
