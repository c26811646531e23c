"""Unit tests for the keyed token bucket limiter."""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest

from animescrape.middleware.error_handler import RateLimitedError
from animescrape.resilience.rate_limiter import TokenBucketLimiter

_MONOTONIC = "animescrape.resilience.rate_limiter.time.monotonic"


class TestTryAcquire:
    def test_burst_up_to_capacity(self):
        limiter = TokenBucketLimiter(tokens=3, interval_seconds=1.0)
        with patch(_MONOTONIC, return_value=100.0):
            assert [limiter.try_acquire("a.com") for _ in range(4)] == [True, True, True, False]

    def test_refills_over_time(self):
        limiter = TokenBucketLimiter(tokens=2, interval_seconds=1.0)
        with patch(_MONOTONIC, return_value=100.0):
            limiter.try_acquire("a.com")
            limiter.try_acquire("a.com")
            assert limiter.try_acquire("a.com") is False
        with patch(_MONOTONIC, return_value=100.5):
            assert limiter.try_acquire("a.com") is True

    def test_keys_are_independent(self):
        limiter = TokenBucketLimiter(tokens=1, interval_seconds=60.0)
        with patch(_MONOTONIC, return_value=100.0):
            assert limiter.try_acquire("a.com") is True
            assert limiter.try_acquire("a.com") is False
            assert limiter.try_acquire("b.com") is True


class TestCheck:
    def test_raises_with_retry_after(self):
        limiter = TokenBucketLimiter(tokens=1, interval_seconds=60.0)
        with patch(_MONOTONIC, return_value=100.0):
            limiter.check("1.2.3.4")
            with pytest.raises(RateLimitedError) as exc_info:
                limiter.check("1.2.3.4")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == pytest.approx(60.0)


class TestAcquire:
    @pytest.mark.asyncio
    async def test_waits_for_token(self):
        limiter = TokenBucketLimiter(tokens=1, interval_seconds=0.05)
        start = time.monotonic()
        await limiter.acquire("a.com")
        await limiter.acquire("a.com")
        assert time.monotonic() - start >= 0.04


class TestStats:
    def test_unknown_key_reports_full_bucket(self):
        limiter = TokenBucketLimiter(tokens=3, interval_seconds=1.0)
        stats = limiter.get_stats("a.com")
        assert stats["current_tokens"] == 3.0
        assert stats["max_tokens"] == 3
        assert stats["refill_rate"] == 3.0

    def test_prunes_full_buckets_at_key_limit(self):
        limiter = TokenBucketLimiter(tokens=1, interval_seconds=1.0, max_keys=2)
        with patch(_MONOTONIC, return_value=100.0):
            limiter.try_acquire("a")
            limiter.try_acquire("b")
        with patch(_MONOTONIC, return_value=200.0):
            limiter.try_acquire("c")
        assert set(limiter._buckets) == {"c"}
