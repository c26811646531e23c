"""Unit tests for the linear-backoff retry policy."""

from __future__ import annotations

import random

import pytest

from animescrape.resilience.retry import RetryPolicy


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    def test_rejects_invalid_parameters(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)

    def test_linear_delays(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        assert [policy.delay_for(k) for k in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_jitter_is_bounded(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.5, rng=random.Random(7))
        for _ in range(50):
            assert 2.0 <= policy.delay_for(2) <= 2.5

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        recorder = _Recorder()
        calls = []

        async def op(attempt: int) -> str:
            calls.append(attempt)
            return "ok"

        result = await RetryPolicy(max_attempts=3).run(op, sleep=recorder.sleep)
        assert result == "ok"
        assert calls == [1]
        assert recorder.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        recorder = _Recorder()

        async def op(attempt: int) -> int:
            if attempt < 3:
                raise ConnectionError("flaky")
            return attempt

        result = await RetryPolicy(max_attempts=3, base_delay=1.0).run(op, sleep=recorder.sleep)
        assert result == 3
        assert recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_surfaces_last_error_after_n_attempts(self):
        recorder = _Recorder()
        calls = []

        async def op(attempt: int) -> None:
            calls.append(attempt)
            raise ValueError(f"attempt {attempt}")

        with pytest.raises(ValueError, match="attempt 3"):
            await RetryPolicy(max_attempts=3, base_delay=1.0).run(op, sleep=recorder.sleep)
        assert calls == [1, 2, 3]
        assert recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        recorder = _Recorder()
        calls = []

        async def op(attempt: int) -> None:
            calls.append(attempt)
            raise KeyError("fatal")

        with pytest.raises(KeyError):
            await RetryPolicy(max_attempts=5).run(
                op,
                should_retry=lambda exc: not isinstance(exc, KeyError),
                sleep=recorder.sleep,
            )
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_on_retry_hook(self):
        recorder = _Recorder()
        seen = []

        async def op(attempt: int) -> str:
            if attempt == 1:
                raise OSError("reset")
            return "ok"

        await RetryPolicy(max_attempts=2, base_delay=0.5).run(
            op,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, type(exc), delay)),
            sleep=recorder.sleep,
        )
        assert seen == [(1, OSError, 0.5)]
