"""Retry policy with linear backoff.

One policy object is shared by every fetch path. Attempt ``k`` (1-based)
that fails is followed by a sleep of ``k * base_delay`` seconds plus up to
``jitter`` seconds of random spread; the last attempt's error propagates
unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Parameters for ``run``.

    Args:
        max_attempts: Total attempts including the first (>= 1).
        base_delay: Seconds multiplied by the attempt number between attempts.
        jitter: Upper bound of uniform random seconds added to each delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 0.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.jitter < 0:
            raise ValueError("base_delay and jitter must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Backoff after failed attempt number *attempt* (1-based)."""
        delay = attempt * self.base_delay
        if self.jitter:
            delay += self.rng.uniform(0, self.jitter)
        return delay

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        should_retry: Callable[[Exception], bool] | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Call ``operation(attempt)`` until it succeeds or attempts run out.

        Errors for which ``should_retry`` returns False propagate at once.
        ``on_retry(attempt, error, delay)`` fires before each backoff sleep.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(attempt)
            except Exception as exc:
                if attempt >= self.max_attempts:
                    raise
                if should_retry is not None and not should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                await sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover
