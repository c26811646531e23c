"""Metrics hooks for the fetch core.

The core does not own reporting: it calls the optional callbacks on
``FetchHooks`` and a reporter decides what to do with them. ``FetchStats``
is the in-memory recorder that backs the ``/metrics`` endpoint.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from animescrape.models.requests import RequestKind
from animescrape.resilience.circuit_breaker import CircuitState

logger = logging.getLogger(__name__)

# Fetch-duration histogram buckets, in seconds
DURATION_BUCKETS: tuple[float, ...] = (0.1, 0.5, 1.0, 2.0, 5.0)


@dataclass
class FetchHooks:
    """Optional callbacks fired by the orchestrator."""

    on_cache_hit: Callable[[RequestKind], None] | None = None
    on_cache_miss: Callable[[RequestKind], None] | None = None
    on_coalesced: Callable[[RequestKind], None] | None = None
    on_fetch_duration: Callable[[RequestKind, float, str], None] | None = None
    on_attempt: Callable[[RequestKind, str], None] | None = None
    on_breaker_transition: Callable[[str, CircuitState, CircuitState], None] | None = None

    def fire(self, name: str, *args: Any) -> None:
        """Call hook *name* if set; a failing hook is logged, never raised."""
        hook = getattr(self, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception("Metrics hook %s failed", name)


@dataclass
class FetchStats:
    """In-memory counters and a fetch-duration histogram."""

    cache_hits: int = 0
    cache_misses: int = 0
    coalesced: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    bucket_counts: list[int] = field(default_factory=lambda: [0] * (len(DURATION_BUCKETS) + 1))
    duration_sum: float = 0.0
    breaker_transitions: int = 0

    def hooks(self) -> FetchHooks:
        """Build hooks that feed this recorder."""
        return FetchHooks(
            on_cache_hit=self._cache_hit,
            on_cache_miss=self._cache_miss,
            on_coalesced=self._coalesced,
            on_fetch_duration=self._fetch_duration,
            on_attempt=self._attempt,
            on_breaker_transition=self._breaker_transition,
        )

    def _cache_hit(self, _kind: RequestKind) -> None:
        self.cache_hits += 1

    def _cache_miss(self, _kind: RequestKind) -> None:
        self.cache_misses += 1

    def _coalesced(self, _kind: RequestKind) -> None:
        self.coalesced += 1

    def _fetch_duration(self, kind: RequestKind, seconds: float, outcome: str) -> None:
        label = f"{kind.value}:{outcome}"
        self.outcomes[label] = self.outcomes.get(label, 0) + 1
        self.duration_sum += seconds
        for index, bound in enumerate(DURATION_BUCKETS):
            if seconds <= bound:
                self.bucket_counts[index] += 1
                return
        self.bucket_counts[-1] += 1

    def _attempt(self, kind: RequestKind, outcome: str) -> None:
        label = f"{kind.value}:{outcome}"
        self.attempts[label] = self.attempts.get(label, 0) + 1

    def _breaker_transition(self, _target: str, _old: CircuitState, _new: CircuitState) -> None:
        self.breaker_transitions += 1

    def snapshot(self) -> dict:
        buckets = {f"le_{bound:g}": count for bound, count in zip(DURATION_BUCKETS, self.bucket_counts)}
        buckets["overflow"] = self.bucket_counts[-1]
        return {
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "coalesced": self.coalesced,
            "fetch_outcomes": dict(self.outcomes),
            "attempt_outcomes": dict(self.attempts),
            "fetch_duration_buckets": buckets,
            "fetch_duration_sum": round(self.duration_sum, 4),
            "breaker_transitions": self.breaker_transitions,
        }
