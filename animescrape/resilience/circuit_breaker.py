"""Per-upstream circuit breakers.

A ``CircuitBreaker`` guards a single upstream target and counts consecutive
failures; a ``CircuitBreakerRegistry`` lazily creates one breaker per target.

State machine:
- Closed → Open: consecutive failure count reaches ``max_failures``
- Open → Half-Open: ``cooldown_seconds`` elapse after the last failure
- Half-Open → Closed: the single trial call succeeds
- Half-Open → Open: the trial call fails
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from animescrape.middleware.error_handler import UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransitionHook = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one upstream target.

    Args:
        target: Name of the guarded upstream (used in errors and logs).
        max_failures: Consecutive failures that trip the breaker.
        cooldown_seconds: Time after the last failure before a trial is allowed.
        on_transition: Optional ``hook(target, old_state, new_state)``.
    """

    def __init__(
        self,
        target: str,
        max_failures: int = 5,
        cooldown_seconds: float = 30.0,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self.target = target
        self.max_failures = max_failures
        self.cooldown_seconds = cooldown_seconds
        self._on_transition = on_transition

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: float | None = None
        self._trial_in_flight = False
        # Bumped on every transition; tickets from an older generation are stale
        self._generation = 0

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def before_call(self) -> int:
        """Admit a call and return its ticket, or raise ``UpstreamUnavailableError``.

        - Closed: always admitted.
        - Open: admitted only once the cooldown has elapsed; the breaker moves
          to half-open and this call becomes the trial.
        - Half-open: rejected while the trial is still running.

        Pass the ticket back to ``record_success``, ``record_failure`` or
        ``release_trial``. Calls admitted before the last transition only
        update the counters; they never move the breaker.
        """
        if self.state == CircuitState.CLOSED:
            return self._generation

        if self.state == CircuitState.OPEN:
            remaining = self.retry_after()
            if remaining > 0:
                raise UpstreamUnavailableError(
                    f"Circuit open for upstream '{self.target}'",
                    target=self.target,
                    retry_after=remaining,
                )
            self._transition(CircuitState.HALF_OPEN)

        if self._trial_in_flight:
            raise UpstreamUnavailableError(
                f"Trial call already in flight for upstream '{self.target}'",
                target=self.target,
                retry_after=0.0,
            )
        self._trial_in_flight = True
        return self._generation

    def retry_after(self) -> float:
        """Seconds until an open breaker allows its trial call (0 otherwise)."""
        if self.state != CircuitState.OPEN or self.last_failure_time is None:
            return 0.0
        elapsed = time.monotonic() - self.last_failure_time
        return max(0.0, self.cooldown_seconds - elapsed)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _is_stale(self, ticket: int | None) -> bool:
        return ticket is not None and ticket != self._generation

    def record_success(self, ticket: int | None = None) -> None:
        """Reset the failure count; a successful trial closes the breaker."""
        self.failure_count = 0
        if self._is_stale(ticket):
            return
        if self.state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    def record_failure(self, ticket: int | None = None) -> None:
        """Count a failure; trip the breaker at the threshold or on a failed trial."""
        if self._is_stale(ticket):
            self.failure_count += 1
            return

        self.last_failure_time = time.monotonic()
        if self.state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN)
            return

        self.failure_count += 1
        if self.state == CircuitState.CLOSED and self.failure_count >= self.max_failures:
            self._transition(CircuitState.OPEN)

    def release_trial(self, ticket: int | None = None) -> None:
        """Give back an admitted trial whose call never reached the upstream."""
        if self._is_stale(ticket):
            return
        if self.state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        neutral: tuple[type[BaseException], ...] = (),
    ) -> T:
        """Run ``fn()`` behind the gate and record its outcome.

        Exceptions listed in *neutral* (and cancellation) mean the upstream
        was never reached: they hand the trial back instead of counting.
        """
        ticket = self.before_call()
        try:
            result = await fn()
        except neutral:
            self.release_trial(ticket)
            raise
        except Exception:
            self.record_failure(ticket)
            raise
        except BaseException:
            self.release_trial(ticket)
            raise
        self.record_success(ticket)
        return result

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state
        self._generation += 1
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "Circuit for %s: %s -> %s (failures=%d)",
            self.target,
            old_state.value,
            new_state.value,
            self.failure_count,
            extra={"upstream": self.target},
        )
        if self._on_transition is not None:
            try:
                self._on_transition(self.target, old_state, new_state)
            except Exception:
                logger.exception("on_transition callback error for %s", self.target)


class CircuitBreakerRegistry:
    """Lazily creates and keeps one breaker per upstream target.

    Breakers are never removed; cardinality is bounded by the number of
    distinct upstream hosts.
    """

    def __init__(
        self,
        max_failures: int = 5,
        cooldown_seconds: float = 30.0,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self._max_failures = max_failures
        self._cooldown_seconds = cooldown_seconds
        self._on_transition = on_transition
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, target: str) -> CircuitBreaker:
        """Get the breaker for *target*, creating a closed one if needed."""
        breaker = self._breakers.get(target)
        if breaker is None:
            breaker = CircuitBreaker(
                target,
                max_failures=self._max_failures,
                cooldown_seconds=self._cooldown_seconds,
                on_transition=self._on_transition,
            )
            self._breakers[target] = breaker
        return breaker

    def get_state(self, target: str) -> CircuitState:
        """Current state for *target*; CLOSED for unknown targets."""
        breaker = self._breakers.get(target)
        if breaker is None:
            return CircuitState.CLOSED
        return breaker.state

    def get_all_states(self) -> dict[str, CircuitState]:
        """Get the circuit state for all tracked targets."""
        return {target: breaker.state for target, breaker in self._breakers.items()}

    def reconfigure(self, max_failures: int, cooldown_seconds: float) -> None:
        """Apply new thresholds to existing and future breakers."""
        self._max_failures = max_failures
        self._cooldown_seconds = cooldown_seconds
        for breaker in self._breakers.values():
            breaker.max_failures = max_failures
            breaker.cooldown_seconds = cooldown_seconds
