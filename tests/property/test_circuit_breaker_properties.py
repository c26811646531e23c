"""Property tests for the per-upstream circuit breaker.

Validates that the breaker opens exactly when the consecutive-failure
threshold is reached, that successes reset the count, that an open breaker
rejects until its cooldown elapses, and that half-open admits one trial.
"""

from __future__ import annotations

import time

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from animescrape.middleware.error_handler import UpstreamUnavailableError
from animescrape.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

upstreams = st.from_regex(r"[a-z]{3,10}\.(com|org|net|io)", fullmatch=True)
thresholds = st.integers(min_value=1, max_value=10)
cooldowns = st.floats(min_value=1.0, max_value=300.0, allow_nan=False)

# Sequences of call outcomes (True = success, False = failure)
outcome_sequences = st.lists(st.booleans(), min_size=1, max_size=60)


def _expected_state(outcomes: list[bool], threshold: int) -> CircuitState:
    """Reference model with time frozen: once open, nothing closes it."""
    streak = 0
    for ok in outcomes:
        streak = 0 if ok else streak + 1
        if streak >= threshold:
            return CircuitState.OPEN
    return CircuitState.CLOSED


def _elapse_cooldown(cb: CircuitBreaker) -> None:
    cb.last_failure_time = time.monotonic() - cb.cooldown_seconds - 1


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(outcomes=outcome_sequences, threshold=thresholds, upstream=upstreams)
def test_opens_exactly_on_consecutive_failures(
    outcomes: list[bool], threshold: int, upstream: str
) -> None:
    cb = CircuitBreaker(upstream, max_failures=threshold, cooldown_seconds=60)

    for ok in outcomes:
        if cb.state == CircuitState.OPEN:
            break
        if ok:
            cb.record_success()
        else:
            cb.record_failure()

    assert cb.state == _expected_state(outcomes, threshold)


@settings(max_examples=100)
@given(threshold=thresholds, upstream=upstreams)
def test_one_below_threshold_stays_closed(threshold: int, upstream: str) -> None:
    cb = CircuitBreaker(upstream, max_failures=threshold)
    for _ in range(threshold - 1):
        cb.record_failure()
    assert cb.state == CircuitState.CLOSED
    cb.before_call()  # closed always admits


# ---------------------------------------------------------------------------
# Open and half-open
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(threshold=thresholds, cooldown=cooldowns, upstream=upstreams)
def test_open_rejects_with_retry_after_within_cooldown(
    threshold: int, cooldown: float, upstream: str
) -> None:
    cb = CircuitBreaker(upstream, max_failures=threshold, cooldown_seconds=cooldown)
    for _ in range(threshold):
        cb.record_failure()

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        cb.before_call()
    assert 0 < exc_info.value.retry_after <= cooldown
    assert exc_info.value.target == upstream


@settings(max_examples=100)
@given(threshold=thresholds, upstream=upstreams, trial_succeeds=st.booleans())
def test_half_open_admits_single_trial(threshold: int, upstream: str, trial_succeeds: bool) -> None:
    cb = CircuitBreaker(upstream, max_failures=threshold, cooldown_seconds=30)
    for _ in range(threshold):
        cb.record_failure()
    _elapse_cooldown(cb)

    cb.before_call()
    assert cb.state == CircuitState.HALF_OPEN
    with pytest.raises(UpstreamUnavailableError):
        cb.before_call()

    if trial_succeeds:
        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
    else:
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.retry_after() > 0


@settings(max_examples=100)
@given(upstream=upstreams)
def test_released_trial_can_be_retaken(upstream: str) -> None:
    cb = CircuitBreaker(upstream, max_failures=1)
    cb.record_failure()
    _elapse_cooldown(cb)

    cb.before_call()
    cb.release_trial()
    cb.before_call()
    assert cb.state == CircuitState.HALF_OPEN


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(names=st.lists(upstreams, min_size=2, max_size=8, unique=True), threshold=thresholds)
def test_registry_isolates_upstreams(names: list[str], threshold: int) -> None:
    registry = CircuitBreakerRegistry(max_failures=threshold)
    tripped, *others = names
    for _ in range(threshold):
        registry.get(tripped).record_failure()

    assert registry.get_state(tripped) == CircuitState.OPEN
    for name in others:
        assert registry.get_state(name) == CircuitState.CLOSED
        registry.get(name).before_call()
