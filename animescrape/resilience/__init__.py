"""Resilience components: circuit breakers, retry policy and rate limiting."""

from animescrape.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from animescrape.resilience.rate_limiter import TokenBucket, TokenBucketLimiter
from animescrape.resilience.retry import RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryPolicy",
    "TokenBucket",
    "TokenBucketLimiter",
]
