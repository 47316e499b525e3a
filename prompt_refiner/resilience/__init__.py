"""Resilience primitives — result cache, circuit breakers and retry.

Each refinement backend gets its own circuit breaker; transient backend
failures are retried with jittered exponential backoff; successful results
are memoized in a bounded TTL cache.
"""

from prompt_refiner.resilience.cache import CacheEntry, ResultCache
from prompt_refiner.resilience.circuit_breaker import (
    Admission,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from prompt_refiner.resilience.retry import RetryPolicy, compute_delay, is_retryable, with_retry

__all__ = [
    "Admission",
    "CacheEntry",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ResultCache",
    "RetryPolicy",
    "compute_delay",
    "is_retryable",
    "with_retry",
]
