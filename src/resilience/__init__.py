"""Resilience patterns: circuit breaker, backoff retry and cache fallback.

Protects callers of the supplier catalog API from upstream slowness,
transient failures and sustained outages.
"""

from src.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
)
from src.resilience.fetcher import ResilientFetcher
from src.resilience.retry import BackoffRetrier, RetryPolicy

__all__ = [
    "BackoffRetrier",
    "CircuitBreaker",
    "CircuitState",
    "ResilientFetcher",
    "RetryPolicy",
]
