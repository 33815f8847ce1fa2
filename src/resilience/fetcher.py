"""ResilientFetcher: breaker around retrier around the supplier call.

    fetch_supplier_data()
        └─ CircuitBreaker.execute(
               BackoffRetrier.run(upstream_call, policy))
                   ├─ success → write cache → FetchSuccess
                   └─ failure → read cache  → CachedFallback | FetchFailure

A failure of any kind (breaker rejection, exhausted retries, terminal
client error) gets one cache read before the caller sees an error.  The
breaker snapshot rides along with every result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from src.cache.result_cache import ResultCache, encode_json
from src.core.errors import error_kind_of
from src.models.schemas import CachedFallback, CircuitStatus, FetchFailure, FetchResult, FetchSuccess
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.retry import BackoffRetrier, RetryPolicy

logger = logging.getLogger(__name__)

SUPPLIER_PRODUCTS_KEY = "external:supplier-products"

_MISS = object()


class ResilientFetcher:
    """Orchestrates one upstream dependency.

    Args:
        upstream_call:     Zero-argument coroutine function that performs a
                           single upstream request.
        breaker:           The breaker dedicated to this upstream.
        retrier:           Backoff retrier for the upstream call.
        cache:             Best-effort result cache.
        retry_policy:      Policy passed to the retrier (its default if None).
        cache_key:         Key for last-known-good payloads.
        cache_ttl_seconds: Lifetime of cached payloads.
        clock:             Monotonic clock in seconds, shared with the retrier
                           for deadlines.
    """

    def __init__(
        self,
        upstream_call: Callable[[], Awaitable[Any]],
        breaker: CircuitBreaker,
        retrier: BackoffRetrier,
        cache: ResultCache,
        retry_policy: RetryPolicy | None = None,
        cache_key: str = SUPPLIER_PRODUCTS_KEY,
        cache_ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._upstream_call = upstream_call
        self.breaker = breaker
        self.retrier = retrier
        self.cache = cache
        self.retry_policy = retry_policy
        self.cache_key = cache_key
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock

    async def fetch_supplier_data(self, *, deadline_ms: float | None = None) -> FetchResult:
        """Fetch supplier data, falling back to the cache on failure.

        Args:
            deadline_ms: Overall budget for upstream attempts and retry
                         delays, in milliseconds from now.
        """
        deadline = self._clock() + deadline_ms / 1000 if deadline_ms is not None else None

        async def _work() -> Any:
            return await self.retrier.run(self._upstream_call, self.retry_policy, deadline=deadline)

        try:
            data = await self.breaker.execute(_work)
        except Exception as exc:
            logger.error("Supplier API error: %s", exc)
            return await self._fallback(exc)

        await self.cache.set_with_ttl(self.cache_key, encode_json(data), self.cache_ttl_seconds)
        return FetchSuccess(data=data, circuit_breaker_state=self.breaker.get_state())

    async def _fallback(self, exc: Exception) -> CachedFallback | FetchFailure:
        kind = error_kind_of(exc)
        cached = await self.cache.get_json(self.cache_key, default=_MISS)
        if cached is not _MISS:
            logger.info("Returning cached data as fallback (%s)", kind.value)
            return CachedFallback(
                data=cached,
                error_kind=kind,
                circuit_breaker_state=self.breaker.get_state(),
            )
        return FetchFailure(
            error=str(exc) or type(exc).__name__,
            error_kind=kind,
            circuit_breaker_state=self.breaker.get_state(),
        )

    def get_circuit_status(self) -> CircuitStatus:
        """Breaker snapshot for status endpoints; never triggers a fetch."""
        return self.breaker.get_state()
