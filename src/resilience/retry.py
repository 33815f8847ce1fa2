"""Bounded exponential-backoff retry.

``BackoffRetrier.run()`` executes a zero-argument coroutine function up to
``max_retries + 1`` times.  Failures carrying a 4xx status are terminal and
propagate untouched; everything else is retried after

    min(initial_delay_ms * backoff_factor ** (k - 1), max_delay_ms)

milliseconds before attempt ``k``.  The schedule is exact (no jitter) and
the sleep function is injectable so tests can record delays.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from src.core.errors import RetriesExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    Attributes:
        max_retries:      Retries after the first attempt (>= 0).
        initial_delay_ms: Delay before the first retry (> 0).
        max_delay_ms:     Upper bound for any single delay.
        backoff_factor:   Multiplier applied per retry (> 1).
    """

    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms <= 0:
            raise ValueError("initial_delay_ms must be > 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.backoff_factor <= 1:
            raise ValueError("backoff_factor must be > 1")

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, attempt: int) -> float:
        """Delay in milliseconds before *attempt* (0 for the first attempt)."""
        if attempt <= 0:
            return 0.0
        return min(self.initial_delay_ms * self.backoff_factor ** (attempt - 1), self.max_delay_ms)


def status_code_of(exc: BaseException) -> int | None:
    """Return the HTTP status carried by *exc*, if any."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_terminal(exc: BaseException) -> bool:
    """A 4xx-class status means retrying cannot help."""
    status = status_code_of(exc)
    return status is not None and 400 <= status < 500


class BackoffRetrier:
    """Runs a unit of work under a ``RetryPolicy``.

    Args:
        policy: Default policy used when ``run()`` is not given one.
        sleep:  Coroutine taking seconds; ``asyncio.sleep`` by default.
        clock:  Monotonic clock in seconds, used for deadlines.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        work: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        deadline: float | None = None,
    ) -> T:
        """Execute *work* with retries.

        Args:
            work:     Zero-argument coroutine function.
            policy:   Overrides the retrier's default policy.
            deadline: Absolute time on the retrier's clock after which no
                      new attempt starts and running attempts are cut off.

        Raises:
            Exception: The original error when it is terminal (4xx).
            RetriesExhaustedError: When every attempt failed, or the
                deadline left no room for another attempt.
        """
        policy = policy or self.policy
        attempts = policy.total_attempts
        last_exc: Exception | None = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = policy.delay_ms(attempt) / 1000
                if deadline is not None and self._clock() + delay >= deadline:
                    logger.warning(
                        "Deadline leaves no room for attempt %d/%d, giving up",
                        attempt + 1,
                        attempts,
                    )
                    raise RetriesExhaustedError(last_exc, attempt, deadline_exceeded=True) from last_exc
                await self._sleep(delay)

            try:
                result = await self._attempt(work, deadline)
            except Exception as exc:
                if is_terminal(exc):
                    logger.warning("Terminal failure on attempt %d, not retrying: %s", attempt + 1, exc)
                    raise
                last_exc = exc
                if attempt < attempts - 1:
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.0fms",
                        attempt + 1,
                        attempts,
                        exc,
                        policy.delay_ms(attempt + 1),
                    )
                continue

            if attempt > 0:
                logger.info("Retry succeeded on attempt %d/%d", attempt + 1, attempts)
            return result

        logger.error("All %d attempts failed", attempts)
        raise RetriesExhaustedError(last_exc, attempts) from last_exc

    async def _attempt(self, work: Callable[[], Awaitable[T]], deadline: float | None) -> T:
        """Run one attempt, bounded by whatever time the deadline leaves."""
        if deadline is None:
            return await work()
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise TimeoutError("deadline reached before attempt started")
        async with asyncio.timeout(remaining):
            return await work()
