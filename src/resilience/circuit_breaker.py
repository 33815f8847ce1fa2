"""Async circuit breaker for the supplier upstream.

Implements the standard three-state circuit breaker:

    CLOSED    →  (failure_threshold reached)  →  OPEN
    OPEN      →  (reset_timeout elapsed)      →  HALF_OPEN   (lazily, on the next call)
    HALF_OPEN →  (trial succeeds)             →  CLOSED
    HALF_OPEN →  (trial fails)                →  OPEN

One ``CircuitBreaker`` is constructed per upstream integration and handed
to the code that calls it.  ``execute()`` is the only way work runs
through the breaker; one ``execute()`` counts as one success or failure
regardless of how many retries happen inside the work.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import TypeVar

from src.core.errors import BreakerOpenError
from src.models.schemas import CircuitStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def epoch_ms() -> float:
    """Wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class CircuitBreaker:
    """Async-safe circuit breaker for a single upstream.

    State only changes while ``_lock`` is held, and the lock is never held
    while the wrapped work runs.  At most ``half_open_max`` trial calls are
    in flight after the cooldown; other callers are rejected until the
    trial settles.

    Args:
        name:              Human-readable upstream name (for logging/errors).
        failure_threshold: Consecutive failures before opening the circuit.
        reset_timeout_ms:  Milliseconds the circuit stays OPEN before a trial.
        half_open_max:     Max concurrent trial calls in HALF_OPEN state.
        clock:             Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout_ms: float = 30000,
        half_open_max: int = 1,
        clock: Callable[[], float] = epoch_ms,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.half_open_max = half_open_max
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt_ms: float = clock()
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.total_successes = 0

    # ── Public properties ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """The stored state; reading it never causes a transition."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def next_attempt_ms(self) -> float | None:
        """Epoch ms at which a trial is admitted, or ``None`` unless OPEN."""
        if self._state == CircuitState.OPEN:
            return self._next_attempt_ms
        return None

    # ── Core call wrapper ────────────────────────────────────────────

    async def execute(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work* under breaker protection.

        Raises:
            BreakerOpenError: The circuit is OPEN (or a trial is already in
                flight) and *work* was not invoked.
            Exception: Whatever *work* raised, after it was recorded.
        """
        trial = await self._admit()
        try:
            result = await work()
        except asyncio.CancelledError:
            self._release_trial(trial)
            raise
        except Exception:
            await self._on_failure(trial)
            raise
        await self._on_success(trial)
        return result

    async def _admit(self) -> bool:
        """Gate a call; returns True when the call is the HALF_OPEN trial."""
        async with self._lock:
            now = self._clock()

            if self._state == CircuitState.OPEN:
                if now < self._next_attempt_ms:
                    self.total_rejections += 1
                    raise BreakerOpenError(
                        self.name,
                        self._next_attempt_ms,
                        (self._next_attempt_ms - now) / 1000,
                    )
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker '%s' moved to HALF_OPEN", self.name)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max:
                    self.total_rejections += 1
                    raise BreakerOpenError(self.name, self._next_attempt_ms, 0.0)
                self._half_open_calls += 1
                self.total_calls += 1
                return True

            self.total_calls += 1
            return False

    async def _on_success(self, trial: bool) -> None:
        """Record a successful call; a successful trial closes the circuit."""
        async with self._lock:
            self.total_successes += 1
            if trial:
                self._half_open_calls -= 1
                logger.info("Circuit breaker '%s' trial succeeded, moving to CLOSED", self.name)
                self._close()
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _on_failure(self, trial: bool) -> None:
        """Record a failed call; potentially open the circuit."""
        async with self._lock:
            self._failure_count += 1
            self.total_failures += 1
            logger.error(
                "Circuit breaker '%s' failure %d/%d",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )
            if trial:
                self._half_open_calls -= 1
                self._open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open()

    def _release_trial(self, trial: bool) -> None:
        """Free the trial slot of a cancelled call without recording an outcome."""
        if trial:
            self._half_open_calls -= 1
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls == 0:
                self._state = CircuitState.OPEN

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_ms = self._clock() + self.reset_timeout_ms
        logger.warning(
            "Circuit breaker '%s' OPENED. Will retry at %s",
            self.name,
            _to_datetime(self._next_attempt_ms).isoformat(),
        )

    def _close(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit breaker '%s' CLOSED", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0

    # ── Status reporting ─────────────────────────────────────────────

    def get_state(self) -> CircuitStatus:
        """Return a read-only snapshot for status reporting."""
        next_attempt = self.next_attempt_ms
        return CircuitStatus(
            state=self._state.value,
            failure_count=self._failure_count,
            failure_threshold=self.failure_threshold,
            next_attempt=_to_datetime(next_attempt) if next_attempt is not None else None,
        )

    def metrics(self) -> dict:
        """Return call counters, reported by GET /health."""
        return {
            "name": self.name,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "total_successes": self.total_successes,
        }


def _to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)
