"""Tests for BackoffRetrier and RetryPolicy.

Covers:
- Exact exponential schedule, capped by max_delay_ms
- Terminal (4xx) failures propagate without retries
- RetriesExhaustedError wraps the last attempt's error
- Deadline handling
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from src.core.errors import (
    ErrorKind,
    RetriesExhaustedError,
    TerminalUpstreamError,
    TransientUpstreamError,
)
from src.resilience.retry import BackoffRetrier, RetryPolicy, is_terminal, status_code_of


def _failing_sequence(errors, result="ok"):
    """Coroutine function that raises *errors* in order, then returns *result*."""
    calls = {"count": 0}

    async def work():
        calls["count"] += 1
        if calls["count"] <= len(errors):
            raise errors[calls["count"] - 1]
        return result

    return work, calls


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RetryPolicy
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.initial_delay_ms == 1000
        assert policy.max_delay_ms == 10000
        assert policy.backoff_factor == 2.0
        assert policy.total_attempts == 4

    def test_no_delay_before_first_attempt(self):
        assert RetryPolicy().delay_ms(0) == 0.0

    def test_delay_schedule_is_exponential(self):
        policy = RetryPolicy()
        assert [policy.delay_ms(k) for k in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]

    def test_delay_capped_by_max_delay(self):
        policy = RetryPolicy(max_retries=6, initial_delay_ms=1000, max_delay_ms=5000)
        assert [policy.delay_ms(k) for k in range(1, 6)] == [1000, 2000, 4000, 5000, 5000]

    def test_is_immutable(self):
        policy = RetryPolicy()
        with pytest.raises(AttributeError):
            policy.max_retries = 10

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"initial_delay_ms": 0},
            {"initial_delay_ms": 500, "max_delay_ms": 100},
            {"backoff_factor": 1.0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Failure classification
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestClassification:
    def test_4xx_is_terminal(self):
        assert is_terminal(TerminalUpstreamError(404))

    def test_5xx_is_retryable(self):
        assert not is_terminal(TransientUpstreamError("boom", status_code=503))

    def test_unclassified_is_retryable(self):
        assert not is_terminal(RuntimeError("who knows"))
        assert status_code_of(RuntimeError("x")) is None

    def test_httpx_status_error_is_classified(self):
        request = httpx.Request("GET", "https://supplier.test/products")
        response = httpx.Response(422, request=request)
        exc = httpx.HTTPStatusError("bad", request=request, response=response)
        assert status_code_of(exc) == 422
        assert is_terminal(exc)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BackoffRetrier.run
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestBackoffRetrier:
    @pytest.fixture
    def retrier(self, clock) -> BackoffRetrier:
        return BackoffRetrier(RetryPolicy(), sleep=clock.sleep, clock=clock.monotonic)

    async def test_success_on_first_attempt_does_not_sleep(self, retrier, clock):
        work, calls = _failing_sequence([])
        assert await retrier.run(work) == "ok"
        assert calls["count"] == 1
        assert clock.sleeps == []

    async def test_permanent_transient_failure_schedule(self, retrier, clock):
        errors = [TransientUpstreamError(f"attempt {i}") for i in range(4)]
        work, calls = _failing_sequence(errors)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await retrier.run(work)

        assert calls["count"] == 4
        assert clock.sleeps_ms == [1000, 2000, 4000]
        assert exc_info.value.last_error is errors[-1]
        assert exc_info.value.__cause__ is errors[-1]
        assert exc_info.value.attempts == 4
        assert exc_info.value.kind == ErrorKind.RETRIES_EXHAUSTED

    async def test_recovers_after_transient_failures(self, retrier, clock):
        work, calls = _failing_sequence([TransientUpstreamError("a"), TimeoutError()])
        assert await retrier.run(work) == "ok"
        assert calls["count"] == 3
        assert clock.sleeps_ms == [1000, 2000]

    async def test_terminal_failure_not_retried(self, retrier, clock):
        err = TerminalUpstreamError(400)
        work, calls = _failing_sequence([err])

        with pytest.raises(TerminalUpstreamError) as exc_info:
            await retrier.run(work)

        assert exc_info.value is err
        assert calls["count"] == 1
        assert clock.sleeps == []

    async def test_terminal_after_transient_stops_immediately(self, retrier, clock):
        work, calls = _failing_sequence([TransientUpstreamError("a"), TerminalUpstreamError(404)])
        with pytest.raises(TerminalUpstreamError):
            await retrier.run(work)
        assert calls["count"] == 2
        assert clock.sleeps_ms == [1000]

    async def test_delays_capped_by_max_delay(self, clock):
        policy = RetryPolicy(max_retries=5, initial_delay_ms=1000, max_delay_ms=3000)
        retrier = BackoffRetrier(policy, sleep=clock.sleep, clock=clock.monotonic)
        work, _ = _failing_sequence([ConnectionError()] * 6)
        with pytest.raises(RetriesExhaustedError):
            await retrier.run(work)
        assert clock.sleeps_ms == [1000, 2000, 3000, 3000, 3000]

    async def test_zero_retries_runs_once(self, clock):
        retrier = BackoffRetrier(RetryPolicy(max_retries=0), sleep=clock.sleep)
        work, calls = _failing_sequence([TransientUpstreamError("down")])
        with pytest.raises(RetriesExhaustedError):
            await retrier.run(work)
        assert calls["count"] == 1
        assert clock.sleeps == []

    async def test_policy_argument_overrides_default(self, retrier, clock):
        work, calls = _failing_sequence([TransientUpstreamError("a")] * 3)
        with pytest.raises(RetriesExhaustedError):
            await retrier.run(work, RetryPolicy(max_retries=1, initial_delay_ms=50))
        assert calls["count"] == 2
        assert clock.sleeps_ms == [50]

    async def test_logs_each_retry(self, retrier, caplog):
        import logging

        work, _ = _failing_sequence([TransientUpstreamError("a")])
        with caplog.at_level(logging.WARNING, logger="src.resilience.retry"):
            await retrier.run(work)
        assert any("Retrying in 1000ms" in r.getMessage() for r in caplog.records)


class TestDeadline:
    async def test_deadline_stops_retry_schedule(self, clock):
        retrier = BackoffRetrier(RetryPolicy(), sleep=clock.sleep, clock=clock.monotonic)
        work, calls = _failing_sequence([TransientUpstreamError("down")] * 4)

        deadline = clock.monotonic() + 2.5  # room for the 1s delay, not the 2s one
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await retrier.run(work, deadline=deadline)

        assert exc_info.value.deadline_exceeded is True
        assert calls["count"] == 2
        assert clock.sleeps_ms == [1000]

    async def test_slow_attempt_is_cut_off_by_deadline(self):
        async def fake_sleep(_seconds):
            return None

        async def slow():
            await asyncio.sleep(10)

        loop_time = asyncio.get_running_loop().time
        retrier = BackoffRetrier(RetryPolicy(max_retries=0), sleep=fake_sleep, clock=loop_time)
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await retrier.run(slow, deadline=loop_time() + 0.05)
        assert isinstance(exc_info.value.last_error, TimeoutError)
