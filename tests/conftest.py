"""Shared fixtures: a virtual clock for breaker and retry timing, and a fake store."""

from __future__ import annotations

import fakeredis
import fakeredis.aioredis
import pytest


class VirtualClock:
    """Manually advanced time source.

    ``epoch_ms`` feeds ``CircuitBreaker``; ``monotonic`` and ``sleep`` feed
    ``BackoffRetrier``.  Sleeping advances time and records the delay.
    """

    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def epoch_ms(self) -> float:
        return self.now_ms

    def monotonic(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: float) -> None:
        self.now_ms += ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += seconds * 1000

    @property
    def sleeps_ms(self) -> list[float]:
        return [round(s * 1000, 6) for s in self.sleeps]


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def fake_redis():
    """Fresh fakeredis async client with its own isolated server."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer())
