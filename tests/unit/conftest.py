"""Shared fixtures for the primitive unit tests."""

import time

import pytest
from prometheus_client import REGISTRY

from chat_resilience.backends.memory import MemoryStore


class FakeClock:
    """Stand-in for time.time() that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock(monkeypatch):
    """Freeze wall-clock time for the rate limiter and MemoryStore expiry."""
    fake = FakeClock()
    monkeypatch.setattr(time, "time", fake)
    return fake


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sample_value():
    """Read a Prometheus sample, treating a missing series as 0."""

    def _read(name: str, labels: dict[str, str] | None = None) -> float:
        return REGISTRY.get_sample_value(name, labels or {}) or 0.0

    return _read
