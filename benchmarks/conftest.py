"""
Shared fixtures for benchmark tests.
"""

import pytest

from chat_resilience import (
    BulkheadConfig,
    CircuitBreakerConfig,
    MemoryStore,
    RateLimitConfig,
    ResilienceCoordinator,
)


@pytest.fixture
async def memory_store():
    """Fresh memory store for each benchmark."""
    store = MemoryStore()
    yield store
    await store.close()


@pytest.fixture
def coordinator(memory_store):
    return ResilienceCoordinator.from_store(memory_store)


@pytest.fixture
def bench_pool():
    """Pool wide enough that benchmarks never saturate it."""
    return BulkheadConfig(name="bench-pool", max_concurrency=10_000)


@pytest.fixture
def bench_breaker():
    return CircuitBreakerConfig(name="bench-breaker", failure_threshold=1_000)


@pytest.fixture
def bench_rate_limit():
    """Limit high enough that benchmarks are never denied."""
    return RateLimitConfig(max_requests=1_000_000, window_ms=1_000)
