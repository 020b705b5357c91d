# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Composition of the four primitives for service code.

The primitives know nothing about each other; they compose by nesting:

    rate limit gate -> Bulkhead.execute(pool, CircuitBreaker.execute(op, task))

and read paths wrap the whole chain in Cache.get_or_set. The coordinator
wires one store into all four and provides that nesting, plus a combined
health report.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from typing_extensions import Self

from .backends.base import BaseStore
from .bulkhead import Bulkhead
from .cache import Cache
from .circuit_breaker import CircuitBreaker
from .config import (
    BulkheadConfig,
    CacheConfig,
    CircuitBreakerConfig,
    RateLimitConfig,
    StoreFailurePolicy,
)
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilienceCoordinator:
    """
    One rate limiter, circuit breaker, bulkhead and cache over a shared store.

    Example:
        >>> async with create_coordinator() as resilience:
        ...     room = await resilience.protect(
        ...         BulkheadConfig(BulkheadName.ROOM_CREATE, max_concurrency=20),
        ...         CircuitBreakerConfig("room-create", failure_threshold=5),
        ...         lambda: rooms.create(name, owner),
        ...         rate_limit_key=f"room-create:{owner}",
        ...         rate_limit=RateLimitConfig(max_requests=3, window_ms=60_000),
        ...     )
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        circuit_breaker: CircuitBreaker,
        bulkhead: Bulkhead,
        cache: Cache,
        store: BaseStore | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.bulkhead = bulkhead
        self.cache = cache
        self.store = store

    @classmethod
    def from_store(
        cls,
        store: BaseStore,
        cache_config: CacheConfig | None = None,
        store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.FAIL_OPEN,
    ) -> Self:
        """Build all four primitives on one store."""
        return cls(
            rate_limiter=RateLimiter(store),
            circuit_breaker=CircuitBreaker(store, store_failure_policy),
            bulkhead=Bulkhead(store, store_failure_policy),
            cache=Cache(store, cache_config),
            store=store,
        )

    async def protect(
        self,
        pool: BulkheadConfig,
        breaker: CircuitBreakerConfig,
        task: Callable[[], Awaitable[T]],
        rate_limit_key: str | None = None,
        rate_limit: RateLimitConfig | None = None,
    ) -> T:
        """
        Run task behind the optional rate limit, the bulkhead and the breaker.

        Raises:
            RateLimitExceededError: If rate_limit_key has no tokens left
            BulkheadSaturatedError: If the pool is full
            CircuitOpenError: If the breaker rejects the call
        """
        if rate_limit_key is not None and rate_limit is not None:
            await self.rate_limiter.check(rate_limit_key, rate_limit)

        return await self.bulkhead.execute(
            pool, lambda: self.circuit_breaker.execute(breaker, task)
        )

    async def cached(
        self,
        key: str,
        pool: BulkheadConfig,
        breaker: CircuitBreakerConfig,
        task: Callable[[], Awaitable[T]],
        ttl_seconds: int | None = None,
        rate_limit_key: str | None = None,
        rate_limit: RateLimitConfig | None = None,
    ) -> T:
        """
        Read path: serve key from the cache, computing it through protect() on a miss.

        The rate limit, when given, only applies to misses that reach protect().
        """
        return await self.cache.get_or_set(
            key,
            lambda: self.protect(pool, breaker, task, rate_limit_key, rate_limit),
            ttl_seconds,
        )

    async def health(self, pools: Iterable[BulkheadConfig] = ()) -> dict[str, Any]:
        """Breaker states, bulkhead usage for the given pools and cache stats."""
        breakers = await self.circuit_breaker.get_health_status()
        bulkheads = {
            pool.name: await self.bulkhead.get_status(pool) for pool in pools
        }
        report: dict[str, Any] = {
            "circuit_breaker": {
                name: {
                    "state": status.state.value,
                    "failure_count": status.failure_count,
                    "retry_after_ms": status.retry_after_ms,
                }
                for name, status in breakers.items()
            },
            "bulkhead": {
                name: {
                    "current_concurrency": status.current_concurrency,
                    "max_concurrency": status.max_concurrency,
                    "utilization": status.utilization,
                    "status": status.status.value,
                }
                for name, status in bulkheads.items()
            },
            "cache": self.cache.get_stats().to_dict(),
        }
        if self.store is not None:
            store_health = await self.store.health_check()
            report["store"] = {
                "healthy": store_health.healthy,
                "type": store_health.store_type,
                "error": store_health.error,
            }
        return report

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create_coordinator(
    store: BaseStore | None = None,
    redis_url: str | None = None,
    cache_config: CacheConfig | None = None,
    store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.FAIL_OPEN,
) -> ResilienceCoordinator:
    """
    Build a coordinator, defaulting to a RedisStore.

    Args:
        store: Store to use; a RedisStore on redis_url is created when omitted
        redis_url: Redis URL (see RedisStore for environment fallbacks)
        cache_config: Cache tuning
        store_failure_policy: Policy for the breaker and the bulkhead
    """
    if store is None:
        from .backends.redis import RedisStore

        store = RedisStore(redis_url=redis_url)
        logger.info(f"Using Redis store at {store.redis_url}")

    return ResilienceCoordinator.from_store(store, cache_config, store_failure_policy)
