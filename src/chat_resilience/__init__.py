# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Chat Resilience - Distributed coordination primitives for chat services.

This library provides the resilience layer of a horizontally scaled chat
backend: every instance shares its coordination state through one store, so
limits and circuit states hold across the whole deployment.

Key Features:
    - Token bucket rate limiting, evaluated atomically in the store
    - Three-state circuit breakers with TTL-driven recovery and bounded probes
    - Bulkheads capping in-flight calls per resource pool
    - Cache-aside reads with single-flight population and pattern invalidation
    - Explicit fail-open / fail-closed behavior when the store is unreachable
    - Multiple store options (memory, Redis)

Quick Start:
    >>> from chat_resilience import (
    ...     BulkheadConfig,
    ...     BulkheadName,
    ...     CircuitBreakerConfig,
    ...     create_coordinator,
    ... )
    >>>
    >>> async with create_coordinator(redis_url="redis://localhost:6379/0") as resilience:
    ...     rooms = await resilience.cached(
    ...         "rooms-list:page:1",
    ...         BulkheadConfig(BulkheadName.ROOM_READ, max_concurrency=50),
    ...         CircuitBreakerConfig("room-list"),
    ...         lambda: repository.list_rooms(page=1),
    ...     )

Main Exports:
    - RateLimiter, CircuitBreaker, Bulkhead, Cache: The four primitives
    - ResilienceCoordinator, create_coordinator: Composition of the primitives
    - MemoryStore, RedisStore: Shared stores
    - RateLimitConfig, CircuitBreakerConfig, BulkheadConfig, CacheConfig: Configuration

Note: RedisStore requires the 'redis' extra. Install with:
    pip install chat-resilience[redis]

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .backends import (
    BaseStore,
    HealthCheckResult,
    MemoryStore,
)
from .bulkhead import Bulkhead, BulkheadStatus
from .cache import Cache, CacheStats
from .circuit_breaker import CircuitBreaker, CircuitStatus
from .config import (
    BulkheadConfig,
    BulkheadHealth,
    CacheConfig,
    CircuitBreakerConfig,
    CircuitState,
    RateLimitConfig,
    StoreFailurePolicy,
)
from .coordinator import ResilienceCoordinator, create_coordinator
from .exceptions import (
    BadRequestError,
    BulkheadSaturatedError,
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    RateLimitExceededError,
    ResilienceError,
    ServiceUnavailableError,
    StoreConnectionError,
    StoreError,
    StoreOperationError,
    UnauthorizedError,
)
from .pools import BulkheadName, CacheKeys
from .rate_limiter import RateLimiter, RateLimitResult

# Lazy import for optional redis store
if TYPE_CHECKING:
    from .backends import RedisStore

__all__ = [
    "BadRequestError",
    # Stores
    "BaseStore",
    # Primitives
    "Bulkhead",
    # Configuration
    "BulkheadConfig",
    "BulkheadHealth",
    # Pools and keys
    "BulkheadName",
    "BulkheadSaturatedError",
    "BulkheadStatus",
    "Cache",
    "CacheConfig",
    "CacheKeys",
    "CacheStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStatus",
    "ClientError",
    "ConfigurationError",
    "ForbiddenError",
    "HealthCheckResult",
    "MemoryStore",
    "NotFoundError",
    "RateLimitConfig",
    "RateLimitExceededError",
    "RateLimitResult",
    "RateLimiter",
    "RedisStore",  # Lazy loaded - requires redis extra
    # Composition
    "ResilienceCoordinator",
    # Exceptions
    "ResilienceError",
    "ServiceUnavailableError",
    "StoreConnectionError",
    "StoreError",
    "StoreFailurePolicy",
    "StoreOperationError",
    "UnauthorizedError",
    "create_coordinator",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis store."""
    if name == "RedisStore":
        from .backends import RedisStore

        return RedisStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
