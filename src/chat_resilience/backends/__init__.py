# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Shared store implementations for the coordination primitives.

Available stores:
- BaseStore: Abstract base class defining the store contract
- MemoryStore: In-memory store for tests and single-instance deployments
- RedisStore: Redis-based store for distributed deployments (requires redis extra)

Supporting types:
- HealthCheckResult: Structured result from store health checks

Note: RedisStore is lazily imported to avoid requiring the redis package
when only using MemoryStore.
"""

from typing import TYPE_CHECKING, cast

from chat_resilience.backends.base import BaseStore, HealthCheckResult
from chat_resilience.backends.memory import MemoryStore

# Lazy imports for optional redis store
if TYPE_CHECKING:
    from chat_resilience.backends.redis import RedisStore

__all__ = [
    "BaseStore",
    "HealthCheckResult",
    "MemoryStore",
    "RedisStore",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis store."""
    if name == "RedisStore":
        try:
            from chat_resilience.backends import redis as redis_module

            return cast(type, getattr(redis_module, name))
        except ImportError as e:  # pragma: no cover
            raise ImportError(  # pragma: no cover
                f"'{name}' requires the 'redis' extra. "
                "Install with: pip install chat-resilience[redis]"
            ) from e
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
