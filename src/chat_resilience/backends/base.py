# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Store for the chat resilience layer

This module provides the BaseStore abstract class that defines the contract
every shared coordination store must satisfy.

The primitives (rate limiter, circuit breaker, bulkhead, cache) hold no state
of their own between calls; all of it lives behind this interface. The
low-level operations map one-to-one onto Redis commands. The three atomic
operations (consume_token, record_failure, compare_and_delete) must run as a
single indivisible step so that concurrent callers in other processes never
interleave with them.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Structured health check result for store monitoring.

    Attributes:
        healthy: Whether the store is operational
        store_type: Type of store (e.g., 'redis', 'memory')
        error: Error message if unhealthy
        metadata: Additional store-specific information
    """

    healthy: bool
    store_type: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


class BaseStore(abc.ABC):
    """
    An abstract base class for the shared key-value store used by every
    coordination primitive.

    Subclasses must implement all abstract methods. Values are strings;
    callers are responsible for serialization.
    """

    # ==========================================================================
    # Scalar keys
    # ==========================================================================

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None if absent or expired."""
        pass

    @abc.abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool:
        """
        Store value at key.

        Args:
            key: Key to write
            value: String value
            ex: Expiry in seconds
            px: Expiry in milliseconds (takes precedence over ex)
            nx: Only write if the key does not already exist

        Returns:
            True if the value was written, False if nx was set and the key existed
        """
        pass

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""
        pass

    @abc.abstractmethod
    async def exists(self, *keys: str) -> int:
        """Return how many of the given keys exist."""
        pass

    @abc.abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer key (missing keys start at 0)."""
        pass

    @abc.abstractmethod
    async def decr(self, key: str) -> int:
        """Atomically decrement an integer key (missing keys start at 0)."""
        pass

    @abc.abstractmethod
    async def pexpire(self, key: str, ms: int) -> bool:
        """Set a key's expiry in milliseconds. Returns False if the key is absent."""
        pass

    @abc.abstractmethod
    async def pttl(self, key: str) -> int:
        """
        Remaining time to live in milliseconds.

        Returns -2 if the key does not exist and -1 if it has no expiry,
        matching Redis.
        """
        pass

    # ==========================================================================
    # Hashes
    # ==========================================================================

    @abc.abstractmethod
    async def hmset(self, key: str, mapping: dict[str, Any]) -> None:
        """Write several hash fields at once."""
        pass

    @abc.abstractmethod
    async def hmget(self, key: str, *fields: str) -> list[str | None]:
        """Read several hash fields at once; missing fields are None."""
        pass

    # ==========================================================================
    # Keyspace iteration
    # ==========================================================================

    @abc.abstractmethod
    async def scan(
        self, cursor: int = 0, match: str | None = None, count: int = 100
    ) -> tuple[int, list[str]]:
        """
        Incrementally iterate the keyspace.

        Args:
            cursor: 0 to start; the value returned by the previous call otherwise
            match: Optional glob pattern
            count: Batch size hint

        Returns:
            Tuple of (next_cursor, keys). Iteration is complete when next_cursor is 0.
        """
        pass

    # ==========================================================================
    # Atomic multi-step operations
    # ==========================================================================

    @abc.abstractmethod
    async def consume_token(
        self,
        key: str,
        max_tokens: int,
        refill_per_ms: float,
        now_ms: int,
        ttl_ms: int,
    ) -> tuple[bool, float]:
        """
        Atomically refill a token bucket and try to take one token.

        The bucket is a hash with fields ``tokens`` and ``last``. A missing
        bucket starts full. The refreshed state is written back whether or not
        a token was taken, and the key expiry is reset to ttl_ms.

        Returns:
            Tuple of (allowed, tokens_left)
        """
        pass

    @abc.abstractmethod
    async def record_failure(
        self,
        failures_key: str,
        state_key: str,
        tripped_key: str,
        threshold: int,
        open_ms: int,
    ) -> tuple[int, bool]:
        """
        Atomically count a failure and trip the circuit on reaching threshold.

        Increments failures_key and sets its expiry to open_ms. When the new
        count reaches threshold, writes "OPEN" to state_key with expiry open_ms
        (only if absent) and writes tripped_key with expiry 2 * open_ms, so the
        tripped marker outlives the OPEN marker by one window.

        Returns:
            Tuple of (failure_count, opened) where opened is True if this call
            wrote the OPEN marker
        """
        pass

    @abc.abstractmethod
    async def compare_and_delete(self, key: str, token: str) -> bool:
        """Delete key only if its value equals token. Returns True if deleted."""
        pass

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Check whether the store is reachable."""
        pass

    async def close(self) -> None:  # noqa: B027
        """Release resources held by the store. No-op by default."""
        pass

    async def __aenter__(self) -> "BaseStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
