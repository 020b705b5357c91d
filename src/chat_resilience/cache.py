# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Cache-aside reads with single-flight population and pattern invalidation.

Values are stored in the shared store as JSON with a TTL in seconds.

get_or_set protects against cache stampedes: on a miss, only the caller that
wins the `{key}:lock` lock (SET NX with a short TTL and a random token)
computes the value. Callers that lose wait briefly, re-check the cache once,
and then compute independently. Worst-case latency stays bounded at the cost
of occasionally computing twice under contention.

Failure semantics: the cache is never the source of truth. Reads that hit a
store error behave like a miss and writes are logged and skipped. Invalidation
(delete, delete_pattern) propagates store errors, since silently keeping
stale entries is a correctness problem the caller has to see.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from .backends.base import BaseStore
from .config import CacheConfig
from .exceptions import ConfigurationError, StoreError
from .observability.metrics import (
    CACHE_DELETES,
    CACHE_HITS,
    CACHE_MISSES,
    CACHE_SETS,
    STORE_ERRORS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheStats:
    """Process-local cache counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hit percentage, rounded to 2 decimals (0.0 before the first read)."""
        if self.total == 0:
            return 0.0
        return round(self.hits / self.total * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "total": self.total, "hit_rate": self.hit_rate}


class Cache:
    """
    Cache-aside helper over the shared store.

    Example:
        >>> cache = Cache(store)
        >>> rooms = await cache.get_or_set(
        ...     "rooms-list:page:1", lambda: repository.list_rooms(page=1), ttl_seconds=300
        ... )
        >>> await cache.delete_pattern("rooms-list:*")
    """

    LOCK_SUFFIX = ":lock"

    def __init__(self, store: BaseStore, config: CacheConfig | None = None) -> None:
        self.store = store
        self.config = config or CacheConfig()
        self._stats = CacheStats()

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, default=str)

    def _ttl(self, ttl_seconds: int | None) -> int:
        ttl = ttl_seconds if ttl_seconds is not None else self.config.ttl_seconds
        if ttl <= 0:
            raise ConfigurationError(f"Cache TTL must be positive, got {ttl}")
        return ttl

    # ==========================================================================
    # Passthrough operations
    # ==========================================================================

    async def get(self, key: str) -> Any | None:
        """Return the cached value for key, or None on a miss."""
        try:
            raw = await self.store.get(key)
        except StoreError as e:
            logger.error(f"Cache GET error {key}: {e}")
            STORE_ERRORS.labels(primitive="cache", policy="fail_open").inc()
            return None

        value = None
        if raw is not None:
            try:
                value = json.loads(raw)
            except ValueError:
                logger.warning(f"Cache entry {key} is not valid JSON, treating as a miss")

        if value is None:
            self._stats.misses += 1
            CACHE_MISSES.inc()
            logger.debug(f"Cache MISS: {key}")
            return None

        self._stats.hits += 1
        CACHE_HITS.inc()
        logger.debug(f"Cache HIT: {key}")
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """
        Store value under key for ttl_seconds (default from CacheConfig).

        Raises:
            ConfigurationError: If ttl_seconds is not positive
        """
        ttl = self._ttl(ttl_seconds)
        try:
            await self.store.set(key, self._dumps(value), ex=ttl)
        except StoreError as e:
            logger.error(f"Cache SET error {key}: {e}")
            STORE_ERRORS.labels(primitive="cache", policy="fail_open").inc()
            return

        self._stats.sets += 1
        CACHE_SETS.inc()
        logger.debug(f"Cache SET: {key} ({ttl}s)")

    async def delete(self, key: str) -> None:
        """Remove key."""
        await self.store.delete(key)
        self._stats.deletes += 1
        CACHE_DELETES.inc()
        logger.debug(f"Cache DELETE: {key}")

    async def exists(self, key: str) -> bool:
        """Whether key currently holds an entry. Does not touch hit/miss stats."""
        try:
            return await self.store.exists(key) > 0
        except StoreError as e:
            logger.error(f"Cache EXISTS error {key}: {e}")
            return False

    # ==========================================================================
    # Pattern invalidation
    # ==========================================================================

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern (e.g. "rooms-list:*").

        Keys are enumerated with SCAN in batches of CacheConfig.scan_count, so
        the store is never blocked by a full keyspace walk.

        Returns:
            Number of keys deleted
        """
        logger.debug(f"Cache deletePattern: {pattern}")

        cursor = 0
        deleted = 0
        while True:
            cursor, keys = await self.store.scan(
                cursor, match=pattern, count=self.config.scan_count
            )
            if keys:
                deleted += await self.store.delete(*keys)
            if cursor == 0:
                break

        self._stats.deletes += deleted
        CACHE_DELETES.inc(deleted)
        logger.debug(f"Cache DELETE PATTERN: {pattern} ({deleted})")
        return deleted

    # ==========================================================================
    # Single-flight population
    # ==========================================================================

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl_seconds: int | None = None,
    ) -> T:
        """
        Return the cached value for key, computing and caching it on a miss.

        Args:
            key: Cache key
            factory: Zero-argument coroutine function producing the value
            ttl_seconds: Entry lifetime (default from CacheConfig)

        Raises:
            ConfigurationError: If ttl_seconds is not positive
        """
        ttl = self._ttl(ttl_seconds)
        cached = await self.get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        lock_key = f"{key}{self.LOCK_SUFFIX}"
        token = uuid.uuid4().hex
        try:
            locked = await self.store.set(
                lock_key, token, px=self.config.lock_ttl_ms, nx=True
            )
        except StoreError as e:
            logger.error(f"Cache lock error {lock_key}: {e}")
            locked = False

        if not locked:
            # Someone else is computing; give them a moment
            await asyncio.sleep(self.config.lock_wait_seconds)
            retry = await self.get(key)
            if retry is not None:
                return retry  # type: ignore[no-any-return]

        try:
            logger.debug(f"Cache MISS - computing: {key}")
            value = await factory()
            await self.set(key, value, ttl)
            return value
        finally:
            if locked:
                await self._release_lock(lock_key, token)

    async def _release_lock(self, lock_key: str, token: str) -> None:
        try:
            await self.store.compare_and_delete(lock_key, token)
        except StoreError as e:
            # The lock expires after lock_ttl_ms anyway
            logger.warning(f"Could not release cache lock {lock_key}: {e}")

    # ==========================================================================
    # Stats
    # ==========================================================================

    def get_stats(self) -> CacheStats:
        """Snapshot of this process's counters."""
        return CacheStats(**asdict(self._stats))

    def reset_stats(self) -> None:
        self._stats = CacheStats()
