# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryStore for the chat resilience layer

This module provides an in-memory store implementation that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import fnmatch
import logging
import math
import time
from typing import Any

from ..exceptions import StoreOperationError
from .base import BaseStore, HealthCheckResult

logger = logging.getLogger(__name__)

_WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class MemoryStore(BaseStore):
    """
    An in-memory implementation of the shared store contract.

    Key Features:
    - Pure dict-based storage for strings and hashes
    - Millisecond TTL support with lazy expiration
    - Glob matching and cursor-based scan, like Redis SCAN
    - Atomic multi-step operations under a single asyncio.Lock

    Note:
        This store is NOT suitable for:
        - Multi-process applications
        - Distributed systems
        Every guarantee it gives holds for tasks of one event loop only.
    """

    def __init__(self) -> None:
        # Format: Dict[key, Tuple[value, Optional[expiry_ms]]]
        # value is a str for scalar keys and a dict[str, str] for hashes
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = asyncio.Lock()

        # Remaining keys of in-progress scans, by cursor
        self._scans: dict[int, list[str]] = {}
        self._scan_ids = 0

        logger.debug("Initialized MemoryStore")

    def _now_ms(self) -> float:
        return time.time() * 1000

    def _is_expired(self, expiry: float | None) -> bool:
        """Check if an entry has expired."""
        if expiry is None:
            return False
        return self._now_ms() >= expiry

    def _lookup(self, key: str) -> tuple[Any, float | None] | None:
        """Return the live entry for key, dropping it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._is_expired(entry[1]):
            del self._data[key]
            return None
        return entry

    def _get_string(self, key: str) -> str | None:
        entry = self._lookup(key)
        if entry is None:
            return None
        if not isinstance(entry[0], str):
            raise StoreOperationError(_WRONGTYPE)
        return entry[0]

    def _get_hash(self, key: str) -> dict[str, str] | None:
        entry = self._lookup(key)
        if entry is None:
            return None
        if not isinstance(entry[0], dict):
            raise StoreOperationError(_WRONGTYPE)
        return entry[0]

    def _add(self, key: str, delta: int) -> int:
        entry = self._lookup(key)
        current = self._get_string(key)
        try:
            value = int(current) if current is not None else 0
        except ValueError as e:
            raise StoreOperationError(
                "ERR value is not an integer or out of range"
            ) from e
        value += delta
        # INCR/DECR keep the existing expiry
        self._data[key] = (str(value), entry[1] if entry else None)
        return value

    def _pexpire_locked(self, key: str, ms: int | float) -> bool:
        entry = self._lookup(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._now_ms() + ms)
        return True

    # ==========================================================================
    # Scalar keys
    # ==========================================================================

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._get_string(key)

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool:
        async with self._lock:
            if nx and self._lookup(key) is not None:
                return False
            if px is not None:
                expiry: float | None = self._now_ms() + px
            elif ex is not None:
                expiry = self._now_ms() + ex * 1000
            else:
                expiry = None
            self._data[key] = (str(value), expiry)
            return True

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._lookup(key) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def exists(self, *keys: str) -> int:
        async with self._lock:
            return sum(1 for key in keys if self._lookup(key) is not None)

    async def incr(self, key: str) -> int:
        async with self._lock:
            return self._add(key, 1)

    async def decr(self, key: str) -> int:
        async with self._lock:
            return self._add(key, -1)

    async def pexpire(self, key: str, ms: int) -> bool:
        async with self._lock:
            return self._pexpire_locked(key, ms)

    async def pttl(self, key: str) -> int:
        async with self._lock:
            entry = self._lookup(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(0, math.ceil(entry[1] - self._now_ms()))

    # ==========================================================================
    # Hashes
    # ==========================================================================

    async def hmset(self, key: str, mapping: dict[str, Any]) -> None:
        async with self._lock:
            current = self._get_hash(key)
            entry = self._lookup(key)
            fields = dict(current or {})
            fields.update({field: str(value) for field, value in mapping.items()})
            self._data[key] = (fields, entry[1] if entry else None)

    async def hmget(self, key: str, *fields: str) -> list[str | None]:
        async with self._lock:
            current = self._get_hash(key) or {}
            return [current.get(field) for field in fields]

    # ==========================================================================
    # Keyspace iteration
    # ==========================================================================

    async def scan(
        self, cursor: int = 0, match: str | None = None, count: int = 100
    ) -> tuple[int, list[str]]:
        async with self._lock:
            # A scan walks the snapshot taken at cursor 0, so keys deleted by the
            # caller between batches never shift the remaining ones
            if cursor == 0:
                pending = sorted(self._data)
            else:
                pending = self._scans.pop(cursor, [])

            batch, rest = pending[:count], pending[count:]
            next_cursor = 0
            if rest:
                self._scan_ids += 1
                next_cursor = self._scan_ids
                self._scans[next_cursor] = rest

            batch = [k for k in batch if self._lookup(k) is not None]
            if match is not None:
                batch = [k for k in batch if fnmatch.fnmatchcase(k, match)]
            return next_cursor, batch

    # ==========================================================================
    # Atomic multi-step operations
    # ==========================================================================

    async def consume_token(
        self,
        key: str,
        max_tokens: int,
        refill_per_ms: float,
        now_ms: int,
        ttl_ms: int,
    ) -> tuple[bool, float]:
        async with self._lock:
            current = self._get_hash(key) or {}
            try:
                tokens = float(current["tokens"])
                last = float(current["last"])
            except (KeyError, ValueError):
                tokens = float(max_tokens)
                last = float(now_ms)

            elapsed = max(0.0, now_ms - last)
            tokens = min(float(max_tokens), tokens + elapsed * refill_per_ms)

            allowed = tokens >= 1
            if allowed:
                tokens -= 1

            self._data[key] = (
                {"tokens": repr(tokens), "last": str(int(max(now_ms, last)))},
                None,
            )
            self._pexpire_locked(key, ttl_ms)
            return allowed, tokens

    async def record_failure(
        self,
        failures_key: str,
        state_key: str,
        tripped_key: str,
        threshold: int,
        open_ms: int,
    ) -> tuple[int, bool]:
        async with self._lock:
            count = self._add(failures_key, 1)
            self._pexpire_locked(failures_key, open_ms)

            opened = False
            if count >= threshold:
                now = self._now_ms()
                if self._lookup(state_key) is None:
                    self._data[state_key] = ("OPEN", now + open_ms)
                    opened = True
                self._data[tripped_key] = ("1", now + open_ms * 2)

            return count, opened

    async def compare_and_delete(self, key: str, token: str) -> bool:
        async with self._lock:
            if self._get_string(key) == token:
                del self._data[key]
                return True
            return False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def health_check(self) -> HealthCheckResult:
        async with self._lock:
            return HealthCheckResult(
                healthy=True,
                store_type="memory",
                metadata={"keys": len(self._data)},
            )

    async def clear(self) -> None:
        """Drop every key."""
        async with self._lock:
            self._data.clear()
            self._scans.clear()
