# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisStore for the chat resilience layer

This module provides the RedisStore that every server instance uses as the
single source of truth for rate limit buckets, circuit state, bulkhead
counters and cache entries.

Key Features:
- One connection pool per event loop, shared across instances
- Atomic Lua scripts for the multi-step operations
- Transparent script reload when Redis loses its script cache
- Redis exceptions translated into StoreConnectionError / StoreOperationError
"""

import asyncio
import logging
import os
import threading
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, ClassVar, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import (
    ConnectionError,
    NoScriptError,
    RedisError,
    TimeoutError,
)

from ..exceptions import StoreConnectionError, StoreOperationError
from .base import BaseStore, HealthCheckResult

logger = logging.getLogger(__name__)


def _url_from_environment() -> str | None:
    """Build a Redis URL from REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD."""
    host = os.environ.get("REDIS_HOST")
    if not host:
        return None
    port = os.environ.get("REDIS_PORT", "6379")
    db = os.environ.get("REDIS_DB", "0")
    password = os.environ.get("REDIS_PASSWORD")
    auth = f":{password}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


class RedisStore(BaseStore):
    """
    A distributed Redis store for the coordination primitives.

    Deployment Requirements:
    - Redis 4.0+ (multi-field HSET, Lua scripting)
    - All instances must point at the same Redis (or the same cluster slot
      for related keys)
    """

    # Class-level connection pools indexed by event loop ID
    _connection_pools: ClassVar[dict[int, ConnectionPool]] = {}
    _pool_lock: ClassVar[threading.Lock] = threading.Lock()

    # Class-level Lua scripts loaded from files
    _lua_scripts: ClassVar[dict[str, str]] = {}

    SCRIPT_NAMES: ClassVar[tuple[str, ...]] = (
        "token_bucket",
        "record_failure",
        "compare_and_delete",
    )

    @classmethod
    def _load_lua_scripts(cls) -> None:
        """Load Lua scripts from files at class level."""
        if cls._lua_scripts:
            return  # Already loaded

        lua_dir = Path(__file__).parent / "lua"

        for script_name in cls.SCRIPT_NAMES:
            script_path = lua_dir / f"{script_name}.lua"
            if script_path.exists():
                cls._lua_scripts[script_name] = script_path.read_text(encoding="utf-8")
            else:
                logger.warning(f"Lua script not found: {script_path}")

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        max_connections: int = 10,
        socket_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the Redis store.

        Args:
            redis_url: Redis connection URL. Falls back to the REDIS_URL environment
                variable, then to REDIS_HOST/REDIS_PORT/REDIS_DB/REDIS_PASSWORD,
                then to "redis://localhost:6379/0".
            redis_client: Optional pre-configured client (must use decode_responses=True)
            max_connections: Maximum connections per pool
            socket_timeout: Connect and read timeout in seconds

        Environment Variables:
            REDIS_URL: Full connection URL.
            REDIS_HOST, REDIS_PORT, REDIS_DB, REDIS_PASSWORD: Used when REDIS_URL is unset.
        """
        self.redis_url = (
            redis_url
            or os.environ.get("REDIS_URL")
            or _url_from_environment()
            or "redis://localhost:6379/0"
        )
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout

        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None
        self._event_loop_id: int | None = None
        self._connected = False
        self._connection_lock = asyncio.Lock()

        # Lua script SHAs
        self._script_shas: dict[str, str] = {}

    async def _ensure_connected(self) -> Any:
        """Return a live client, creating or re-creating the pool per event loop."""
        if not self._owned_redis:
            if not self._connected:
                async with self._connection_lock:
                    if not self._connected:
                        await self._load_scripts()
                        self._connected = True
            return self._redis

        loop_id = id(asyncio.get_running_loop())

        if self._event_loop_id and self._event_loop_id != loop_id:
            # Connections cannot be shared between event loops
            self._redis = None
            self._connected = False

        self._event_loop_id = loop_id

        if self._redis is not None and self._connected:
            return self._redis

        async with self._connection_lock:
            if self._redis is not None and self._connected:
                return self._redis

            with self._pool_lock:
                pool = self._connection_pools.get(loop_id)
                created_new_pool = pool is None
                if pool is None:
                    pool = ConnectionPool.from_url(
                        self.redis_url,
                        max_connections=self.max_connections,
                        decode_responses=True,
                        socket_connect_timeout=self.socket_timeout,
                        socket_timeout=self.socket_timeout,
                        retry_on_timeout=True,
                        health_check_interval=30,
                    )

            client = Redis(connection_pool=pool)
            try:
                await asyncio.wait_for(
                    cast(Awaitable[bool], client.ping()), timeout=self.socket_timeout
                )
                self._redis = client
                await self._load_scripts()
            except (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError) as e:
                self._redis = None
                if created_new_pool:
                    try:
                        await pool.disconnect()
                    except Exception as disconnect_error:
                        logger.debug(f"Error disconnecting failed pool: {disconnect_error}")
                raise StoreConnectionError(
                    f"Cannot connect to Redis at {self.redis_url}: {e}"
                ) from e

            # Only register pool AFTER successful ping and script load
            if created_new_pool:
                with self._pool_lock:
                    self._connection_pools[loop_id] = pool
                logger.info(f"Created Redis connection pool for loop {loop_id}")

            self._connected = True
            return self._redis

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        if not self._redis:
            raise RuntimeError("Redis client not initialized")

        self.__class__._load_lua_scripts()

        for script_name, script_source in self._lua_scripts.items():
            self._script_shas[script_name] = await self._redis.script_load(
                script_source
            )

    async def _evalsha_with_reload(
        self,
        redis_client: Any,
        script_name: str,
        num_keys: int,
        *args: Any,
    ) -> Any:
        """
        Execute EVALSHA with automatic script reload on NoScriptError.

        When Redis restarts or fails over, all Lua scripts are lost. This
        detects the NoScriptError, reloads the scripts and retries once.
        """
        script_sha = self._script_shas.get(script_name)
        if not script_sha:
            await self._load_scripts()
            script_sha = self._script_shas[script_name]

        try:
            return await redis_client.evalsha(script_sha, num_keys, *args)
        except NoScriptError:
            logger.warning(
                f"Script '{script_name}' not found in Redis (SHA: {script_sha}). "
                f"Reloading all Lua scripts..."
            )
            self._script_shas.clear()
            await self._load_scripts()

            new_sha = self._script_shas[script_name]
            logger.info(f"Scripts reloaded. Retrying with new SHA: {new_sha}")
            return await redis_client.evalsha(new_sha, num_keys, *args)

    async def _execute(self, command: str, *args: Any, **kwargs: Any) -> Any:
        """Run a single Redis command, translating Redis errors."""
        try:
            redis_client = await self._ensure_connected()
            return await getattr(redis_client, command)(*args, **kwargs)
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Redis connection error during {command}: {e}")
            self._connected = False
            raise StoreConnectionError(f"Redis {command} failed: {e}") from e
        except RedisError as e:
            logger.error(f"Redis error during {command}: {e}")
            raise StoreOperationError(f"Redis {command} failed: {e}") from e

    async def _script(self, script_name: str, keys: list[str], args: list[Any]) -> Any:
        """Run one of the bundled Lua scripts, translating Redis errors."""
        try:
            redis_client = await self._ensure_connected()
            return await self._evalsha_with_reload(
                redis_client, script_name, len(keys), *keys, *args
            )
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Redis connection error during {script_name}: {e}")
            self._connected = False
            raise StoreConnectionError(f"Redis script {script_name} failed: {e}") from e
        except RedisError as e:
            logger.error(f"Redis error during {script_name}: {e}")
            raise StoreOperationError(f"Redis script {script_name} failed: {e}") from e

    # ==========================================================================
    # Scalar keys
    # ==========================================================================

    async def get(self, key: str) -> str | None:
        return cast(str | None, await self._execute("get", key))

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool:
        if px is not None:
            ex = None
        result = await self._execute("set", key, value, ex=ex, px=px, nx=nx)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("delete", *keys))

    async def exists(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("exists", *keys))

    async def incr(self, key: str) -> int:
        return int(await self._execute("incr", key))

    async def decr(self, key: str) -> int:
        return int(await self._execute("decr", key))

    async def pexpire(self, key: str, ms: int) -> bool:
        return bool(await self._execute("pexpire", key, ms))

    async def pttl(self, key: str) -> int:
        return int(await self._execute("pttl", key))

    # ==========================================================================
    # Hashes
    # ==========================================================================

    async def hmset(self, key: str, mapping: dict[str, Any]) -> None:
        await self._execute("hset", key, mapping=mapping)

    async def hmget(self, key: str, *fields: str) -> list[str | None]:
        return list(await self._execute("hmget", key, list(fields)))

    # ==========================================================================
    # Keyspace iteration
    # ==========================================================================

    async def scan(
        self, cursor: int = 0, match: str | None = None, count: int = 100
    ) -> tuple[int, list[str]]:
        next_cursor, keys = await self._execute(
            "scan", cursor=cursor, match=match, count=count
        )
        return int(next_cursor), list(keys)

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
        result = await self._script(
            "token_bucket",
            [key],
            [max_tokens, refill_per_ms, now_ms, ttl_ms],
        )
        return int(result[0]) == 1, float(result[1])

    async def record_failure(
        self,
        failures_key: str,
        state_key: str,
        tripped_key: str,
        threshold: int,
        open_ms: int,
    ) -> tuple[int, bool]:
        result = await self._script(
            "record_failure",
            [failures_key, state_key, tripped_key],
            [threshold, open_ms],
        )
        return int(result[0]), int(result[1]) == 1

    async def compare_and_delete(self, key: str, token: str) -> bool:
        result = await self._script("compare_and_delete", [key], [token])
        return int(result) == 1

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def health_check(self) -> HealthCheckResult:
        try:
            redis_client = await self._ensure_connected()
            await redis_client.ping()
            return HealthCheckResult(
                healthy=True,
                store_type="redis",
                metadata={"url": self.redis_url, "scripts": sorted(self._script_shas)},
            )
        except (StoreConnectionError, RedisError, OSError) as e:
            return HealthCheckResult(healthy=False, store_type="redis", error=str(e))

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._redis is not None and self._owned_redis:
            try:
                await asyncio.wait_for(self._redis.aclose(), timeout=2.5)
            except asyncio.TimeoutError:
                logger.warning("Redis client close timed out")
        self._connected = False
