# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Distributed circuit breaker for resilience against cascading failures.

States (per operation name, shared by every instance):
- CLOSED: Normal operation, the task runs directly
- OPEN: Failing, calls are rejected immediately without running the task
- HALF_OPEN: Testing recovery, a bounded number of probes run

Store layout for breaker `name`:
- cb:{name}:state     "OPEN", expires after open_duration_ms
- cb:{name}:failures  failure counter, expires after open_duration_ms
- cb:{name}:tripped   set on every trip, expires after 2 * open_duration_ms
- cb:{name}:probe:{n} half-open probe lock n, holds the prober's token

No timer moves the breaker out of OPEN. The OPEN marker expires on its own;
a missing marker with the tripped marker still present *is* HALF_OPEN. Two
instances that both observe HALF_OPEN race for the probe locks with SET NX,
so at most half_open_max_attempts probes run at once.

Errors that signal a client problem (ClientError: not found, bad request,
unauthorized, forbidden) are re-raised unchanged and never counted.

Usage:
    breaker = CircuitBreaker(store)
    config = CircuitBreakerConfig(name="room-create", failure_threshold=3)
    room = await breaker.execute(config, lambda: repository.save(room))
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .backends.base import BaseStore
from .config import CircuitBreakerConfig, CircuitState, StoreFailurePolicy
from .exceptions import CircuitOpenError, ClientError, StoreError
from .observability.metrics import (
    CIRCUIT_FAILURES,
    CIRCUIT_OPENED,
    CIRCUIT_REJECTIONS,
    STORE_ERRORS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_SUFFIXES = (":state", ":failures", ":tripped")


@dataclass(frozen=True)
class CircuitStatus:
    """Snapshot of one breaker as seen in the shared store."""

    name: str
    state: CircuitState
    failure_count: int
    retry_after_ms: int | None = None


class CircuitBreaker:
    """
    Per-operation three-state failure isolation backed by the shared store.

    The breaker keeps no state in process memory; every instance constructed
    on the same store observes the same circuits.
    """

    KEY_PREFIX = "cb"

    def __init__(
        self,
        store: BaseStore,
        store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.FAIL_OPEN,
    ) -> None:
        """
        Args:
            store: Shared store
            store_failure_policy: FAIL_OPEN runs the task unguarded when the
                state cannot be read or a probe lock cannot be taken;
                FAIL_CLOSED re-raises the StoreError
        """
        self.store = store
        self.store_failure_policy = store_failure_policy

    def _key(self, name: str, suffix: str) -> str:
        return f"{self.KEY_PREFIX}:{name}:{suffix}"

    def _is_excluded(self, error: BaseException, config: CircuitBreakerConfig) -> bool:
        return isinstance(error, ClientError) or isinstance(
            error, config.excluded_exceptions
        )

    # ==========================================================================
    # State
    # ==========================================================================

    async def _read_state(self, name: str) -> tuple[CircuitState, int | None]:
        """Return (state, remaining OPEN time in ms)."""
        open_ttl = await self.store.pttl(self._key(name, "state"))
        if open_ttl != -2:
            return CircuitState.OPEN, (open_ttl if open_ttl >= 0 else None)
        if await self.store.exists(self._key(name, "tripped")):
            return CircuitState.HALF_OPEN, None
        return CircuitState.CLOSED, None

    async def get_state(self, name: str) -> CircuitState:
        """Current state of breaker name."""
        state, _ = await self._read_state(name)
        return state

    async def get_status(self, name: str) -> CircuitStatus:
        """State, failure count and remaining OPEN time of breaker name."""
        state, retry_after_ms = await self._read_state(name)
        failures = await self.store.get(self._key(name, "failures"))
        return CircuitStatus(
            name=name,
            state=state,
            failure_count=int(failures or 0),
            retry_after_ms=retry_after_ms,
        )

    async def get_health_status(self) -> dict[str, CircuitStatus]:
        """
        Report every breaker that currently has state in the store.

        Breakers that never failed (or fully recovered) have no keys and are
        not listed.
        """
        names: set[str] = set()
        cursor = 0
        while True:
            cursor, keys = await self.store.scan(cursor, match=f"{self.KEY_PREFIX}:*")
            for key in keys:
                for suffix in _STATE_SUFFIXES:
                    if key.endswith(suffix):
                        names.add(key[len(self.KEY_PREFIX) + 1 : -len(suffix)])
            if cursor == 0:
                break

        return {name: await self.get_status(name) for name in sorted(names)}

    async def reset(self, name: str) -> None:
        """Force breaker name back to CLOSED, dropping all of its keys."""
        keys = [self._key(name, suffix) for suffix in ("state", "failures", "tripped")]
        cursor = 0
        while True:
            cursor, probes = await self.store.scan(
                cursor, match=self._key(name, "probe:*")
            )
            keys.extend(probes)
            if cursor == 0:
                break
        await self.store.delete(*keys)
        logger.info(f"Circuit {name} reset to CLOSED")

    # ==========================================================================
    # Transitions
    # ==========================================================================

    async def _record_failure(
        self, config: CircuitBreakerConfig, error: Exception, probe: bool = False
    ) -> None:
        """Count a failure; a failed probe re-opens the circuit unconditionally."""
        CIRCUIT_FAILURES.labels(breaker=config.name).inc()
        threshold = 1 if probe else config.failure_threshold
        try:
            count, opened = await self.store.record_failure(
                self._key(config.name, "failures"),
                self._key(config.name, "state"),
                self._key(config.name, "tripped"),
                threshold,
                config.open_duration_ms,
            )
        except StoreError as e:
            logger.error(f"Circuit {config.name}: could not record failure: {e}")
            return

        if opened:
            CIRCUIT_OPENED.labels(breaker=config.name).inc()
            logger.error(
                f"Circuit {config.name} OPEN for {config.open_duration_ms}ms "
                f"(failures={count}, last error: {error!r})"
            )
        else:
            logger.debug(
                f"Circuit {config.name} failure {count}/{config.failure_threshold}: {error!r}"
            )

    async def _clear_failures(self, name: str) -> None:
        try:
            await self.store.delete(self._key(name, "failures"))
        except StoreError as e:
            logger.error(f"Circuit {name}: could not clear failures: {e}")

    async def _close(self, name: str) -> None:
        try:
            await self.store.delete(
                self._key(name, "failures"),
                self._key(name, "state"),
                self._key(name, "tripped"),
            )
        except StoreError as e:
            logger.error(f"Circuit {name}: could not close: {e}")
            return
        logger.info(f"Circuit {name} CLOSED")

    async def _acquire_probe(self, config: CircuitBreakerConfig, token: str) -> str | None:
        """Take a free half-open probe slot. Returns its key, or None if all are taken."""
        for slot in range(config.half_open_max_attempts):
            probe_key = self._key(config.name, f"probe:{slot}")
            if await self.store.set(
                probe_key, token, px=config.open_duration_ms, nx=True
            ):
                return probe_key
        return None

    async def _release_probe(self, probe_key: str, token: str) -> None:
        try:
            await self.store.compare_and_delete(probe_key, token)
        except StoreError as e:
            # The lock expires on its own after open_duration_ms
            logger.warning(f"Could not release probe lock {probe_key}: {e}")

    async def _reject(
        self,
        config: CircuitBreakerConfig,
        state: CircuitState,
        retry_after_ms: int | None,
        fallback: Callable[[Exception], Awaitable[T]] | None,
    ) -> T:
        CIRCUIT_REJECTIONS.labels(breaker=config.name, state=state.value).inc()
        error = CircuitOpenError(config.name, state.value, retry_after_ms)
        logger.debug(f"Circuit {config.name} {state.value}, call rejected")
        if fallback is not None:
            return await fallback(error)
        raise error

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def execute(
        self,
        config: CircuitBreakerConfig,
        task: Callable[[], Awaitable[T]],
        fallback: Callable[[Exception], Awaitable[T]] | None = None,
    ) -> T:
        """
        Run task under the breaker named config.name.

        Args:
            config: Breaker configuration
            task: Zero-argument coroutine function to protect
            fallback: Optional coroutine function called with the error instead
                of raising, for rejections and counted failures (not for
                client errors)

        Returns:
            The task's result, or the fallback's

        Raises:
            CircuitOpenError: If the circuit is OPEN, or HALF_OPEN with no free
                probe slot, and no fallback is given
            Exception: Whatever the task raised
        """
        try:
            state, retry_after_ms = await self._read_state(config.name)
        except StoreError as e:
            STORE_ERRORS.labels(
                primitive="circuit_breaker", policy=self.store_failure_policy.value
            ).inc()
            if self.store_failure_policy is StoreFailurePolicy.FAIL_CLOSED:
                raise
            logger.warning(
                f"Circuit {config.name}: store unavailable, running unguarded: {e}"
            )
            return await task()

        if state is CircuitState.OPEN:
            return await self._reject(config, state, retry_after_ms, fallback)

        if state is CircuitState.HALF_OPEN:
            return await self._probe(config, task, fallback)

        try:
            result = await task()
        except Exception as e:
            if self._is_excluded(e, config):
                raise
            await self._record_failure(config, e)
            if fallback is not None:
                return await fallback(e)
            raise

        await self._clear_failures(config.name)
        return result

    async def _probe(
        self,
        config: CircuitBreakerConfig,
        task: Callable[[], Awaitable[T]],
        fallback: Callable[[Exception], Awaitable[T]] | None,
    ) -> T:
        token = uuid.uuid4().hex
        try:
            probe_key = await self._acquire_probe(config, token)
        except StoreError as e:
            STORE_ERRORS.labels(
                primitive="circuit_breaker", policy=self.store_failure_policy.value
            ).inc()
            if self.store_failure_policy is StoreFailurePolicy.FAIL_CLOSED:
                raise
            logger.warning(
                f"Circuit {config.name}: could not take probe lock, running unguarded: {e}"
            )
            return await task()

        if probe_key is None:
            return await self._reject(config, CircuitState.HALF_OPEN, None, fallback)

        logger.warning(f"Circuit {config.name} HALF_OPEN, probing")
        try:
            try:
                result = await task()
            except Exception as e:
                if self._is_excluded(e, config):
                    raise
                await self._record_failure(config, e, probe=True)
                if fallback is not None:
                    return await fallback(e)
                raise
            await self._close(config.name)
            return result
        finally:
            await self._release_probe(probe_key, token)
