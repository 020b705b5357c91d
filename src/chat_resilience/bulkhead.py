# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Distributed bulkhead: a concurrency ceiling per resource pool.

Unlike the rate limiter, which bounds throughput over time, a bulkhead bounds
how many calls of one pool are in flight at once across every instance, so a
slow dependency cannot exhaust all capacity.

Each pool is one integer counter in the shared store (bulkhead:{name}):
INCR takes a slot, DECR gives it back. The first holder sets the counter's
expiry to ttl_ms, so a process that dies while holding slots cannot leave the
pool saturated forever.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .backends.base import BaseStore
from .config import BulkheadConfig, BulkheadHealth, StoreFailurePolicy
from .exceptions import BulkheadSaturatedError, StoreError
from .observability.metrics import BULKHEAD_ACTIVE, BULKHEAD_REJECTIONS, STORE_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BulkheadStatus:
    """Observability snapshot of one pool."""

    name: str
    current_concurrency: int
    max_concurrency: int
    utilization: float
    """Percentage of max_concurrency in use, rounded to 2 decimals."""
    status: BulkheadHealth


class Bulkhead:
    """Per-pool concurrency admission control backed by the shared store."""

    KEY_PREFIX = "bulkhead"

    def __init__(
        self,
        store: BaseStore,
        store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.FAIL_OPEN,
    ) -> None:
        self.store = store
        self.store_failure_policy = store_failure_policy

    def _key(self, name: str) -> str:
        return f"{self.KEY_PREFIX}:{name}"

    async def _release(self, key: str) -> None:
        try:
            await self.store.decr(key)
        except StoreError as e:
            # The counter expires after ttl_ms, which returns the slot eventually
            logger.error(f"Could not release bulkhead slot {key}: {e}")

    async def execute(self, config: BulkheadConfig, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run task inside pool config.name.

        Raises:
            BulkheadSaturatedError: If max_concurrency calls are already in flight
        """
        key = self._key(config.name)

        try:
            current = await self.store.incr(key)
        except StoreError as e:
            STORE_ERRORS.labels(
                primitive="bulkhead", policy=self.store_failure_policy.value
            ).inc()
            if self.store_failure_policy is StoreFailurePolicy.FAIL_CLOSED:
                raise
            logger.warning(f"Bulkhead {config.name}: store unavailable, running unbounded: {e}")
            return await task()

        # The slot is taken from here on and must be given back on every path
        if current == 1:
            try:
                await self.store.pexpire(key, config.ttl_ms)
            except StoreError as e:
                STORE_ERRORS.labels(
                    primitive="bulkhead", policy=self.store_failure_policy.value
                ).inc()
                logger.error(f"Bulkhead {config.name}: could not set expiry on {key}: {e}")

        if current > config.max_concurrency:
            await self._release(key)
            BULKHEAD_REJECTIONS.labels(pool=config.name).inc()
            logger.warning(
                f"Bulkhead {config.name} saturated ({current - 1}/{config.max_concurrency})"
            )
            raise BulkheadSaturatedError(config.name, config.max_concurrency)

        BULKHEAD_ACTIVE.labels(pool=config.name).inc()
        try:
            return await task()
        finally:
            BULKHEAD_ACTIVE.labels(pool=config.name).dec()
            # Released even if the calling task is cancelled
            await asyncio.shield(self._release(key))

    async def get_status(self, config: BulkheadConfig) -> BulkheadStatus:
        """Current usage of pool config.name."""
        value = int(await self.store.get(self._key(config.name)) or 0)
        # Expiry while calls are in flight leaves the counter negative until they finish
        value = max(0, value)
        return BulkheadStatus(
            name=config.name,
            current_concurrency=value,
            max_concurrency=config.max_concurrency,
            utilization=round(value / config.max_concurrency * 100, 2),
            status=(
                BulkheadHealth.SATURATED
                if value >= config.max_concurrency
                else BulkheadHealth.HEALTHY
            ),
        )
