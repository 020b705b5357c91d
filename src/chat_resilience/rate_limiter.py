# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Distributed token bucket rate limiter.

Each key owns a bucket of at most max_requests tokens, refilled continuously
at max_requests / window_ms tokens per millisecond. The refill-consume-write
step runs atomically inside the shared store, so any number of server
instances can call is_allowed for the same key without racing.

Failure semantics: if the store is unreachable the limiter fails open and
admits the request. Blocking legitimate traffic during an infrastructure
outage is considered worse than briefly losing enforcement.
"""

import logging
import math
import time
from dataclasses import dataclass

from .backends.base import BaseStore
from .config import RateLimitConfig
from .exceptions import RateLimitExceededError, StoreError
from .observability.metrics import RATE_LIMIT_DECISIONS, STORE_ERRORS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit decision."""

    allowed: bool
    remaining: int
    retry_after_ms: int | None = None


class RateLimiter:
    """
    Per-key token bucket admission control backed by the shared store.

    Example:
        >>> limiter = RateLimiter(store)
        >>> result = await limiter.is_allowed(
        ...     f"room-create:{nickname}", RateLimitConfig(max_requests=3, window_ms=60_000)
        ... )
        >>> if not result.allowed:
        ...     raise RateLimitExceededError(nickname, result.retry_after_ms)
    """

    KEY_PREFIX = "ratelimit"

    def __init__(self, store: BaseStore) -> None:
        self.store = store

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}:{key}"

    async def is_allowed(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Try to take one token from the bucket for key.

        Args:
            key: Caller-chosen identity (user, IP, operation:user, ...)
            config: Bucket capacity and refill window

        Returns:
            RateLimitResult; retry_after_ms is set only when denied
        """
        now_ms = int(time.time() * 1000)
        refill_per_ms = config.refill_per_ms

        try:
            allowed, tokens = await self.store.consume_token(
                self._key(key),
                config.max_requests,
                refill_per_ms,
                now_ms,
                config.ttl_ms,
            )
        except StoreError as e:
            logger.error(f"Rate limiter failed for {key}, failing open: {e}")
            RATE_LIMIT_DECISIONS.labels(outcome="error").inc()
            STORE_ERRORS.labels(primitive="rate_limiter", policy="fail_open").inc()
            return RateLimitResult(allowed=True, remaining=0)

        if allowed:
            RATE_LIMIT_DECISIONS.labels(outcome="allowed").inc()
            return RateLimitResult(allowed=True, remaining=math.floor(tokens))

        # Time to refill one token, i.e. 1 / refill_per_ms without the float error
        retry_after_ms = math.ceil(config.window_ms / config.max_requests)
        RATE_LIMIT_DECISIONS.labels(outcome="denied").inc()
        logger.debug(f"Rate limited {key}, retry after {retry_after_ms}ms")
        return RateLimitResult(
            allowed=False,
            remaining=math.floor(tokens),
            retry_after_ms=retry_after_ms,
        )

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Like is_allowed, but raise when denied.

        Raises:
            RateLimitExceededError: If the bucket for key is empty
        """
        result = await self.is_allowed(key, config)
        if not result.allowed:
            logger.warning(f"Rate limit exceeded for {key}")
            raise RateLimitExceededError(key, result.retry_after_ms)
        return result
