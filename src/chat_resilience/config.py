# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the coordination primitives

Every primitive takes its configuration per call, so different operations can
be tuned independently while sharing one store. The dataclasses here validate
themselves on construction and raise ConfigurationError on bad values.
"""

from dataclasses import dataclass, field
from enum import Enum

from .exceptions import ConfigurationError


class StoreFailurePolicy(Enum):
    """What a primitive does when the shared store is unreachable.

    - FAIL_OPEN: Let the call through without coordination and log the error.
      Favors availability; a store outage cannot take the service down.
    - FAIL_CLOSED: Re-raise the StoreError. Favors strict enforcement.
    """

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Rejecting requests
    HALF_OPEN = "HALF_OPEN"  # Probing recovery


class BulkheadHealth(str, Enum):
    """Bulkhead pool health as reported by get_status."""

    HEALTHY = "HEALTHY"
    SATURATED = "SATURATED"


def _require_name(kind: str, name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"{kind} name must be a non-empty string")


def _require_positive(kind: str, field_name: str, value: int | float) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ConfigurationError(
            f"{kind} {field_name} must be a positive number, got {value!r}"
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Token bucket parameters.

    A bucket holds at most max_requests tokens and refills continuously at
    max_requests / window_ms tokens per millisecond.
    """

    max_requests: int
    """Bucket capacity."""

    window_ms: int
    """Time to refill an empty bucket completely, in milliseconds."""

    def __post_init__(self) -> None:
        _require_positive("RateLimitConfig", "max_requests", self.max_requests)
        _require_positive("RateLimitConfig", "window_ms", self.window_ms)

    @property
    def refill_per_ms(self) -> float:
        return self.max_requests / self.window_ms

    @property
    def ttl_ms(self) -> int:
        """Idle buckets are garbage-collected after two windows."""
        return int(self.window_ms * 2)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for one circuit breaker (one protected operation)."""

    name: str
    """Operation name; the breaker's identity across all instances."""

    failure_threshold: int = 5
    """Number of counted failures that opens the circuit."""

    open_duration_ms: int = 60_000
    """How long the circuit stays OPEN before probing is allowed."""

    half_open_max_attempts: int = 1
    """Maximum concurrent probes while HALF_OPEN."""

    excluded_exceptions: tuple[type[BaseException], ...] = field(default=())
    """Extra exception types that must not count as failures (ClientError never does)."""

    def __post_init__(self) -> None:
        _require_name("CircuitBreakerConfig", self.name)
        _require_positive("CircuitBreakerConfig", "failure_threshold", self.failure_threshold)
        _require_positive("CircuitBreakerConfig", "open_duration_ms", self.open_duration_ms)
        _require_positive(
            "CircuitBreakerConfig", "half_open_max_attempts", self.half_open_max_attempts
        )


@dataclass(frozen=True)
class BulkheadConfig:
    """Configuration for one bulkhead pool."""

    name: str
    """Pool name; shared by every instance."""

    max_concurrency: int
    """Maximum calls in flight across all instances."""

    ttl_ms: int = 10_000
    """Counter expiry; the pool self-heals after this long without a first holder."""

    def __post_init__(self) -> None:
        if isinstance(self.name, Enum):
            # BulkheadName members are stored by value
            object.__setattr__(self, "name", self.name.value)
        _require_name("BulkheadConfig", self.name)
        _require_positive("BulkheadConfig", "max_concurrency", self.max_concurrency)
        _require_positive("BulkheadConfig", "ttl_ms", self.ttl_ms)


@dataclass(frozen=True)
class CacheConfig:
    """Cache entry lifetime and single-flight lock tuning."""

    ttl_seconds: int = 300
    """Default entry lifetime."""

    lock_ttl_ms: int = 5_000
    """Lifetime of the stampede lock; bounds how long a crashed holder blocks others."""

    lock_wait_seconds: float = 0.05
    """How long a caller that lost the lock waits before re-checking the cache."""

    scan_count: int = 100
    """Batch size hint for pattern deletion."""

    def __post_init__(self) -> None:
        _require_positive("CacheConfig", "ttl_seconds", self.ttl_seconds)
        _require_positive("CacheConfig", "lock_ttl_ms", self.lock_ttl_ms)
        _require_positive("CacheConfig", "scan_count", self.scan_count)
        if self.lock_wait_seconds < 0:
            raise ConfigurationError(
                f"CacheConfig lock_wait_seconds must not be negative, got {self.lock_wait_seconds!r}"
            )
