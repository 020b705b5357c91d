# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the chat resilience layer.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from ResilienceError, making it easy to catch
everything originating from the coordination primitives with a single
except clause.

The hierarchy separates four kinds of failure:

- ClientError and subclasses: business/client errors raised by the caller's
  own code. They bypass circuit breaker accounting.
- ServiceUnavailableError and subclasses: admission-denied conditions
  manufactured by the primitives themselves (rate limited, circuit open,
  bulkhead saturated). Callers map these to retry-later responses.
- StoreError and subclasses: the shared store could not be reached or
  rejected an operation.
- ConfigurationError: invalid per-call configuration.
"""


class ResilienceError(Exception):
    """Base exception for all resilience layer errors.

    Example:
        try:
            await bulkhead.execute(config, task)
        except ResilienceError as e:
            logger.error(f"Resilience error: {e}")
    """

    pass


# =============================================================================
# Admission denied
# =============================================================================


class ServiceUnavailableError(ResilienceError):
    """Raised when a primitive refuses to admit a call.

    This is the "temporarily unavailable, retry later" condition. It is never
    raised by the wrapped task itself.

    Attributes:
        retry_after_ms: Suggested wait in milliseconds before retrying.
            May be None if retry timing cannot be determined.
    """

    def __init__(self, message: str, retry_after_ms: int | None = None):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class RateLimitExceededError(ServiceUnavailableError):
    """Raised when a rate limit key has no tokens left.

    Attributes:
        key: The rate limit key that was exhausted.
        retry_after_ms: Time until one token has been refilled.

    Example:
        try:
            await limiter.check(f"room-create:{nickname}", config)
        except RateLimitExceededError as e:
            return Response(status=429, headers={"Retry-After": e.retry_after_ms})
    """

    def __init__(self, key: str, retry_after_ms: int | None = None):
        super().__init__(f"Rate limit exceeded for {key}", retry_after_ms)
        self.key = key


class CircuitOpenError(ServiceUnavailableError):
    """Raised when a circuit breaker rejects a call without running it.

    This happens while the circuit is OPEN, and while it is HALF_OPEN once
    every probe slot is taken.

    Attributes:
        name: The breaker (operation) name.
        state: The state the breaker was observed in ("OPEN" or "HALF_OPEN").
        retry_after_ms: Remaining time of the OPEN marker, if known.
    """

    def __init__(
        self,
        name: str,
        state: str = "OPEN",
        retry_after_ms: int | None = None,
    ):
        super().__init__(f"Circuit {name} is {state}", retry_after_ms)
        self.name = name
        self.state = state


class BulkheadSaturatedError(ServiceUnavailableError):
    """Raised when a bulkhead pool has no free slot.

    Attributes:
        name: The pool name.
        max_concurrency: The configured ceiling of the pool.
    """

    def __init__(self, name: str, max_concurrency: int):
        super().__init__(f"Bulkhead {name} saturated ({max_concurrency} in flight)")
        self.name = name
        self.max_concurrency = max_concurrency


# =============================================================================
# Shared store
# =============================================================================


class StoreError(ResilienceError):
    """Base class for failures talking to the shared store."""

    pass


class StoreConnectionError(StoreError):
    """Raised when the shared store cannot be reached.

    This may be a transient network issue or indicate that the store is down.
    Each primitive decides whether to fail open or closed on this error.
    """

    pass


class StoreOperationError(StoreError):
    """Raised when the store is reachable but an operation fails.

    Typical causes are script errors, wrong value types under a key, or
    out-of-memory replies.
    """

    pass


class ConfigurationError(ResilienceError):
    """Raised when a primitive configuration is invalid.

    Common causes include:
    - Non-positive limits, windows or durations
    - Empty breaker or pool names
    """

    pass


# =============================================================================
# Client / business errors
# =============================================================================


class ClientError(ResilienceError):
    """Base class for client or business errors.

    These signal a problem with the request, not with a downstream
    dependency, so the circuit breaker never counts them as failures.
    """

    pass


class NotFoundError(ClientError):
    """The requested entity does not exist."""


class BadRequestError(ClientError):
    """The request is malformed or violates a business rule."""


class UnauthorizedError(ClientError):
    """The caller is not authenticated."""


class ForbiddenError(ClientError):
    """The caller is authenticated but not allowed to perform the operation."""
