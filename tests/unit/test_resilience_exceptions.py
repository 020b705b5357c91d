"""Unit tests for the exceptions module.

Tests all exception classes defined in chat_resilience.exceptions.
"""

import pytest

from chat_resilience.exceptions import (
    BadRequestError,
    BulkheadSaturatedError,
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    RateLimitExceededError,
    ResilienceError,
    ServiceUnavailableError,
    StoreConnectionError,
    StoreError,
    StoreOperationError,
    UnauthorizedError,
)


class TestResilienceError:
    """Tests for the base ResilienceError exception."""

    def test_can_be_caught_as_exception(self):
        with pytest.raises(Exception):  # noqa: B017
            raise ResilienceError("test error")

    def test_message_preserved(self):
        error = ResilienceError("test message")
        assert str(error) == "test message"


class TestServiceUnavailableErrors:
    """Admission-denied errors share one base and carry retry hints."""

    def test_rate_limit_exceeded(self):
        error = RateLimitExceededError("room-create:alice", retry_after_ms=2000)
        assert isinstance(error, ServiceUnavailableError)
        assert error.key == "room-create:alice"
        assert error.retry_after_ms == 2000
        assert str(error) == "Rate limit exceeded for room-create:alice"

    def test_circuit_open_defaults(self):
        error = CircuitOpenError("room-create")
        assert isinstance(error, ServiceUnavailableError)
        assert error.name == "room-create"
        assert error.state == "OPEN"
        assert error.retry_after_ms is None
        assert str(error) == "Circuit room-create is OPEN"

    def test_circuit_open_half_open(self):
        error = CircuitOpenError("room-create", "HALF_OPEN", 150)
        assert error.state == "HALF_OPEN"
        assert error.retry_after_ms == 150
        assert "HALF_OPEN" in str(error)

    def test_bulkhead_saturated(self):
        error = BulkheadSaturatedError("room-read", 20)
        assert isinstance(error, ServiceUnavailableError)
        assert error.name == "room-read"
        assert error.max_concurrency == 20
        assert error.retry_after_ms is None
        assert "room-read" in str(error)

    @pytest.mark.parametrize(
        "error",
        [
            RateLimitExceededError("k"),
            CircuitOpenError("c"),
            BulkheadSaturatedError("p", 1),
        ],
    )
    def test_all_caught_as_resilience_error(self, error):
        with pytest.raises(ResilienceError):
            raise error


class TestStoreErrors:
    def test_hierarchy(self):
        assert issubclass(StoreConnectionError, StoreError)
        assert issubclass(StoreOperationError, StoreError)
        assert issubclass(StoreError, ResilienceError)

    def test_store_errors_are_not_admission_errors(self):
        assert not issubclass(StoreError, ServiceUnavailableError)


class TestClientErrors:
    @pytest.mark.parametrize(
        "error_class",
        [NotFoundError, BadRequestError, UnauthorizedError, ForbiddenError],
    )
    def test_subclasses_of_client_error(self, error_class):
        error = error_class("nope")
        assert isinstance(error, ClientError)
        assert isinstance(error, ResilienceError)
        assert not isinstance(error, ServiceUnavailableError)

    def test_configuration_error_is_separate(self):
        assert issubclass(ConfigurationError, ResilienceError)
        assert not issubclass(ConfigurationError, ClientError)
