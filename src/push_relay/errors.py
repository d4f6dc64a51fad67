"""
Custom exceptions for push-relay.

Provides structured error handling with machine-readable codes so callers
can branch on failure class without string matching.
"""

from __future__ import annotations

from typing import Any, Optional


class PushError(Exception):
    """Base error for all push-relay failures."""

    code = "PUSH_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PushError):
    """Required configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class ValidationError(PushError):
    """Input (subscription, keys) failed validation."""

    code = "VALIDATION_ERROR"


class ProviderError(PushError):
    """Transport-level failure reported by a provider adapter."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        should_retry: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.should_retry = should_retry


class StorageError(PushError):
    """Persistence operation failed."""

    code = "STORAGE_ERROR"


class CircuitBreakerOpenError(PushError):
    """Call rejected because the circuit breaker is open."""

    code = "CIRCUIT_BREAKER_OPEN"

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        state: str = "open",
        failure_count: int = 0,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.state = state
        self.failure_count = failure_count


class RateLimitError(PushError):
    """Rate limit exceeded or a request that can never be satisfied."""

    code = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class ShutdownError(PushError):
    """New work was submitted after shutdown started."""

    code = "SHUTTING_DOWN"


def map_storage_error(e: Exception, operation: str) -> StorageError:
    """Wrap a backend exception into a StorageError tagged with the operation."""
    if isinstance(e, StorageError):
        return e
    return StorageError(
        f"Failed to {operation}: {e}",
        {"operation": operation, "original_error": f"{type(e).__name__}: {e}"},
    )
