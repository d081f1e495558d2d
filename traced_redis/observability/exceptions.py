"""Observability-specific exceptions for traced-redis.

Observability failures never replace the error of the operation being
observed: recording and span bookkeeping log and swallow their own failures.
These exceptions are only raised from setup paths (configuration, explicit
registration checks), never from the recording path.
"""

from __future__ import annotations

from typing import Any

from traced_redis.exceptions import RedisClientError

__all__ = [
    "ObservabilityError",
    "ObservabilityConfigurationError",
    "RegistrationError",
]


class ObservabilityError(RedisClientError):
    """Base exception for all metric and tracing errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize ObservabilityError.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
            cause: The underlying exception that caused this error.
        """
        super().__init__(message, details=details, cause=cause)


class ObservabilityConfigurationError(ObservabilityError):
    """Raised when observability configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        config_value: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize ObservabilityConfigurationError.

        Args:
            message: Human-readable error message.
            config_key: The configuration key that caused the error.
            config_value: The invalid configuration value.
            details: Optional dictionary with additional error context.
        """
        details = dict(details or {})
        if config_key is not None:
            details["config_key"] = config_key
        super().__init__(message, details)
        self.config_key = config_key
        self.config_value = config_value


class RegistrationError(ObservabilityError):
    """Raised by strict registration when a measurement or view is rejected.

    The registry's normal ``register_*`` methods never raise; they return
    False and log instead. ``MetricRegistry.require_registered`` raises this
    for callers that want a hard failure at startup.
    """

    def __init__(
        self,
        message: str,
        name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize RegistrationError.

        Args:
            message: Human-readable error message.
            name: Name of the measurement or view involved.
            details: Optional dictionary with additional error context.
        """
        details = dict(details or {})
        if name is not None:
            details["name"] = name
        super().__init__(message, details)
        self.name = name
