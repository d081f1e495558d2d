"""Exception hierarchy for traced-redis.

All exceptions raised by the connection layer inherit from RedisClientError so
callers can catch any client-side failure at a single point. The hierarchy
separates connection-level faults, which leave the socket unusable and mark the
connection as broken, from data errors, which are well-formed server replies
rejecting one specific command.

Exception Hierarchy:
    RedisClientError (base)
    ├── ConfigurationError
    │   ├── InvalidConfigValueError
    │   └── MissingConfigError
    ├── RedisConnectionError
    │   ├── TLSVerificationError
    │   ├── ProtocolEncodeError
    │   └── ProtocolDecodeError
    ├── DataError
    │   ├── BusyError
    │   ├── NoScriptError
    │   ├── AskDataError
    │   └── MovedDataError
    └── UnexpectedReplyError

Example:
    >>> try:
    ...     reply = connection.get_status_code_reply()
    ... except DataError as e:
    ...     logger.warning(f"Server rejected command: {e}")
    ... except RedisConnectionError as e:
    ...     logger.error(f"Connection failed: {e}")
"""

from __future__ import annotations

from typing import Any, Self


class RedisClientError(Exception):
    """Base exception for all traced-redis errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
        cause: Optional original exception that caused this error.

    Example:
        >>> try:
        ...     raise RedisClientError("Something went wrong", details={"key": "value"})
        ... except RedisClientError as e:
        ...     print(f"Error: {e.message}, Details: {e.details}")
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional error context.
            cause: Optional original exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return string representation with details if present."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"cause={self.cause!r})"
        )

    def with_context(self, **kwargs: Any) -> Self:
        """Create a new exception with additional context details.

        The original exception is left untouched.

        Args:
            **kwargs: Additional context to add to details.

        Returns:
            New exception instance with merged details.

        Example:
            >>> e = RedisClientError("Error", details={"key": "value"})
            >>> e.with_context(host="localhost").details
            {'key': 'value', 'host': 'localhost'}
        """
        return self._copy(details={**self.details, **kwargs})

    def _copy(
        self,
        *,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> Self:
        """Copy this exception without re-running a subclass __init__."""
        new = self.__class__.__new__(self.__class__)
        new.__dict__.update(self.__dict__)
        new.message = message if message is not None else self.message
        new.details = details if details is not None else dict(self.details)
        new.cause = cause if cause is not None else self.cause
        Exception.__init__(new, new.message)
        return new


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RedisClientError):
    """Exception for configuration-related errors.

    Attributes:
        config_key: Optional key that caused the configuration error.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details=details, cause=cause)
        self.config_key = config_key


class InvalidConfigValueError(ConfigurationError):
    """Exception for invalid configuration values.

    Attributes:
        config_key: The configuration key with invalid value.
        value: The invalid value that was provided.
        expected: Description of what was expected.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str,
        value: Any = None,
        expected: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        details["value"] = value
        if expected:
            details["expected"] = expected
        super().__init__(message, config_key=config_key, details=details, cause=cause)
        self.value = value
        self.expected = expected


class MissingConfigError(ConfigurationError):
    """Exception for a missing required configuration key."""

    def __init__(
        self,
        config_key: str,
        *,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        message = f"Required configuration key '{config_key}' is missing"
        super().__init__(message, config_key=config_key, details=details, cause=cause)


# =============================================================================
# Connection Errors
# =============================================================================


class RedisConnectionError(RedisClientError):
    """Exception for socket-level failures.

    Raised when connecting, reading, writing or negotiating TLS fails. Once
    raised by a Connection, that connection reports itself as broken until it
    is reconnected.

    Attributes:
        host: Optional host the connection was talking to.
        port: Optional port the connection was talking to.
    """

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        port: int | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize connection error.

        Args:
            message: Human-readable error description.
            host: Optional host the connection was talking to.
            port: Optional port the connection was talking to.
            details: Optional dictionary with additional error context.
            cause: Optional original exception that caused this error.
        """
        details = details or {}
        if host is not None:
            details["host"] = host
        if port is not None:
            details["port"] = port
        super().__init__(message, details=details, cause=cause)
        self.host = host
        self.port = port

    def with_server_message(self, server_message: str) -> Self:
        """Create a copy whose message is the error text sent by the server.

        Used when the server explained why it dropped the connection before
        closing it. The original error is kept as cause.

        Args:
            server_message: Error line read back from the server.

        Returns:
            New exception of the same type.
        """
        return self._copy(
            message=server_message,
            details={**self.details, "original_message": self.message},
            cause=self.cause if self.cause is not None else self,
        )


class TLSVerificationError(RedisConnectionError):
    """Raised when hostname verification rejects the negotiated TLS session."""

    def __init__(
        self,
        host: str,
        *,
        port: int | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        message = f"The connection to '{host}' failed ssl/tls hostname verification."
        super().__init__(message, host=host, port=port, details=details, cause=cause)


class ProtocolEncodeError(RedisConnectionError):
    """Raised when a command cannot be written onto the output stream."""


class ProtocolDecodeError(RedisConnectionError):
    """Raised when bytes from the server cannot be parsed.

    The stream position is unrecoverable afterwards, so this is treated as a
    connection-level failure.
    """


# =============================================================================
# Data Errors
# =============================================================================


class DataError(RedisClientError):
    """A well-formed error reply rejecting one specific command.

    This is not a connection fault and never marks the connection as broken.

    Attributes:
        error_code: Leading upper-case word of the server message (e.g. "ERR").
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        if error_code:
            details["error_code"] = error_code
        super().__init__(message, details=details, cause=cause)
        self.error_code = error_code

    @classmethod
    def from_reply(cls, line: str) -> DataError:
        """Build the most specific DataError for a server error line.

        Args:
            line: Error reply text without the leading marker byte.

        Returns:
            DataError instance, or a subclass for known error codes.

        Example:
            >>> DataError.from_reply("NOSCRIPT No matching script")
            NoScriptError(message='NOSCRIPT No matching script', ...)
        """
        code = line.split(" ", 1)[0] if line else ""
        error_class = _DATA_ERROR_CLASSES.get(code, DataError)
        return error_class(line, error_code=code or None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DataError):
            return NotImplemented
        return type(self) is type(other) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self), self.message))


class BusyError(DataError):
    """Server is busy running a script and cannot serve the command."""


class NoScriptError(DataError):
    """The referenced script is not loaded on the server."""


class AskDataError(DataError):
    """Cluster slot is being migrated; the command must be asked elsewhere."""


class MovedDataError(DataError):
    """Cluster slot has moved to another node."""


_DATA_ERROR_CLASSES: dict[str, type[DataError]] = {
    "BUSY": BusyError,
    "NOSCRIPT": NoScriptError,
    "ASK": AskDataError,
    "MOVED": MovedDataError,
}


# =============================================================================
# Reply Shape Errors
# =============================================================================


class UnexpectedReplyError(RedisClientError):
    """A reply was read through a reader expecting a different shape.

    The reply was consumed in full, so the stream stays in sync and the
    connection is not marked as broken.

    Attributes:
        expected: Shape the reader expected (e.g. "integer").
        actual: Python type name of the decoded reply.
    """

    def __init__(
        self,
        expected: str,
        actual: str,
        *,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        details["expected"] = expected
        details["actual"] = actual
        super().__init__(
            f"Expected {expected} reply, got {actual}",
            details=details,
            cause=cause,
        )
        self.expected = expected
        self.actual = actual


def wrap_exception(
    exception: BaseException,
    wrapper_class: type[RedisClientError] = RedisClientError,
    message: str | None = None,
    **kwargs: Any,
) -> RedisClientError:
    """Wrap an exception in a RedisClientError.

    Args:
        exception: The original exception to wrap.
        wrapper_class: The exception class to wrap with.
        message: Optional custom message. Defaults to original exception message.
        **kwargs: Additional arguments to pass to the wrapper class.

    Returns:
        A new exception instance wrapping the original.

    Example:
        >>> try:
        ...     sock.connect(address)
        ... except OSError as e:
        ...     raise wrap_exception(e, RedisConnectionError, host="localhost") from e
    """
    msg = message if message is not None else str(exception)
    return wrapper_class(msg, cause=exception, **kwargs)
