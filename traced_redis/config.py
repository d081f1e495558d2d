"""Configuration for traced-redis connections.

Settings resolve in this order, first match wins:

    1. Explicit constructor arguments
    2. ``TRACED_REDIS_*`` environment variables
    3. A ``traced_redis.{json,yaml,yml}`` file found from the working directory up
    4. Built-in defaults

TLS settings are code-only (an ``ssl.SSLContext`` does not round-trip through
a file) and are resolved when the connection dials.

Example:
    >>> from traced_redis.config import ConnectionConfig
    >>> config = ConnectionConfig.load()
    >>> connection = Connection.from_config(config)
"""

from __future__ import annotations

import json
import os
import ssl
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self, TypeVar

from traced_redis.exceptions import (
    ConfigurationError,
    InvalidConfigValueError,
    MissingConfigError,
)

T = TypeVar("T")

DEFAULT_ENV_PREFIX = "TRACED_REDIS"
CONFIG_FILE_NAMES = ("traced_redis.json", "traced_redis.yaml", "traced_redis.yml", ".traced_redis.json")

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6379
DEFAULT_TIMEOUT_SECONDS = 2.0

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


# =============================================================================
# Environment
# =============================================================================


def _parse_bool(text: str) -> bool:
    word = text.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(text)


class EnvReader:
    """Typed access to ``{prefix}_{NAME}`` environment variables.

    Example:
        >>> env = EnvReader()
        >>> env.get_int("PORT", default=6379)  # reads TRACED_REDIS_PORT
        6379
    """

    def __init__(self, prefix: str = DEFAULT_ENV_PREFIX) -> None:
        self.prefix = prefix

    def key(self, name: str) -> str:
        """Full variable name for ``name``."""
        return f"{self.prefix}_{name}" if self.prefix else name

    def get(self, name: str, default: str | None = None) -> str | None:
        return os.environ.get(self.key(name), default)

    def get_required(self, name: str) -> str:
        """Read a variable that must be set.

        Raises:
            MissingConfigError: If it is not set.
        """
        value = self.get(name)
        if value is None:
            raise MissingConfigError(self.key(name))
        return value

    def _typed(
        self,
        name: str,
        default: T | None,
        parse: Callable[[str], T],
        expected: str,
    ) -> T | None:
        raw = self.get(name)
        if raw is None:
            return default
        try:
            return parse(raw)
        except ValueError as e:
            raise InvalidConfigValueError(
                f"{self.key(name)}={raw!r} is not a valid {expected}",
                config_key=self.key(name),
                value=raw,
                expected=expected,
                cause=e,
            ) from e

    def get_int(self, name: str, default: int | None = None) -> int | None:
        """Read an integer.

        Raises:
            InvalidConfigValueError: If the value is not an integer.
        """
        return self._typed(name, default, int, "integer")

    def get_float(self, name: str, default: float | None = None) -> float | None:
        """Read a float.

        Raises:
            InvalidConfigValueError: If the value is not a number.
        """
        return self._typed(name, default, float, "float")

    def get_bool(self, name: str, default: bool | None = None) -> bool | None:
        """Read a boolean written as 1/0, true/false, yes/no or on/off.

        Raises:
            InvalidConfigValueError: For any other spelling.
        """
        return self._typed(name, default, _parse_bool, "boolean (1/0, true/false, yes/no, on/off)")


# =============================================================================
# Files
# =============================================================================


def _read_yaml(path: Path) -> Any:
    try:
        import yaml
    except ImportError as e:
        raise ConfigurationError(
            f"Reading {path.name} needs PyYAML: pip install pyyaml",
            details={"path": str(path)},
            cause=e,
        ) from e
    try:
        with path.open() as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {path}",
            details={"path": str(path)},
            cause=e,
        ) from e


def _read_json(path: Path) -> Any:
    try:
        with path.open() as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Failed to parse JSON configuration: {path}",
            details={"path": str(path)},
            cause=e,
        ) from e


_READERS: dict[str, Callable[[Path], Any]] = {
    ".json": _read_json,
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
}


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON or YAML mapping from ``path``.

    A file whose top level is not a mapping yields an empty dict.

    Raises:
        ConfigurationError: If the file is missing, has an unknown suffix or
            does not parse.
    """
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", details={"path": str(path)})
    suffix = path.suffix.lower()
    reader = _READERS.get(suffix)
    if reader is None:
        raise ConfigurationError(
            f"Unsupported configuration file format: {suffix}",
            details={"path": str(path), "suffix": suffix},
        )
    data = reader(path)
    return data if isinstance(data, dict) else {}


def find_config_file(start_dir: Path | None = None, max_depth: int = 5) -> Path | None:
    """Look for a configuration file in ``start_dir`` and up to ``max_depth - 1`` parents."""
    directory = start_dir or Path.cwd()
    for _ in range(max_depth):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
        if directory.parent == directory:
            break
        directory = directory.parent
    return None


# =============================================================================
# TLS Configuration
# =============================================================================


HostnameVerifier = Callable[[str, ssl.SSLSocket], bool]
"""Callable deciding whether a negotiated session is acceptable for a host."""


@dataclass(frozen=True, slots=True)
class TLSHandshakeParams:
    """Handshake parameters applied to the SSL context before wrapping.

    Attributes:
        ciphers: OpenSSL cipher list string.
        minimum_version: Lowest accepted protocol version.
        maximum_version: Highest accepted protocol version.
        check_hostname: Override the context's own hostname check.
        server_hostname: SNI name sent during the handshake (default: host).
    """

    ciphers: str | None = None
    minimum_version: ssl.TLSVersion | None = None
    maximum_version: ssl.TLSVersion | None = None
    check_hostname: bool | None = None
    server_hostname: str | None = None

    def apply(self, context: ssl.SSLContext) -> None:
        """Apply the parameters to an SSL context."""
        if self.ciphers:
            context.set_ciphers(self.ciphers)
        if self.minimum_version is not None:
            context.minimum_version = self.minimum_version
        if self.maximum_version is not None:
            context.maximum_version = self.maximum_version
        if self.check_hostname is not None:
            context.check_hostname = self.check_hostname


@dataclass(frozen=True, slots=True)
class TLSConfig:
    """TLS session configuration for a Connection.

    Every field is optional. A missing ``ssl_context`` falls back to
    ``ssl.create_default_context()`` when the connection is opened.
    Handshake parameters are applied to a supplied ``ssl_context`` in place
    on every connect, so a context shared between TLSConfig instances ends
    up with the parameters applied last.

    Attributes:
        ssl_context: Context used to wrap the raw socket.
        handshake: Handshake parameters applied to the context.
        hostname_verifier: Extra verification run after the handshake.

    Example:
        >>> tls = TLSConfig(hostname_verifier=lambda host, sock: host.endswith(".internal"))
        >>> connection = Connection("cache.internal", 6380, ssl=True, tls_config=tls)
    """

    ssl_context: ssl.SSLContext | None = None
    handshake: TLSHandshakeParams | None = None
    hostname_verifier: HostnameVerifier | None = None

    def resolve_context(self) -> ssl.SSLContext:
        """Return the context to wrap sockets with, handshake params applied.

        A supplied ``ssl_context`` is modified and returned as is; only the
        default context is created per call.
        """
        context = self.ssl_context or ssl.create_default_context()
        if self.handshake is not None:
            self.handshake.apply(context)
        return context

    def server_hostname(self, host: str) -> str:
        """Return the SNI name for a host."""
        if self.handshake is not None and self.handshake.server_hostname:
            return self.handshake.server_hostname
        return host


# =============================================================================
# Connection Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Configuration for a single Connection.

    Attributes:
        host: Server host name or address.
        port: Server port.
        connect_timeout_seconds: Timeout applied to the connect call.
        read_timeout_seconds: Socket timeout applied to every read and write.
        ssl: Whether to wrap the socket in TLS.
        tls: Optional TLS configuration (not serialized).

    Example:
        >>> config = ConnectionConfig.from_env()
        >>> config = config.with_timeouts(connect_timeout_seconds=0.5)
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connect_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    read_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    ssl: bool = False
    tls: TLSConfig | None = field(default=None, compare=False)

    @property
    def address(self) -> str:
        """Return "host:port"."""
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        """Plain-value form, without the TLS settings."""
        return {
            "host": self.host,
            "port": self.port,
            "connect_timeout_seconds": self.connect_timeout_seconds,
            "read_timeout_seconds": self.read_timeout_seconds,
            "ssl": self.ssl,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create a ConnectionConfig from a dictionary.

        Args:
            data: Dictionary containing connection configuration.

        Returns:
            New ConnectionConfig instance.
        """
        return cls(
            host=data.get("host", DEFAULT_HOST),
            port=int(data.get("port", DEFAULT_PORT)),
            connect_timeout_seconds=float(
                data.get("connect_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
            ),
            read_timeout_seconds=float(
                data.get("read_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
            ),
            ssl=bool(data.get("ssl", False)),
        )

    @classmethod
    def from_env(cls, prefix: str = DEFAULT_ENV_PREFIX) -> Self:
        """Create a config from ``{PREFIX}_*`` environment variables alone.

        Environment Variables:
            {PREFIX}_HOST: Server host (string)
            {PREFIX}_PORT: Server port (int)
            {PREFIX}_CONNECT_TIMEOUT: Connect timeout in seconds (float)
            {PREFIX}_READ_TIMEOUT: Read timeout in seconds (float)
            {PREFIX}_SSL: Use TLS (bool)

        Args:
            prefix: Environment variable prefix.

        Returns:
            New ConnectionConfig instance.
        """
        env = EnvReader(prefix)
        return cls(
            host=env.get("HOST", DEFAULT_HOST) or DEFAULT_HOST,
            port=env.get_int("PORT", default=DEFAULT_PORT),
            connect_timeout_seconds=env.get_float(
                "CONNECT_TIMEOUT", default=DEFAULT_TIMEOUT_SECONDS
            ),
            read_timeout_seconds=env.get_float(
                "READ_TIMEOUT", default=DEFAULT_TIMEOUT_SECONDS
            ),
            ssl=bool(env.get_bool("SSL", default=False)),
        )

    @classmethod
    def from_file(cls, path: Path | str) -> Self:
        """Create configuration from a JSON or YAML file."""
        return cls.from_dict(load_config_file(Path(path)))

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
        search_config: bool = True,
    ) -> Self:
        """Merge a configuration file with environment overrides.

        Values set in the environment override values from the file.

        Args:
            config_file: Explicit config file path.
            env_prefix: Environment variable prefix.
            search_config: Whether to search for a config file.

        Returns:
            Merged ConnectionConfig instance.
        """
        data: dict[str, Any] = {}

        file_path: Path | None = None
        if config_file:
            file_path = Path(config_file)
        elif search_config:
            file_path = find_config_file()

        if file_path and file_path.exists():
            data = load_config_file(file_path)

        env = EnvReader(env_prefix)
        overrides: dict[str, Any] = {
            "host": env.get("HOST"),
            "port": env.get_int("PORT"),
            "connect_timeout_seconds": env.get_float("CONNECT_TIMEOUT"),
            "read_timeout_seconds": env.get_float("READ_TIMEOUT"),
            "ssl": env.get_bool("SSL"),
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)

    def with_address(self, host: str, port: int | None = None) -> ConnectionConfig:
        """Create a new config pointing at another server."""
        return ConnectionConfig(
            host=host,
            port=port if port is not None else self.port,
            connect_timeout_seconds=self.connect_timeout_seconds,
            read_timeout_seconds=self.read_timeout_seconds,
            ssl=self.ssl,
            tls=self.tls,
        )

    def with_timeouts(
        self,
        connect_timeout_seconds: float | None = None,
        read_timeout_seconds: float | None = None,
    ) -> ConnectionConfig:
        """Create a new config with updated timeouts."""
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            connect_timeout_seconds=(
                connect_timeout_seconds
                if connect_timeout_seconds is not None
                else self.connect_timeout_seconds
            ),
            read_timeout_seconds=(
                read_timeout_seconds
                if read_timeout_seconds is not None
                else self.read_timeout_seconds
            ),
            ssl=self.ssl,
            tls=self.tls,
        )

    def with_tls(self, tls: TLSConfig | None = None) -> ConnectionConfig:
        """Create a new config with TLS enabled."""
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            connect_timeout_seconds=self.connect_timeout_seconds,
            read_timeout_seconds=self.read_timeout_seconds,
            ssl=True,
            tls=tls,
        )


# =============================================================================
# Validation Utilities
# =============================================================================


def validate_config(config: ConnectionConfig) -> list[str]:
    """Collect every problem with a configuration.

    Args:
        config: Configuration to validate.

    Returns:
        List of validation issue messages (empty if valid).
    """
    issues: list[str] = []

    if not config.host:
        issues.append("Invalid host: must not be empty.")

    if not 0 < config.port < 65536:
        issues.append(f"Invalid port: {config.port}. Must be between 1 and 65535.")

    if config.connect_timeout_seconds < 0:
        issues.append(
            f"Invalid connect_timeout_seconds: {config.connect_timeout_seconds}. "
            "Must be non-negative."
        )

    if config.read_timeout_seconds < 0:
        issues.append(
            f"Invalid read_timeout_seconds: {config.read_timeout_seconds}. "
            "Must be non-negative."
        )

    if config.tls is not None and not config.ssl:
        issues.append("TLS configuration is set but ssl is disabled.")

    return issues


def require_valid_config(config: ConnectionConfig) -> None:
    """Raise if ``validate_config`` reports any problem.

    Raises:
        ConfigurationError: With the full issue list in ``details["issues"]``.
    """
    issues = validate_config(config)
    if issues:
        raise ConfigurationError(
            "Invalid configuration",
            details={"issues": issues},
        )
