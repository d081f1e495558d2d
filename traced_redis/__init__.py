"""traced-redis: an observable client connection for Redis-style servers.

Example:
    >>> from traced_redis import Connection
    >>> from traced_redis.observability import ObservabilityContext
    >>> observability = ObservabilityContext().initialize()
    >>> with Connection("localhost", 6379, observability=observability) as connection:
    ...     connection.execute_command("PING")
    b'PONG'
"""

from traced_redis.config import (
    ConnectionConfig,
    EnvReader,
    TLSConfig,
    TLSHandshakeParams,
)
from traced_redis.connection import Connection, ConnectionState, command_name
from traced_redis.exceptions import (
    AskDataError,
    BusyError,
    ConfigurationError,
    DataError,
    InvalidConfigValueError,
    MissingConfigError,
    MovedDataError,
    NoScriptError,
    ProtocolDecodeError,
    ProtocolEncodeError,
    RedisClientError,
    RedisConnectionError,
    TLSVerificationError,
    UnexpectedReplyError,
)
from traced_redis.protocol import ProtocolCodec, RespCodec
from traced_redis.streams import RedisInputStream, RedisOutputStream

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Connection
    "Connection",
    "ConnectionState",
    "command_name",
    # Protocol
    "ProtocolCodec",
    "RespCodec",
    "RedisInputStream",
    "RedisOutputStream",
    # Configuration
    "ConnectionConfig",
    "EnvReader",
    "TLSConfig",
    "TLSHandshakeParams",
    # Exceptions
    "RedisClientError",
    "ConfigurationError",
    "InvalidConfigValueError",
    "MissingConfigError",
    "RedisConnectionError",
    "TLSVerificationError",
    "ProtocolEncodeError",
    "ProtocolDecodeError",
    "DataError",
    "BusyError",
    "NoScriptError",
    "AskDataError",
    "MovedDataError",
    "UnexpectedReplyError",
]
