"""Traced connection to a Redis-style server.

A Connection owns one socket and the buffered streams over it, writes
commands through a ProtocolCodec and reads replies back. Every operation runs
inside one scoped span and records its measurements on the injected
ObservabilityContext.

Health is tracked by a ``broken`` flag. Any connection-level failure sets it,
and while it is set every read or write fails fast without touching the
socket. Only a successful ``connect()`` clears it.

Example:
    >>> with Connection("localhost", 6379) as connection:
    ...     connection.send_command("SET", "greeting", "hello")
    ...     connection.get_status_code_reply()
    'OK'
"""

from __future__ import annotations

import contextlib
import socket
import struct
import time
from enum import Enum
from typing import Any, Self

from traced_redis.config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    ConnectionConfig,
    TLSConfig,
)
from traced_redis.exceptions import (
    DataError,
    ProtocolDecodeError,
    RedisConnectionError,
    TLSVerificationError,
    UnexpectedReplyError,
)
from traced_redis.logging import LogContext, get_logger
from traced_redis.observability import measures
from traced_redis.observability.context import ObservabilityContext, get_default_context
from traced_redis.observability.types import SpanAttributes, TagKeys
from traced_redis.protocol import CommandArg, ProtocolCodec, RespCodec, to_bytes
from traced_redis.streams import RedisInputStream, RedisOutputStream

__all__ = [
    "Connection",
    "ConnectionState",
    "command_name",
]

logger = get_logger(__name__)

_LINGER_ABORT = struct.pack("ii", 1, 0)


class ConnectionState(Enum):
    """Lifecycle state of a Connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BROKEN = "broken"


def command_name(command: CommandArg) -> str:
    """Return the upper-case name of a command, used as tag value."""
    return to_bytes(command).decode("utf-8", "replace").upper()


def _socket_timeout(seconds: float) -> float | None:
    """Translate a timeout setting to ``socket.settimeout`` form; 0 means none."""
    return seconds if seconds > 0 else None


def _as_text(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return value


def _expect(reply: Any, expected_type: type, shape: str) -> Any:
    """Return ``reply`` if it is absent or of ``expected_type``."""
    if reply is None or isinstance(reply, expected_type):
        return reply
    raise UnexpectedReplyError(shape, type(reply).__name__)


def _expect_items(reply: Any, item_type: type, shape: str) -> Any:
    """Check an array reply whose elements share one shape; nil elements pass."""
    for item in _expect(reply, list, "array") or ():
        _expect(item, item_type, shape)
    return reply


class Connection:
    """A single traced connection.

    Not safe for concurrent use: a pool hands each instance to one borrower
    at a time.

    Attributes:
        host: Server host, applied on the next connect.
        port: Server port, applied on the next connect.
        ssl: Whether the socket is wrapped in TLS.
        connect_timeout: Seconds allowed for the connect call.
        read_timeout: Socket timeout in seconds for reads and writes; 0 or
            less disables it.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        ssl: bool = False,
        *,
        connect_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        read_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        tls_config: TLSConfig | None = None,
        codec: ProtocolCodec | None = None,
        observability: ObservabilityContext | None = None,
    ) -> None:
        """Initialize the connection without opening it.

        Args:
            host: Server host.
            port: Server port.
            ssl: Whether to wrap the socket in TLS.
            connect_timeout: Seconds allowed for the connect call.
            read_timeout: Socket timeout in seconds; 0 or less disables it.
            tls_config: TLS context, handshake parameters and hostname
                verifier. Defaults are used when ``ssl`` is set without it.
            codec: Wire protocol codec. Defaults to RESP2.
            observability: Metric and tracing hub. Defaults to the process
                default context.
        """
        self.host = host
        self.port = port
        self.ssl = ssl
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.tls_config = tls_config
        self._codec: ProtocolCodec = codec or RespCodec()
        self._observability = (observability or get_default_context()).initialize()
        self._socket: socket.socket | None = None
        self._input: RedisInputStream | None = None
        self._output: RedisOutputStream | None = None
        self._broken = False
        self._connecting = False
        self._bytes_read_mark = 0
        self._bytes_written_mark = 0

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        *,
        codec: ProtocolCodec | None = None,
        observability: ObservabilityContext | None = None,
    ) -> Self:
        """Create a connection from a ConnectionConfig.

        Example:
            >>> connection = Connection.from_config(ConnectionConfig.load())
        """
        return cls(
            config.host,
            config.port,
            config.ssl,
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
            tls_config=config.tls,
            codec=codec,
            observability=observability,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def address(self) -> str:
        """Return "host:port"."""
        return f"{self.host}:{self.port}"

    @property
    def socket(self) -> socket.socket | None:
        """The open socket, None before the first connect and after disconnect."""
        return self._socket

    @property
    def codec(self) -> ProtocolCodec:
        """The wire protocol codec."""
        return self._codec

    @property
    def observability(self) -> ObservabilityContext:
        """The metric and tracing hub."""
        return self._observability

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        if self._broken:
            return ConnectionState.BROKEN
        if self._connecting:
            return ConnectionState.CONNECTING
        if self.is_connected():
            return ConnectionState.CONNECTED
        return ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        """Check whether the socket is open and has a peer."""
        sock = self._socket
        if sock is None or sock.fileno() < 0:
            return False
        try:
            sock.getpeername()
        except OSError:
            return False
        return True

    def is_broken(self) -> bool:
        """Check whether a connection-level failure was observed since the last connect."""
        return self._broken

    def _span_attributes(self, **extra: Any) -> dict[str, Any]:
        return {
            SpanAttributes.NET_PEER_NAME: self.host,
            SpanAttributes.NET_PEER_PORT: self.port,
            **extra,
        }

    def _mark_broken(self) -> None:
        self._broken = True

    def _check_broken(self) -> None:
        if self._broken:
            raise RedisConnectionError(
                "Connection is broken; reconnect before reuse",
                host=self.host,
                port=self.port,
            )

    def _require_open(self) -> tuple[RedisInputStream, RedisOutputStream]:
        self._check_broken()
        if self._input is None or self._output is None:
            raise RedisConnectionError("Connection is not open", host=self.host, port=self.port)
        return self._input, self._output

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """Open the socket unless an open, healthy one exists.

        A broken connection is always re-dialled.

        Raises:
            TLSVerificationError: If the hostname verifier rejects the session.
            RedisConnectionError: If the socket cannot be opened.
        """
        if not self._broken and self.is_connected():
            self._observability.record(measures.CONNECTIONS_REUSED)
            return

        self._close_socket()
        attributes = self._span_attributes(
            **{
                SpanAttributes.CONNECT_TIMEOUT: self.connect_timeout,
                SpanAttributes.READ_TIMEOUT: self.read_timeout,
                SpanAttributes.SSL: self.ssl,
            }
        )
        with LogContext(operation="connect", address=self.address):
            with self._observability.scoped_span("redis.connection.connect", attributes) as span:
                self._connecting = True
                outcome = "failure"
                started = time.perf_counter()
                try:
                    self._dial(span)
                    outcome = "success"
                except TLSVerificationError as e:
                    self._fail_dial(e)
                    raise
                except OSError as e:
                    error = RedisConnectionError(
                        f"Failed connecting to host {self.address}",
                        host=self.host,
                        port=self.port,
                        cause=e,
                    )
                    self._fail_dial(error)
                    raise error from e
                finally:
                    self._connecting = False
                    elapsed_ms = (time.perf_counter() - started) * 1000.0
                    self._observability.record(measures.DIALS, 1, {TagKeys.OUTCOME: outcome})
                    self._observability.record(measures.DIAL_LATENCY_MILLISECONDS, elapsed_ms)

                self._observability.record(measures.CONNECTIONS_OPENED)
                logger.debug("Connected", elapsed_ms=round(elapsed_ms, 3), ssl=self.ssl)

    def _dial(self, span: Any) -> None:
        span.annotate(
            "Connecting",
            connect_timeout=self.connect_timeout,
            keep_alive=True,
            no_tcp_delay=True,
            reuse_address=True,
            read_timeout=self.read_timeout,
            ssl=self.ssl,
        )
        family, sock_type, proto, _, address = socket.getaddrinfo(
            self.host, self.port, type=socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, sock_type, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, _LINGER_ABORT)
            sock.settimeout(_socket_timeout(self.connect_timeout))
            sock.connect(address)
            sock.settimeout(_socket_timeout(self.read_timeout))
            span.annotate("Connected")
            if self.ssl:
                sock = self._wrap_tls(sock)
        except BaseException:
            sock.close()
            raise

        self._socket = sock
        self._output = RedisOutputStream(sock)
        self._input = RedisInputStream(sock)
        self._bytes_read_mark = 0
        self._bytes_written_mark = 0
        self._broken = False
        span.annotate("Created input and output streams")

    def _wrap_tls(self, sock: socket.socket) -> socket.socket:
        tls = self.tls_config or TLSConfig()
        context = tls.resolve_context()
        wrapped = context.wrap_socket(sock, server_hostname=tls.server_hostname(self.host))
        verifier = tls.hostname_verifier
        if verifier is not None and not verifier(self.host, wrapped):
            with contextlib.suppress(OSError):
                wrapped.close()
            raise TLSVerificationError(self.host, port=self.port)
        return wrapped

    def _fail_dial(self, error: RedisConnectionError) -> None:
        self._mark_broken()
        self._close_socket()
        self._observability.record(measures.DIAL_ERRORS)
        logger.warning("Failed connecting", error=error.message)

    def disconnect(self) -> None:
        """Flush pending output and close the socket.

        Records nothing if the connection is not open, though a socket left
        behind by a peer reset is still released. The socket is released in
        every case, and pending output of a broken connection is discarded.

        Raises:
            RedisConnectionError: If flushing or closing fails.
        """
        sock = self._socket
        if sock is None or not self.is_connected():
            # a peer reset leaves the handle open without a peer
            self._close_socket()
            return

        with self._observability.scoped_span(
            "redis.connection.disconnect", self._span_attributes()
        ):
            try:
                if not self._broken and self._output is not None:
                    self._output.flush()
                    self._record_bytes_written()
                sock.close()
                self._observability.record(measures.CONNECTIONS_CLOSED)
                logger.debug("Disconnected", address=self.address)
            except (RedisConnectionError, OSError) as e:
                self._mark_broken()
                self._observability.record(measures.CONNECTIONS_CLOSED_ERRORS)
                logger.warning("Failed disconnecting", address=self.address, error=str(e))
                raise RedisConnectionError(
                    f"Failed disconnecting from {self.address}: {e}",
                    host=self.host,
                    port=self.port,
                    cause=e,
                ) from e
            finally:
                self._close_socket()

    def close(self) -> None:
        """Close the connection; same as ``disconnect()``."""
        self.disconnect()

    def _close_socket(self) -> None:
        if self._input is not None:
            self._input.close()
        if self._socket is not None:
            with contextlib.suppress(OSError):
                self._socket.close()
        self._socket = None
        self._input = None
        self._output = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.disconnect()

    def set_timeout_infinite(self) -> None:
        """Remove the socket timeout, connecting first if needed.

        Callers must restore the timeout with ``rollback_timeout()``.

        Raises:
            RedisConnectionError: If the timeout cannot be applied.
        """
        with self._observability.scoped_span(
            "redis.connection.set_timeout_infinite", self._span_attributes()
        ):
            if not self.is_connected():
                self.connect()
            self._apply_timeout(None)

    def rollback_timeout(self) -> None:
        """Restore the configured read timeout.

        Raises:
            RedisConnectionError: If the timeout cannot be applied.
        """
        with self._observability.scoped_span(
            "redis.connection.rollback_timeout", self._span_attributes()
        ):
            self._apply_timeout(_socket_timeout(self.read_timeout))

    def _apply_timeout(self, timeout: float | None) -> None:
        try:
            if self._socket is None:
                raise OSError("socket is not open")
            self._socket.settimeout(timeout)
        except OSError as e:
            self._mark_broken()
            raise RedisConnectionError(
                f"Failed to set socket timeout: {e}",
                host=self.host,
                port=self.port,
                cause=e,
            ) from e

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def send_command(self, command: CommandArg, *args: CommandArg) -> None:
        """Write one command, connecting first if needed.

        Arguments may be bytes, str (UTF-8 encoded), int or float. The command
        stays buffered until the next flush or reply read.

        Raises:
            ProtocolEncodeError: If an argument has an unsupported type.
                Nothing is written and the connection stays usable.
            RedisConnectionError: If writing fails. The message carries the
                server's error line when the server sent one before closing.
        """
        self._check_broken()
        name = command_name(command)
        with self._observability.scoped_span(
            "redis.connection.send_command",
            self._span_attributes(**{SpanAttributes.DB_OPERATION: name}),
        ):
            payload = [to_bytes(arg) for arg in args]
            self.connect()
            _, output = self._require_open()
            try:
                self._codec.encode(output, to_bytes(command), payload)
            except (RedisConnectionError, OSError) as e:
                error = e if isinstance(e, RedisConnectionError) else RedisConnectionError(
                    str(e), host=self.host, port=self.port, cause=e
                )
                error = self._recover_server_message(error)
                self._mark_broken()
                self._observability.record(measures.WRITE_ERRORS)
                logger.warning("Failed sending command", command=name, error=error.message)
                if error is e:
                    raise
                raise error from e
            self._observability.record(measures.WRITES)

    def _recover_server_message(self, error: RedisConnectionError) -> RedisConnectionError:
        """Attach the error line the server may have sent before dropping us."""
        if self._input is None:
            return error
        try:
            server_message = self._codec.try_read_error_line(self._input)
        except Exception as e:
            logger.debug("No server error line available", error=str(e))
            return error
        if server_message:
            return error.with_server_message(server_message)
        return error

    def flush(self) -> None:
        """Send buffered output.

        Raises:
            RedisConnectionError: If the connection is broken or the write fails.
        """
        self._check_broken()
        with self._observability.scoped_span("redis.connection.flush", self._span_attributes()):
            if self._output is None or not self._output.pending:
                return
            try:
                self._output.flush()
            except RedisConnectionError:
                self._mark_broken()
                self._observability.record(measures.WRITE_ERRORS)
                raise
            finally:
                self._record_bytes_written()

    def _record_bytes_written(self) -> None:
        if self._output is None:
            return
        delta = self._output.bytes_written - self._bytes_written_mark
        self._bytes_written_mark = self._output.bytes_written
        if delta > 0:
            self._observability.record(measures.BYTES_WRITTEN, delta)

    def _record_bytes_read(self, input: RedisInputStream) -> None:
        delta = input.bytes_read - self._bytes_read_mark
        self._bytes_read_mark = input.bytes_read
        if delta > 0:
            self._observability.record(measures.BYTES_READ, delta)

    def _read_reply(self) -> Any:
        """Decode one reply, marking the connection broken on connection-level failure."""
        input, _ = self._require_open()
        with self._observability.scoped_span("redis.connection.read", self._span_attributes()):
            try:
                return self._codec.decode(input)
            except DataError:
                raise
            except RedisConnectionError as e:
                self._mark_broken()
                self._observability.record(measures.READ_ERRORS)
                logger.warning("Failed reading reply", error=e.message)
                raise
            except Exception as e:
                self._mark_broken()
                self._observability.record(measures.READ_ERRORS)
                raise ProtocolDecodeError(
                    f"Failed decoding reply: {e}",
                    host=self.host,
                    port=self.port,
                    cause=e,
                ) from e
            finally:
                self._observability.record(measures.READS)
                self._record_bytes_read(input)

    # -------------------------------------------------------------------------
    # Replies
    # -------------------------------------------------------------------------

    def get_status_code_reply(self) -> str | None:
        """Read a status reply such as "OK"."""
        self.flush()
        return _as_text(_expect(self._read_reply(), bytes, "status"))

    def get_binary_bulk_reply(self) -> bytes | None:
        """Read a bulk reply as bytes."""
        self.flush()
        return _expect(self._read_reply(), bytes, "bulk")

    def get_bulk_reply(self) -> str | None:
        """Read a bulk reply as UTF-8 text."""
        return _as_text(self.get_binary_bulk_reply())

    def get_integer_reply(self) -> int | None:
        """Read an integer reply."""
        self.flush()
        return _expect(self._read_reply(), int, "integer")

    def get_binary_multi_bulk_reply(self) -> list[bytes] | None:
        """Read an array reply of bulk strings as bytes."""
        self.flush()
        return _expect_items(self._read_reply(), bytes, "bulk")

    def get_multi_bulk_reply(self) -> list[str] | None:
        """Read an array reply of bulk strings as UTF-8 text."""
        replies = self.get_binary_multi_bulk_reply()
        if replies is None:
            return None
        return [_as_text(item) for item in replies]

    def get_integer_multi_bulk_reply(self) -> list[int] | None:
        """Read an array reply of integers."""
        self.flush()
        return _expect_items(self._read_reply(), int, "integer")

    def get_raw_object_multi_bulk_reply(self) -> list[Any] | None:
        """Read an array reply of any element shapes, bytes left undecoded."""
        self.flush()
        return _expect(self._read_reply(), list, "array")

    def get_object_multi_bulk_reply(self) -> list[Any] | None:
        """Read an array reply of any element shapes."""
        return self.get_raw_object_multi_bulk_reply()

    def get_one(self) -> Any:
        """Read one reply of any shape."""
        self.flush()
        return self._read_reply()

    def get_many(self, count: int) -> list[Any]:
        """Read ``count`` pipelined replies in order.

        Error replies do not abort the batch: each becomes a DataError value
        at its position. Connection-level failures abort and propagate.

        Args:
            count: Number of replies to read.

        Returns:
            Replies in request order, DataError instances in place of errors.
        """
        self._check_broken()
        with self._observability.scoped_span(
            "redis.connection.get_many",
            self._span_attributes(**{SpanAttributes.REPLY_COUNT: count}),
        ) as span:
            span.annotate("Invoking flush")
            self.flush()
            span.annotate("Flushed")

            span.annotate("Getting responses back", count=count)
            replies: list[Any] = []
            data_errors = 0
            for _ in range(count):
                try:
                    replies.append(self._read_reply())
                except DataError as e:
                    replies.append(e)
                    data_errors += 1

            if data_errors:
                span.set_attribute(SpanAttributes.DATA_ERRORS, data_errors)
                self._observability.record(
                    measures.ERRORS,
                    1,
                    {TagKeys.PHASE: "get_many", TagKeys.ENUM: "data_error"},
                )
            return replies

    def execute_command(self, command: CommandArg, *args: CommandArg) -> Any:
        """Send one command and read its reply, tracking the full roundtrip.

        The elapsed time is recorded as ``roundtrip_latency`` tagged with the
        command name, whether or not the command succeeds.

        Raises:
            DataError: If the server rejects the command.
            RedisConnectionError: On connection-level failure.
        """
        name = command_name(command)
        with self._observability.roundtrip_span(
            "redis.connection.roundtrip",
            name,
            self._span_attributes(**{SpanAttributes.DB_OPERATION: name}),
        ):
            self.send_command(command, *args)
            return self.get_one()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(address={self.address!r}, "
            f"ssl={self.ssl}, state={self.state.value})"
        )
