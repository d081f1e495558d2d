"""Buffered byte streams over a connected socket.

Both streams count the bytes they move so the connection can report
``bytes_read`` and ``bytes_written``. Socket failures and premature end of
stream surface as RedisConnectionError.
"""

from __future__ import annotations

import socket
from typing import BinaryIO

from traced_redis.exceptions import RedisConnectionError

__all__ = [
    "CRLF",
    "RedisInputStream",
    "RedisOutputStream",
]

CRLF = b"\r\n"
DEFAULT_BUFFER_SIZE = 8192


class RedisOutputStream:
    """Write buffer flushed to the socket in one ``sendall`` call.

    Attributes:
        bytes_written: Total bytes handed to the socket so far.
    """

    def __init__(self, sock: socket.socket, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._sock = sock
        self._buffer = bytearray()
        self._buffer_size = buffer_size
        self.bytes_written = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet sent."""
        return len(self._buffer)

    def write(self, data: bytes) -> None:
        """Buffer bytes, sending once the buffer grows past its size."""
        self._buffer += data
        if len(self._buffer) >= self._buffer_size:
            self.flush()

    def write_line(self, data: bytes) -> None:
        """Buffer bytes followed by CRLF."""
        self.write(data + CRLF)

    def write_int_line(self, prefix: bytes, value: int) -> None:
        """Buffer a type marker, a decimal integer and CRLF."""
        self.write(prefix + str(value).encode("ascii") + CRLF)

    def flush(self) -> None:
        """Send all buffered bytes.

        Raises:
            RedisConnectionError: If the socket write fails.
        """
        if not self._buffer:
            return
        data = bytes(self._buffer)
        self._buffer.clear()
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise RedisConnectionError(f"Failed writing to socket: {e}", cause=e) from e
        self.bytes_written += len(data)


class RedisInputStream:
    """Buffered reader over the socket's file interface.

    Attributes:
        bytes_read: Total bytes consumed from the socket so far.
    """

    def __init__(self, sock: socket.socket, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._reader: BinaryIO = sock.makefile("rb", buffering=buffer_size)
        self.bytes_read = 0

    def _fail(self, error: OSError) -> RedisConnectionError:
        return RedisConnectionError(f"Failed reading from socket: {error}", cause=error)

    def read_byte(self) -> int:
        """Read one byte.

        Raises:
            RedisConnectionError: On socket failure or end of stream.
        """
        try:
            data = self._reader.read(1)
        except OSError as e:
            raise self._fail(e) from e
        if not data:
            raise RedisConnectionError("Unexpected end of stream.")
        self.bytes_read += 1
        return data[0]

    def read_line(self, limit: int = -1) -> bytes:
        """Read up to the next CRLF and return the line without it.

        Args:
            limit: Maximum number of bytes to read including CRLF; negative
                means unbounded.

        Raises:
            RedisConnectionError: On socket failure, end of stream, or when
                no CRLF appears within ``limit`` bytes.
        """
        try:
            line = self._reader.readline(limit)
        except OSError as e:
            raise self._fail(e) from e
        if not line.endswith(CRLF):
            if limit >= 0 and len(line) == limit:
                self.bytes_read += len(line)
                raise RedisConnectionError(f"Line exceeds {limit} bytes.")
            raise RedisConnectionError("Unexpected end of stream.")
        self.bytes_read += len(line)
        return line[:-2]

    def read_exact(self, length: int) -> bytes:
        """Read exactly ``length`` bytes.

        Raises:
            RedisConnectionError: On socket failure or end of stream.
        """
        try:
            data = self._reader.read(length)
        except OSError as e:
            raise self._fail(e) from e
        if len(data) != length:
            raise RedisConnectionError("Unexpected end of stream.")
        self.bytes_read += length
        return data

    def close(self) -> None:
        """Release the file interface; the socket itself stays open."""
        try:
            self._reader.close()
        except OSError:
            pass
