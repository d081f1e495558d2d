"""Wire protocol codec contract and the default RESP2 codec.

A codec writes one command onto an output stream and reads one reply from an
input stream. Replies come back as:

* status replies: ``bytes``
* error replies: raised as DataError (or a subclass)
* integers: ``int``
* bulk strings: ``bytes`` or ``None``
* arrays: ``list`` or ``None``; error elements are kept as DataError values

Example:
    codec = RespCodec()
    codec.encode(output, b"SET", [b"key", b"value"])
    output.flush()
    codec.decode(input)  # b"OK"
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from traced_redis.exceptions import DataError, ProtocolDecodeError, ProtocolEncodeError
from traced_redis.streams import CRLF, RedisInputStream, RedisOutputStream

__all__ = [
    "CommandArg",
    "ProtocolCodec",
    "RespCodec",
    "to_bytes",
    "STATUS",
    "ERROR",
    "INTEGER",
    "BULK",
    "ARRAY",
    "MAX_ERROR_LINE_LENGTH",
]

CommandArg = bytes | str | int | float

STATUS = ord("+")
ERROR = ord("-")
INTEGER = ord(":")
BULK = ord("$")
ARRAY = ord("*")

MAX_ERROR_LINE_LENGTH = 4096


def to_bytes(value: CommandArg) -> bytes:
    """Convert one command argument to its wire form.

    Strings are UTF-8 encoded; integers and floats become decimal text.

    Raises:
        ProtocolEncodeError: For any other type.
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        raise ProtocolEncodeError(
            "Boolean arguments are ambiguous; convert them explicitly",
            details={"value": value},
        )
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return repr(value).encode("ascii")
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise ProtocolEncodeError(
        f"Unsupported argument type: {type(value).__name__}",
        details={"type": type(value).__name__},
    )


@runtime_checkable
class ProtocolCodec(Protocol):
    """Serializes commands and deserializes replies."""

    def encode(
        self,
        output: RedisOutputStream,
        command: bytes,
        args: Sequence[bytes],
    ) -> None:
        """Write one command with its arguments onto ``output``."""
        ...

    def decode(self, input: RedisInputStream) -> Any:
        """Read exactly one reply from ``input``.

        Raises:
            DataError: If the reply is an error reply.
            RedisConnectionError: If the stream fails or is malformed.
        """
        ...

    def try_read_error_line(self, input: RedisInputStream) -> str | None:
        """Read an error line the server sent before dropping the connection.

        The read is bounded by MAX_ERROR_LINE_LENGTH bytes.

        Returns:
            The error text, or None if the next reply is not an error.
        """
        ...


class RespCodec:
    """RESP2 codec: commands as arrays of bulk strings."""

    def encode(
        self,
        output: RedisOutputStream,
        command: bytes,
        args: Sequence[bytes],
    ) -> None:
        output.write_int_line(b"*", len(args) + 1)
        for part in (command, *args):
            output.write_int_line(b"$", len(part))
            output.write(part)
            output.write(CRLF)

    def decode(self, input: RedisInputStream) -> Any:
        marker = input.read_byte()
        if marker == STATUS:
            return input.read_line()
        if marker == ERROR:
            raise DataError.from_reply(input.read_line().decode("utf-8", "replace"))
        if marker == INTEGER:
            return self._parse_int(input.read_line())
        if marker == BULK:
            return self._read_bulk(input)
        if marker == ARRAY:
            return self._read_array(input)
        raise ProtocolDecodeError(f"Unknown reply: {chr(marker)!r}")

    def try_read_error_line(self, input: RedisInputStream) -> str | None:
        if input.read_byte() != ERROR:
            return None
        return input.read_line(MAX_ERROR_LINE_LENGTH).decode("utf-8", "replace")

    def _parse_int(self, line: bytes) -> int:
        try:
            return int(line)
        except ValueError as e:
            raise ProtocolDecodeError(f"Invalid integer in reply: {line!r}", cause=e) from e

    def _read_bulk(self, input: RedisInputStream) -> bytes | None:
        length = self._parse_int(input.read_line())
        if length == -1:
            return None
        if length < 0:
            raise ProtocolDecodeError(f"Invalid bulk length: {length}")
        data = input.read_exact(length)
        if input.read_exact(2) != CRLF:
            raise ProtocolDecodeError("Bulk reply is not terminated by CRLF")
        return data

    def _read_array(self, input: RedisInputStream) -> list[Any] | None:
        count = self._parse_int(input.read_line())
        if count == -1:
            return None
        if count < 0:
            raise ProtocolDecodeError(f"Invalid array length: {count}")
        items: list[Any] = []
        for _ in range(count):
            try:
                items.append(self.decode(input))
            except DataError as e:
                items.append(e)
        return items
