"""
Byte cursors used by every decoder.

ByteCursor reads sequentially from an immutable in-memory buffer.
StreamCursor reads from any object exposing read(n) (open files, sockets
wrapped in io objects, gzip streams) and only ever holds the bytes it was
asked for. Both raise TruncatedStream when fewer bytes remain than requested.
"""

from __future__ import annotations

import struct
from typing import Any, Protocol

from slpkit.core.errors import TruncatedStream

_U8 = struct.Struct(">B")
_I8 = struct.Struct(">b")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")
_F32 = struct.Struct(">f")


def _check_count(n: int) -> None:
    if n < 0:
        raise ValueError(f"Cannot read a negative number of bytes: {n}")


class Reader(Protocol):
    def read(self, n: int = -1, /) -> bytes: ...


class _CursorMixin:
    """Typed big-endian helpers shared by both cursor variants."""

    __slots__ = ()

    def read(self, n: int) -> bytes:  # pragma: no cover - overridden
        raise NotImplementedError

    def u8(self) -> int:
        return _U8.unpack(self.read(1))[0]

    def i8(self) -> int:
        return _I8.unpack(self.read(1))[0]

    def u16(self) -> int:
        return _U16.unpack(self.read(2))[0]

    def u32(self) -> int:
        return _U32.unpack(self.read(4))[0]

    def i32(self) -> int:
        return _I32.unpack(self.read(4))[0]

    def f32(self) -> float:
        return _F32.unpack(self.read(4))[0]


class ByteCursor(_CursorMixin):
    """Sequential reader over an immutable byte buffer."""

    __slots__ = ("_data", "_offset")

    def __init__(self, data: bytes | bytearray | memoryview, offset: int = 0):
        self._data = memoryview(data).toreadonly()
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def at_end(self) -> bool:
        return self._offset >= len(self._data)

    def peek(self, n: int) -> bytes:
        return bytes(self._data[self._offset : self._offset + n])

    def read(self, n: int) -> bytes:
        _check_count(n)
        if n > self.remaining:
            raise TruncatedStream(n, max(self.remaining, 0), self._offset)
        chunk = bytes(self._data[self._offset : self._offset + n])
        self._offset += n
        return chunk

    def read_available(self, n: int) -> bytes:
        """Read up to n bytes without failing on a short buffer."""
        _check_count(n)
        chunk = bytes(self._data[self._offset : self._offset + n])
        self._offset += len(chunk)
        return chunk

    def skip(self, n: int) -> None:
        _check_count(n)
        if n > self.remaining:
            raise TruncatedStream(n, max(self.remaining, 0), self._offset)
        self._offset += n

    def seek(self, offset: int) -> None:
        self._offset = offset

    def read_rest(self) -> bytes:
        chunk = bytes(self._data[self._offset :])
        self._offset = len(self._data)
        return chunk


class StreamCursor(_CursorMixin):
    """Sequential reader over a chunked byte source with read(n) semantics."""

    __slots__ = ("_reader", "_offset", "_pending")

    def __init__(self, reader: Reader):
        self._reader = reader
        self._offset = 0
        self._pending = b""

    @property
    def offset(self) -> int:
        return self._offset

    def _fill(self, n: int) -> None:
        # Sources such as sockets may return fewer bytes than requested
        while len(self._pending) < n:
            chunk = self._reader.read(n - len(self._pending))
            if not chunk:
                break
            self._pending += chunk

    def at_end(self) -> bool:
        self._fill(1)
        return not self._pending

    def peek(self, n: int) -> bytes:
        self._fill(n)
        return self._pending[:n]

    def read(self, n: int) -> bytes:
        _check_count(n)
        self._fill(n)
        if len(self._pending) < n:
            raise TruncatedStream(n, len(self._pending), self._offset)
        chunk, self._pending = self._pending[:n], self._pending[n:]
        self._offset += n
        return chunk

    def read_available(self, n: int) -> bytes:
        _check_count(n)
        self._fill(n)
        chunk, self._pending = self._pending[:n], self._pending[n:]
        self._offset += len(chunk)
        return chunk

    def skip(self, n: int) -> None:
        self.read(n)

    def read_rest(self) -> bytes:
        rest = self._pending + self._reader.read()
        self._pending = b""
        self._offset += len(rest)
        return rest


Cursor = ByteCursor | StreamCursor


def open_cursor(source: Any) -> Cursor:
    """Wrap a replay source in the matching cursor."""
    if isinstance(source, (ByteCursor, StreamCursor)):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return ByteCursor(source)
    if hasattr(source, "read"):
        return StreamCursor(source)
    raise TypeError(f"Unsupported replay source: {type(source).__name__}")
