"""Tests for the byte cursors."""

from __future__ import annotations

import io
import struct

import pytest

from slpkit.core.cursor import ByteCursor, StreamCursor, open_cursor
from slpkit.core.errors import TruncatedStream


class _TrickleReader:
    """Returns at most two bytes per read call, like a slow socket."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    def read(self, n: int = -1) -> bytes:
        if n < 0:
            return self._buffer.read()
        return self._buffer.read(min(n, 2))


class TestByteCursor:
    """Test sequential reads over a buffer."""

    def test_typed_reads_are_big_endian(self):
        """Test typed reads decode big-endian values."""
        data = struct.pack(">BbHIif", 0xFF, -2, 0x1234, 0xDEADBEEF, -5, 1.5)
        cursor = ByteCursor(data)

        assert cursor.u8() == 0xFF
        assert cursor.i8() == -2
        assert cursor.u16() == 0x1234
        assert cursor.u32() == 0xDEADBEEF
        assert cursor.i32() == -5
        assert cursor.f32() == 1.5
        assert cursor.at_end()

    def test_offset_tracks_reads(self):
        """Test the offset advances with each read."""
        cursor = ByteCursor(b"abcdef")
        cursor.read(2)
        cursor.skip(1)
        assert cursor.offset == 3
        assert cursor.remaining == 3
        assert cursor.peek(2) == b"de"
        assert cursor.offset == 3

    def test_short_read_raises_truncated_stream(self):
        """Test a short read reports expected, available and offset."""
        cursor = ByteCursor(b"abc")
        cursor.read(2)
        with pytest.raises(TruncatedStream) as exc_info:
            cursor.read(4)

        err = exc_info.value
        assert err.expected == 4
        assert err.available == 1
        assert err.offset == 2

    def test_read_available_never_fails(self):
        """Test read_available returns what is left."""
        cursor = ByteCursor(b"abc")
        assert cursor.read_available(10) == b"abc"
        assert cursor.at_end()

    def test_seek_and_read_rest(self):
        """Test seeking and reading the remainder."""
        cursor = ByteCursor(b"0123456789")
        cursor.seek(7)
        assert cursor.read_rest() == b"789"
        assert cursor.at_end()

    def test_negative_count_rejected(self):
        """Test a negative read length never moves the offset."""
        cursor = ByteCursor(b"0123")
        cursor.skip(2)
        for method in (cursor.read, cursor.skip, cursor.read_available):
            with pytest.raises(ValueError):
                method(-1)
        assert cursor.offset == 2


class TestStreamCursor:
    """Test reads over sources that return short chunks."""

    def test_reassembles_short_chunks(self):
        """Test short chunks are joined into full reads."""
        cursor = StreamCursor(_TrickleReader(struct.pack(">I", 0xCAFEBABE) + b"tail"))
        assert cursor.u32() == 0xCAFEBABE
        assert cursor.offset == 4
        assert cursor.peek(2) == b"ta"
        assert cursor.read_rest() == b"tail"
        assert cursor.at_end()

    def test_short_stream_raises_truncated_stream(self):
        """Test a stream ending early raises TruncatedStream."""
        cursor = StreamCursor(io.BytesIO(b"\x01\x02"))
        with pytest.raises(TruncatedStream) as exc_info:
            cursor.read(3)
        assert exc_info.value.available == 2

    def test_negative_count_rejected(self):
        """Test a negative read length is rejected on streams too."""
        cursor = StreamCursor(io.BytesIO(b"0123"))
        cursor.read(2)
        with pytest.raises(ValueError):
            cursor.read(-1)
        with pytest.raises(ValueError):
            cursor.read_available(-1)
        assert cursor.offset == 2
        assert cursor.read_rest() == b"23"


class TestOpenCursor:
    """Test cursor selection by source type."""

    def test_buffers_get_byte_cursor(self):
        """Test byte buffers are wrapped in a ByteCursor."""
        assert isinstance(open_cursor(b"x"), ByteCursor)
        assert isinstance(open_cursor(bytearray(b"x")), ByteCursor)
        assert isinstance(open_cursor(memoryview(b"x")), ByteCursor)

    def test_readers_get_stream_cursor(self):
        """Test file-like sources are wrapped in a StreamCursor."""
        assert isinstance(open_cursor(io.BytesIO(b"x")), StreamCursor)

    def test_existing_cursor_passes_through(self):
        """Test an existing cursor is returned unchanged."""
        cursor = ByteCursor(b"x")
        assert open_cursor(cursor) is cursor

    def test_unsupported_source(self):
        """Test an unsupported source type."""
        with pytest.raises(TypeError):
            open_cursor(42)
