"""Bounds-checked little-endian cursor over a plugin's bytes."""
from __future__ import annotations

import struct

from modmapper.errors import OutOfBounds

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_U64 = struct.Struct("<Q")
_F32 = struct.Struct("<f")


class ByteReader:
    """Read cursor over an immutable byte buffer.

    Every read checks bounds first and raises OutOfBounds instead of
    returning a short result, so a truncated file can never be mistaken
    for a valid one.
    """

    __slots__ = ("data", "pos", "_end", "_base")

    def __init__(self, data: bytes, start: int = 0, end: int | None = None):
        self.data = data
        self._base = start
        self._end = len(data) if end is None else end
        if self._end > len(data) or start > self._end:
            raise OutOfBounds(f"window {start}..{self._end} exceeds buffer of {len(data)} bytes")
        self.pos = start

    def __len__(self) -> int:
        return self._end - self._base

    @property
    def remaining(self) -> int:
        return self._end - self.pos

    @property
    def at_end(self) -> bool:
        return self.pos >= self._end

    @property
    def end(self) -> int:
        return self._end

    def tell(self) -> int:
        return self.pos

    def _require(self, n: int) -> None:
        if n < 0 or self.pos + n > self._end:
            raise OutOfBounds(
                f"read of {n} bytes with {self.remaining} remaining", offset=self.pos
            )

    def seek(self, offset: int) -> None:
        """Move the cursor to an absolute offset within the window."""
        if offset < self._base or offset > self._end:
            raise OutOfBounds(f"seek outside {self._base}..{self._end}", offset=offset)
        self.pos = offset

    def skip(self, n: int) -> None:
        self._require(n)
        self.pos += n

    def read(self, n: int) -> bytes:
        self._require(n)
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def peek(self, n: int) -> bytes:
        self._require(n)
        return self.data[self.pos:self.pos + n]

    def sub_reader(self, n: int) -> ByteReader:
        """Return a reader over the next n bytes and advance past them."""
        self._require(n)
        reader = ByteReader(self.data, self.pos, self.pos + n)
        self.pos += n
        return reader

    def _unpack(self, fmt: struct.Struct):
        self._require(fmt.size)
        value = fmt.unpack_from(self.data, self.pos)[0]
        self.pos += fmt.size
        return value

    def u8(self) -> int:
        return self._unpack(_U8)

    def u16(self) -> int:
        return self._unpack(_U16)

    def u32(self) -> int:
        return self._unpack(_U32)

    def i32(self) -> int:
        return self._unpack(_I32)

    def u64(self) -> int:
        return self._unpack(_U64)

    def f32(self) -> float:
        return self._unpack(_F32)

    def unpack(self, fmt: struct.Struct) -> tuple:
        """Read a whole struct at once."""
        self._require(fmt.size)
        values = fmt.unpack_from(self.data, self.pos)
        self.pos += fmt.size
        return values

    def zstring(self, length: int | None = None, encoding: str = "cp1252") -> str:
        """Read a null-terminated string.

        With a length, the string lives in a fixed window of that many bytes
        (the usual subrecord case) and the cursor moves past the whole window.
        Without one, read up to and including the next null byte.
        """
        if length is not None:
            raw = self.read(length)
            end = raw.find(b"\x00")
            if end != -1:
                raw = raw[:end]
            return raw.decode(encoding, errors="replace")
        end = self.data.find(b"\x00", self.pos, self._end)
        if end == -1:
            raise OutOfBounds("unterminated string", offset=self.pos)
        raw = self.data[self.pos:end]
        self.pos = end + 1
        return raw.decode(encoding, errors="replace")

    def bstring(self, encoding: str = "cp1252") -> str:
        """Read a u8 length-prefixed string."""
        return self.zstring(self.u8(), encoding)

    def wstring(self, encoding: str = "cp1252") -> str:
        """Read a u16 length-prefixed string."""
        return self.zstring(self.u16(), encoding)
