"""
packed.py
Packed-integer primitives and a bounds-checked binary cursor.

Both archive formats store integers that are not native widths:

    40-bit  chunk offsets / lengths, compressed block offsets
    24-bit  compressed block sizes
     6-bit  chunk type tag (low bits of a tag byte)

These are decoded with explicit shift/mask loops over little-endian bytes,
never by reinterpreting a slice as a machine integer.

BinaryReader wraps a seekable binary stream whose size is known and checks
every read against the bytes that remain *before* touching the stream, so a
corrupt count or offset raises TruncatedDataError instead of reading junk.
"""

from __future__ import annotations

import io
import struct
from typing import BinaryIO

from pakindex.errors import FormatError, TruncatedDataError

# Reserved "absent" value for optional 32-bit index fields.
U32_SENTINEL = 0xFFFFFFFF


def unpack_uint(data: bytes, offset: int, width: int) -> int:
    """Decode an unsigned little-endian integer of *width* bytes at *offset*."""
    if width < 1 or width > 8:
        raise ValueError(f"Unsupported integer width: {width}")
    if offset < 0 or offset + width > len(data):
        raise TruncatedDataError(
            f"{width}-byte integer at offset {offset} runs past {len(data)} bytes",
            needed=offset + width,
            available=len(data),
        )
    value = 0
    for i in range(width):
        value |= data[offset + i] << (8 * i)
    return value


def pack_uint(value: int, width: int) -> bytes:
    """Encode *value* as *width* little-endian bytes. Raises if it does not fit."""
    if width < 1 or width > 8:
        raise ValueError(f"Unsupported integer width: {width}")
    if value < 0 or value >> (8 * width):
        raise ValueError(f"Value {value} does not fit in {8 * width} bits")
    return bytes((value >> (8 * i)) & 0xFF for i in range(width))


def unpack_bits(byte: int, shift: int, width: int) -> int:
    """Extract *width* bits starting at bit *shift* (0 = least significant)."""
    return (byte >> shift) & ((1 << width) - 1)


def pack_bits(value: int, shift: int, width: int) -> int:
    """Place *value* into a *width*-bit field at bit *shift* of a byte."""
    if value < 0 or value >> width:
        raise ValueError(f"Value {value} does not fit in {width} bits")
    return (value & ((1 << width) - 1)) << shift


def unpack_uint40(data: bytes, offset: int = 0) -> int:
    return unpack_uint(data, offset, 5)


def unpack_uint24(data: bytes, offset: int = 0) -> int:
    return unpack_uint(data, offset, 3)


def optional_u32(value: int) -> int | None:
    """Map the reserved all-ones value to None."""
    return None if value == U32_SENTINEL else value


def optional_to_u32(value: int | None) -> int:
    return U32_SENTINEL if value is None else value


class BinaryReader:
    """Little-endian cursor over a seekable binary stream of known size."""

    def __init__(self, stream: BinaryIO, size: int | None = None) -> None:
        self._stream = stream
        if size is None:
            pos = stream.tell()
            size = stream.seek(0, io.SEEK_END)
            stream.seek(pos)
        self.size = size

    @classmethod
    def from_bytes(cls, data: bytes) -> "BinaryReader":
        return cls(io.BytesIO(data), len(data))

    # -- Positioning ---------------------------------------------------------

    def tell(self) -> int:
        return self._stream.tell()

    def remaining(self) -> int:
        return self.size - self.tell()

    def seek(self, position: int, what: str = "offset") -> None:
        if position < 0 or position > self.size:
            raise TruncatedDataError(
                f"{what} {position} lies outside a {self.size}-byte buffer",
                needed=position,
                available=self.size,
            )
        self._stream.seek(position)

    def _check(self, count: int, what: str) -> None:
        available = self.remaining()
        if count < 0 or count > available:
            raise TruncatedDataError(
                f"{what}: need {count} bytes at offset {self.tell()}, "
                f"only {available} remain",
                needed=count,
                available=available,
            )

    # -- Raw reads -----------------------------------------------------------

    def read(self, count: int, what: str = "data") -> bytes:
        self._check(count, what)
        data = self._stream.read(count)
        if len(data) < count:
            raise TruncatedDataError(
                f"{what}: short read ({len(data)} of {count} bytes)",
                needed=count,
                available=len(data),
            )
        return data

    def skip(self, count: int, what: str = "data") -> None:
        self._check(count, what)
        self._stream.seek(count, io.SEEK_CUR)

    def read_array(self, count: int, record_size: int, what: str = "records") -> bytes:
        """Read *count* fixed-size records as one bytes object.

        The total size is validated before anything is read, since counts
        come straight from untrusted headers.
        """
        return self.read(count * record_size, f"{what} ({count} x {record_size} bytes)")

    # -- Scalars -------------------------------------------------------------

    def u8(self, what: str = "u8") -> int:
        return self.read(1, what)[0]

    def u16(self, what: str = "u16") -> int:
        return struct.unpack("<H", self.read(2, what))[0]

    def u32(self, what: str = "u32") -> int:
        return struct.unpack("<I", self.read(4, what))[0]

    def i32(self, what: str = "i32") -> int:
        return struct.unpack("<i", self.read(4, what))[0]

    def u64(self, what: str = "u64") -> int:
        return struct.unpack("<Q", self.read(8, what))[0]

    def u128(self, what: str = "u128") -> int:
        raw = self.read(16, what)
        return unpack_uint(raw, 0, 8) | (unpack_uint(raw, 8, 8) << 64)

    def boolean(self, what: str = "bool") -> bool:
        value = self.u8(what)
        if value not in (0, 1):
            raise FormatError(f"Invalid boolean value {value} for {what}")
        return value == 1

    def optional_u32(self, what: str = "optional u32") -> int | None:
        return optional_u32(self.u32(what))

    def string(self, what: str = "string") -> str:
        """Read a length-prefixed engine string.

        The int32 length counts the terminating NUL. A negative length means
        UTF-16LE code units, otherwise single bytes.
        """
        length = self.i32(f"{what} length")
        if length == 0:
            return ""
        if length < 0:
            raw = self.read(-length * 2, what)
            text = raw.decode("utf-16-le", errors="replace")
        else:
            raw = self.read(length, what)
            text = raw.decode("utf-8", errors="replace")
        nul = text.find("\x00")
        return text if nul < 0 else text[:nul]
