"""
Low-level field framing over byte streams.

Length-prefixed fields:
  [length: 4B little-endian][bytes: length B]

Tag fields are single unsigned bytes.

Readers are binary file-like objects (``io.BytesIO``); writers are anything
with a ``write(bytes)`` method.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Protocol

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LENGTH_FMT: str = "<I"
LENGTH_SIZE: int = struct.calcsize(LENGTH_FMT)  # = 4
MAX_BUFFER_BYTES: int = 2_000_000_000
MAX_LENGTH_FIELD: int = 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class FramingError(ValueError):
    """Base class for every framing failure."""


class BufferTooBig(FramingError):
    pass


class LengthConversion(FramingError):
    pass


class DataTooBig(FramingError):
    """Declared length is larger than the caller allows."""

    def __init__(self, declared: int, limit: int) -> None:
        super().__init__(f"Declared length {declared} exceeds limit {limit}")
        self.declared = declared
        self.limit = limit


class TruncatedInput(FramingError):
    pass


class MagicMismatch(FramingError):
    def __init__(self, expected: bytes, actual: bytes) -> None:
        super().__init__(f"Bad magic: expected {expected!r}, got {actual!r}")
        self.expected = expected
        self.actual = actual


class Writer(Protocol):
    def write(self, data: bytes, /) -> object: ...


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def write_u8(w: Writer, value: int) -> None:
    w.write(struct.pack("<B", value))


def write_length(w: Writer, length: int) -> None:
    if not 0 <= length <= MAX_LENGTH_FIELD:
        raise LengthConversion(f"Length {length} does not fit in 4 bytes")
    w.write(struct.pack(LENGTH_FMT, length))


def write_length_prefixed(w: Writer, data: bytes) -> None:
    """Write *data* preceded by its 4-byte little-endian length."""
    if len(data) > MAX_BUFFER_BYTES:
        raise BufferTooBig(f"Buffer of {len(data)} bytes is too big")
    write_length(w, len(data))
    w.write(data)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def read_exact(r: BinaryIO, n: int) -> bytes:
    """Read exactly *n* bytes. Raises TruncatedInput if the stream ends first."""
    data = r.read(n)
    if len(data) != n:
        raise TruncatedInput(f"Wanted {n} bytes, got {len(data)}")
    return data


def read_u8(r: BinaryIO) -> int:
    return read_exact(r, 1)[0]


def read_length(r: BinaryIO) -> int:
    (length,) = struct.unpack(LENGTH_FMT, read_exact(r, LENGTH_SIZE))
    return length


def read_length_prefixed(r: BinaryIO, max_len: int) -> bytes:
    """
    Read one length-prefixed field.

    The declared length is checked against *max_len* before anything is
    read, so a corrupt or hostile prefix can't make us allocate a huge buffer.
    """
    length = read_length(r)
    if length > max_len:
        raise DataTooBig(length, max_len)
    return read_exact(r, length)


def expect_bytes(r: BinaryIO, literal: bytes) -> None:
    """Consume ``len(literal)`` bytes and check they equal *literal*."""
    actual = r.read(len(literal))
    if not literal.startswith(actual):
        raise MagicMismatch(literal, actual)
    if len(actual) != len(literal):
        raise TruncatedInput(f"Wanted {len(literal)} bytes, got {len(actual)}")
