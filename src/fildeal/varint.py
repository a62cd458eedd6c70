"""
Unsigned LEB128 varints.

Used by address payloads, content identifiers and the frame length prefix
on the deal stream.
"""
from __future__ import annotations

from typing import Tuple

__all__ = ["encode_uvarint", "decode_uvarint", "MAX_UVARINT_BYTES"]

# 63-bit values fit in 9 bytes
MAX_UVARINT_BYTES = 9


def encode_uvarint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError(f"uvarint must be non-negative, got {value}")

    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_uvarint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode an unsigned varint from ``data`` starting at ``offset``.

    Returns:
        (value, new_offset)

    Raises:
        ValueError: If the varint is truncated, overlong or not minimally encoded
    """
    value = 0
    shift = 0
    for i in range(MAX_UVARINT_BYTES):
        pos = offset + i
        if pos >= len(data):
            raise ValueError("truncated uvarint")
        byte = data[pos]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if byte == 0 and i > 0:
                raise ValueError("uvarint not minimally encoded")
            return value, pos + 1
        shift += 7
    raise ValueError("uvarint too long")
