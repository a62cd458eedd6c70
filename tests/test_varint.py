"""
Tests for unsigned varint helpers.
"""
from __future__ import annotations

import pytest

from fildeal.varint import decode_uvarint, encode_uvarint


class TestUvarint:

    @pytest.mark.parametrize("value, encoded", [
        (0, b"\x00"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
    ])
    def test_known_encodings(self, value, encoded):
        assert encode_uvarint(value) == encoded
        assert decode_uvarint(encoded) == (value, len(encoded))

    def test_decode_at_offset(self):
        assert decode_uvarint(b"\xff\xac\x02\x05", 1) == (300, 3)

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            encode_uvarint(-1)

    def test_truncated(self):
        with pytest.raises(ValueError, match="truncated"):
            decode_uvarint(b"\x80")

    def test_not_minimal(self):
        with pytest.raises(ValueError, match="minimally"):
            decode_uvarint(b"\x80\x00")

    def test_too_long(self):
        with pytest.raises(ValueError, match="too long"):
            decode_uvarint(b"\x80" * 9 + b"\x01")
