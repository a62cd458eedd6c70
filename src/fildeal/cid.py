"""
Content identifiers.

Parses and formats the self-describing hash references used for the piece
commitment and the payload root of a deal. Supports CIDv0 (base58btc
``Qm...``) and CIDv1 in base32 (``b...``) or base58btc (``z...``)
multibase.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

import base58

from .errors import MalformedIdentifierError
from .varint import decode_uvarint, encode_uvarint

__all__ = [
    "ContentIdentifier",
    "parse_cid",
    "cid_from_bytes",
    "DAG_PB",
    "RAW",
    "DAG_CBOR",
    "FIL_COMMITMENT_UNSEALED",
    "SHA2_256",
    "SHA2_256_TRUNC254_PADDED",
]

# Multicodec codes
DAG_PB = 0x70
RAW = 0x55
DAG_CBOR = 0x71
FIL_COMMITMENT_UNSEALED = 0xF101

# Multihash codes
SHA2_256 = 0x12
SHA2_256_TRUNC254_PADDED = 0x1012


def _b58encode(data: bytes) -> str:
    return base58.b58encode(data).decode("ascii")


def _b58decode(text: str) -> bytes:
    try:
        return base58.b58decode(text)
    except ValueError as e:
        raise MalformedIdentifierError(f"invalid base58 content identifier: {e}") from e


def _b32decode(text: str) -> bytes:
    if text != text.lower():
        raise MalformedIdentifierError("base32 multibase must be lowercase")
    padding = "=" * (-len(text) % 8)
    try:
        return base64.b32decode(text.upper() + padding)
    except (binascii.Error, ValueError) as e:
        raise MalformedIdentifierError(f"invalid base32 content identifier: {e}") from e


def _split_multihash(multihash: bytes) -> tuple:
    try:
        code, offset = decode_uvarint(multihash)
        length, offset = decode_uvarint(multihash, offset)
    except ValueError as e:
        raise MalformedIdentifierError(f"invalid multihash: {e}") from e
    digest = multihash[offset:]
    if len(digest) != length:
        raise MalformedIdentifierError(
            f"multihash digest length mismatch: header says {length}, got {len(digest)}"
        )
    return code, digest


@dataclass(frozen=True)
class ContentIdentifier:
    """
    A parsed content identifier.

    Invariants:
    - version is 0 or 1; version 0 implies dag-pb + sha2-256
    - multihash is a complete, length-consistent multihash
    """
    version: int
    codec: int
    multihash: bytes

    def __post_init__(self) -> None:
        if self.version not in (0, 1):
            raise MalformedIdentifierError(f"unsupported CID version {self.version}")
        code, digest = _split_multihash(self.multihash)
        if self.version == 0 and (self.codec != DAG_PB or code != SHA2_256 or len(digest) != 32):
            raise MalformedIdentifierError("CIDv0 must be dag-pb with a 32-byte sha2-256 digest")

    @property
    def hash_code(self) -> int:
        return _split_multihash(self.multihash)[0]

    @property
    def digest(self) -> bytes:
        return _split_multihash(self.multihash)[1]

    @property
    def is_piece_commitment(self) -> bool:
        """True for unsealed piece commitments (commP)."""
        return self.codec == FIL_COMMITMENT_UNSEALED and self.hash_code == SHA2_256_TRUNC254_PADDED

    def to_bytes(self) -> bytes:
        if self.version == 0:
            return self.multihash
        return encode_uvarint(1) + encode_uvarint(self.codec) + self.multihash

    def __str__(self) -> str:
        if self.version == 0:
            return _b58encode(self.multihash)
        return "b" + base64.b32encode(self.to_bytes()).decode("ascii").lower().rstrip("=")


def cid_from_bytes(raw: bytes) -> ContentIdentifier:
    """Decode the binary form of a CID."""
    raw = bytes(raw)
    if len(raw) == 34 and raw[0] == SHA2_256 and raw[1] == 32:
        return ContentIdentifier(0, DAG_PB, raw)
    try:
        version, offset = decode_uvarint(raw)
        codec, offset = decode_uvarint(raw, offset)
    except ValueError as e:
        raise MalformedIdentifierError(f"invalid CID bytes: {e}") from e
    if version != 1:
        raise MalformedIdentifierError(f"unsupported CID version {version}")
    return ContentIdentifier(1, codec, raw[offset:])


def parse_cid(text: str) -> ContentIdentifier:
    """
    Parse a CID string.

    Raises:
        MalformedIdentifierError: If the text is not a valid CID
    """
    text = (text or "").strip()
    if not text:
        raise MalformedIdentifierError("empty content identifier")

    if len(text) == 46 and text.startswith("Qm"):
        return cid_from_bytes(_b58decode(text))

    prefix, body = text[0], text[1:]
    if not body:
        raise MalformedIdentifierError(f"invalid content identifier {text!r}")
    if prefix == "b":
        raw = _b32decode(body)
    elif prefix == "z":
        raw = _b58decode(body)
    else:
        raise MalformedIdentifierError(f"unsupported multibase prefix {prefix!r} in {text!r}")

    cid = cid_from_bytes(raw)
    if cid.version == 0:
        raise MalformedIdentifierError("CIDv0 must not carry a multibase prefix")
    return cid
