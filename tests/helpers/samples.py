"""
Sample identifiers shared by tests.
"""
from __future__ import annotations

from fildeal.cid import FIL_COMMITMENT_UNSEALED, SHA2_256_TRUNC254_PADDED, ContentIdentifier
from fildeal.varint import encode_uvarint

GATEWAY_URL = "http://localhost:1234/rpc/v1"
CONTRACT = "0x" + "ab" * 20
PAYLOAD_CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def make_piece_cid(fill: int = 7) -> ContentIdentifier:
    """Unsealed piece commitment with a constant digest."""
    multihash = encode_uvarint(SHA2_256_TRUNC254_PADDED) + encode_uvarint(32) + bytes([fill]) * 32
    return ContentIdentifier(1, FIL_COMMITMENT_UNSEALED, multihash)
