"""
secp256k1 keys and recoverable signatures.

Messages are signed over their blake2b-256 digest and the signature is
carried as 65 bytes: ``r || s || recovery id``. Verification recovers the
public key from the signature and compares the address it hashes to, so
a protocol-1 address can be checked without holding its key.
"""
from __future__ import annotations

import hashlib

from Crypto.Hash import keccak
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import sigdecode_string, sigencode_string_canonize

__all__ = [
    "SIGNATURE_LEN",
    "PRIVATE_KEY_LEN",
    "PUBLIC_KEY_LEN",
    "message_digest",
    "keccak256",
    "generate_private_key",
    "load_private_key",
    "public_key_bytes",
    "sign_recoverable",
    "recover_public_key",
    "eth_address_from_public_key",
]

SIGNATURE_LEN = 65
PRIVATE_KEY_LEN = 32
# Uncompressed SEC1 point: 0x04 || x || y
PUBLIC_KEY_LEN = 65

_ORDER = SECP256k1.order


def message_digest(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def generate_private_key() -> SigningKey:
    return SigningKey.generate(curve=SECP256k1)


def load_private_key(secret: bytes) -> SigningKey:
    """
    Build a signing key from its 32-byte scalar.

    Raises:
        ValueError: If the scalar has the wrong length or is out of range
    """
    if len(secret) != PRIVATE_KEY_LEN:
        raise ValueError(f"secp256k1 private key must be {PRIVATE_KEY_LEN} bytes, got {len(secret)}")
    if not 0 < int.from_bytes(secret, "big") < _ORDER:
        raise ValueError("secp256k1 private key out of range")
    return SigningKey.from_string(secret, curve=SECP256k1)


def public_key_bytes(key: SigningKey) -> bytes:
    return key.get_verifying_key().to_string("uncompressed")


def sign_recoverable(key: SigningKey, data: bytes) -> bytes:
    """
    Deterministic low-s signature over ``blake2b-256(data)``.

    Returns:
        65 bytes: r, s and the recovery id (0 or 1)
    """
    digest = message_digest(data)
    rs = key.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize
    )
    public = public_key_bytes(key)
    candidates = VerifyingKey.from_public_key_recovery_with_digest(
        rs, digest, SECP256k1, sigdecode=sigdecode_string
    )
    for recovery_id, candidate in enumerate(candidates):
        if candidate.to_string("uncompressed") == public:
            return rs + bytes([recovery_id])
    raise ValueError("signature does not recover to the signing key")


def recover_public_key(data: bytes, signature: bytes) -> bytes:
    """
    Public key that produced ``signature`` over ``data``.

    Returns:
        The uncompressed 65-byte public key

    Raises:
        ValueError: If the signature is malformed or recovers no key
    """
    if len(signature) != SIGNATURE_LEN:
        raise ValueError(f"secp256k1 signature must be {SIGNATURE_LEN} bytes, got {len(signature)}")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    recovery_id = signature[64]
    if not (0 < r < _ORDER and 0 < s < _ORDER) or recovery_id > 1:
        raise ValueError("malformed secp256k1 signature")

    try:
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            signature[:64], message_digest(data), SECP256k1, sigdecode=sigdecode_string
        )
    except SquareRootError as e:
        raise ValueError(f"no public key recovers from signature: {e}") from e
    return candidates[recovery_id].to_string("uncompressed")


def eth_address_from_public_key(public_key: bytes) -> str:
    """
    EVM address for a public key, with EIP-55 mixed-case checksum.

    The address is the last 20 bytes of keccak256 over the point
    coordinates (the 0x04 prefix excluded).
    """
    if len(public_key) != PUBLIC_KEY_LEN or public_key[0] != 0x04:
        raise ValueError("expected an uncompressed secp256k1 public key")
    raw = keccak256(public_key[1:])[12:].hex()
    hashed = keccak256(raw.encode("ascii")).hex()
    return "0x" + "".join(c.upper() if int(h, 16) >= 8 else c for c, h in zip(raw, hashed))
