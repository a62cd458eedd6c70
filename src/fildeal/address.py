"""
Storage chain addresses.

Parses, formats and serializes chain addresses, and translates EVM-style
20-byte addresses into the delegated (``f4``) namespace so a smart contract
can act as the deal client.

Address string layout::

    <network><protocol><body>

    network   "f" (mainnet) or "t" (testnet)
    protocol  0 id, 1 secp256k1, 2 actor, 3 bls, 4 delegated
    body      decimal actor id                          (protocol 0)
              <namespace>f<base32(subaddress|checksum)> (protocol 4)
              base32(payload|checksum)                  (protocols 1-3)

The checksum is a 4-byte blake2b digest over ``protocol byte || payload``.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass, field
from enum import IntEnum

from .errors import InvalidAddressError
from .varint import decode_uvarint, encode_uvarint

__all__ = [
    "Protocol",
    "Address",
    "parse_address",
    "address_from_bytes",
    "new_id_address",
    "new_delegated_address",
    "translate_eth_address",
    "derive_key_address",
    "ETH_ADDRESS_MANAGER_ACTOR_ID",
]

# Builtin actor that owns the EVM address namespace
ETH_ADDRESS_MANAGER_ACTOR_ID = 10

CHECKSUM_LEN = 4
HASH_PAYLOAD_LEN = 20
BLS_PAYLOAD_LEN = 48
MAX_SUBADDRESS_LEN = 54
MAX_ACTOR_ID = (1 << 63) - 1
ETH_ADDRESS_LEN = 20

_NETWORKS = ("f", "t")
_ETH_HEX_RE = re.compile(r"^(?:0x|0X)?([0-9a-fA-F]*)$")


class Protocol(IntEnum):
    """Address protocol tag (first byte of the binary form)."""
    ID = 0
    SECP256K1 = 1
    ACTOR = 2
    BLS = 3
    DELEGATED = 4


def _checksum(protocol: int, payload: bytes) -> bytes:
    return hashlib.blake2b(bytes([protocol]) + payload, digest_size=CHECKSUM_LEN).digest()


def _b32encode(data: bytes) -> str:
    return base64.b32encode(data).decode("ascii").lower().rstrip("=")


def _b32decode(text: str) -> bytes:
    if not text or text != text.lower():
        raise InvalidAddressError(f"invalid base32 body: {text!r}")
    padding = "=" * (-len(text) % 8)
    try:
        return base64.b32decode(text.upper() + padding)
    except (binascii.Error, ValueError) as e:
        raise InvalidAddressError(f"invalid base32 body: {text!r}") from e


@dataclass(frozen=True)
class Address:
    """
    A chain address.

    ``payload`` is the protocol-specific body of the binary form: the varint
    actor id for ID addresses, the 20/48-byte hash or key for protocols 1-3,
    and ``varint(namespace) || subaddress`` for delegated addresses.
    ``network`` only affects the string form and is ignored for equality.
    """
    protocol: Protocol
    payload: bytes
    network: str = field(default="f", compare=False)

    def __post_init__(self) -> None:
        if self.network not in _NETWORKS:
            raise InvalidAddressError(f"unknown network prefix: {self.network!r}")
        _validate_payload(Protocol(self.protocol), self.payload)

    @property
    def actor_id(self) -> int:
        """Numeric actor id (ID addresses only)."""
        if self.protocol != Protocol.ID:
            raise ValueError(f"not an ID address: {self}")
        value, _ = decode_uvarint(self.payload)
        return value

    @property
    def namespace(self) -> int:
        """Delegated namespace actor id (delegated addresses only)."""
        if self.protocol != Protocol.DELEGATED:
            raise ValueError(f"not a delegated address: {self}")
        value, _ = decode_uvarint(self.payload)
        return value

    @property
    def subaddress(self) -> bytes:
        """Delegated subaddress bytes (delegated addresses only)."""
        if self.protocol != Protocol.DELEGATED:
            raise ValueError(f"not a delegated address: {self}")
        _, offset = decode_uvarint(self.payload)
        return self.payload[offset:]

    def to_bytes(self) -> bytes:
        """Binary form: protocol byte followed by the payload."""
        return bytes([int(self.protocol)]) + self.payload

    def with_network(self, network: str) -> Address:
        """Same address rendered for another network."""
        return Address(self.protocol, self.payload, network)

    def to_string(self) -> str:
        head = f"{self.network}{int(self.protocol)}"
        if self.protocol == Protocol.ID:
            return f"{head}{self.actor_id}"
        checksum = _checksum(int(self.protocol), self.payload)
        if self.protocol == Protocol.DELEGATED:
            return f"{head}{self.namespace}f{_b32encode(self.subaddress + checksum)}"
        return f"{head}{_b32encode(self.payload + checksum)}"

    def __str__(self) -> str:
        return self.to_string()


def _validate_payload(protocol: Protocol, payload: bytes) -> None:
    if protocol == Protocol.ID:
        try:
            value, end = decode_uvarint(payload)
        except ValueError as e:
            raise InvalidAddressError(f"invalid id payload: {e}") from e
        if end != len(payload) or value > MAX_ACTOR_ID:
            raise InvalidAddressError("invalid id payload")
    elif protocol in (Protocol.SECP256K1, Protocol.ACTOR):
        if len(payload) != HASH_PAYLOAD_LEN:
            raise InvalidAddressError(
                f"protocol {int(protocol)} payload must be {HASH_PAYLOAD_LEN} bytes, got {len(payload)}"
            )
    elif protocol == Protocol.BLS:
        if len(payload) != BLS_PAYLOAD_LEN:
            raise InvalidAddressError(
                f"bls payload must be {BLS_PAYLOAD_LEN} bytes, got {len(payload)}"
            )
    elif protocol == Protocol.DELEGATED:
        try:
            namespace, offset = decode_uvarint(payload)
        except ValueError as e:
            raise InvalidAddressError(f"invalid delegated namespace: {e}") from e
        if namespace > MAX_ACTOR_ID:
            raise InvalidAddressError("delegated namespace out of range")
        if len(payload) - offset > MAX_SUBADDRESS_LEN:
            raise InvalidAddressError(
                f"delegated subaddress longer than {MAX_SUBADDRESS_LEN} bytes"
            )


def new_id_address(actor_id: int, network: str = "f") -> Address:
    if actor_id < 0 or actor_id > MAX_ACTOR_ID:
        raise InvalidAddressError(f"actor id out of range: {actor_id}")
    return Address(Protocol.ID, encode_uvarint(actor_id), network)


def new_delegated_address(namespace: int, subaddress: bytes, network: str = "f") -> Address:
    if namespace < 0 or namespace > MAX_ACTOR_ID:
        raise InvalidAddressError(f"namespace out of range: {namespace}")
    return Address(Protocol.DELEGATED, encode_uvarint(namespace) + bytes(subaddress), network)


def parse_address(text: str) -> Address:
    """
    Parse an address string.

    Raises:
        InvalidAddressError: On unknown network/protocol, bad encoding,
            wrong payload length or checksum mismatch
    """
    text = (text or "").strip()
    if len(text) < 3:
        raise InvalidAddressError(f"address too short: {text!r}")

    network = text[0]
    if network not in _NETWORKS:
        raise InvalidAddressError(f"unknown network prefix in {text!r}")

    try:
        protocol = Protocol(int(text[1]))
    except ValueError as e:
        raise InvalidAddressError(f"unknown address protocol in {text!r}") from e

    body = text[2:]

    if protocol == Protocol.ID:
        if not body.isdigit() or len(body) > 19:
            raise InvalidAddressError(f"invalid actor id in {text!r}")
        return new_id_address(int(body), network)

    if protocol == Protocol.DELEGATED:
        namespace_text, sep, encoded = body.partition("f")
        if not sep or not namespace_text.isdigit() or len(namespace_text) > 19:
            raise InvalidAddressError(f"invalid delegated address {text!r}")
        raw = _b32decode(encoded)
        if len(raw) < CHECKSUM_LEN:
            raise InvalidAddressError(f"delegated address {text!r} missing checksum")
        address = new_delegated_address(int(namespace_text), raw[:-CHECKSUM_LEN], network)
        if _checksum(int(protocol), address.payload) != raw[-CHECKSUM_LEN:]:
            raise InvalidAddressError(f"checksum mismatch for {text!r}")
        return address

    raw = _b32decode(body)
    if len(raw) < CHECKSUM_LEN:
        raise InvalidAddressError(f"address {text!r} missing checksum")
    payload, checksum = raw[:-CHECKSUM_LEN], raw[-CHECKSUM_LEN:]
    address = Address(protocol, payload, network)
    if _checksum(int(protocol), payload) != checksum:
        raise InvalidAddressError(f"checksum mismatch for {text!r}")
    return address


def address_from_bytes(raw: bytes, network: str = "f") -> Address:
    """Decode the binary form produced by ``Address.to_bytes``."""
    if not raw:
        raise InvalidAddressError("empty address bytes")
    try:
        protocol = Protocol(raw[0])
    except ValueError as e:
        raise InvalidAddressError(f"unknown address protocol byte {raw[0]}") from e
    return Address(protocol, bytes(raw[1:]), network)


def translate_eth_address(eth_address: str, network: str = "f") -> Address:
    """
    Map a 20-byte EVM address into the delegated namespace.

    The result is ``f410f...`` (or ``t410f...``): namespace 10 is the
    Ethereum Address Manager actor and the subaddress is the raw 20 bytes.

    Raises:
        InvalidAddressError: If the input is not 20 bytes of hex
    """
    match = _ETH_HEX_RE.match((eth_address or "").strip())
    if not match or len(match.group(1)) != ETH_ADDRESS_LEN * 2:
        raise InvalidAddressError(
            f"EVM address must be {ETH_ADDRESS_LEN} bytes of hex, got {eth_address!r}"
        )
    return new_delegated_address(
        ETH_ADDRESS_MANAGER_ACTOR_ID, bytes.fromhex(match.group(1)), network
    )


def derive_key_address(public_key: bytes, network: str = "f") -> Address:
    """
    Protocol-1 address for a secp256k1 key: blake2b-160 of the uncompressed
    65-byte public key.
    """
    if len(public_key) != 65 or public_key[0] != 0x04:
        raise ValueError("expected an uncompressed secp256k1 public key")
    digest = hashlib.blake2b(public_key, digest_size=HASH_PAYLOAD_LEN).digest()
    return Address(Protocol.SECP256K1, digest, network)
