"""
Local keystore custodian.

Holds secp256k1 keys in memory, loaded from (and saved to) a YAML keystore
file. Meant for development networks and tests; production deployments
inject a custodian backed by a real wallet.

Keystore file layout::

    default: f1...
    keys:
      - <64 hex chars of the secp256k1 private scalar>
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from ecdsa import SigningKey

from .address import Address, Protocol, derive_key_address, parse_address
from .deal_types import Signature, SigType
from .errors import SigningError
from .secp256k1 import (
    generate_private_key,
    load_private_key,
    public_key_bytes,
    recover_public_key,
    sign_recoverable,
)
from .signer import MsgType

logger = logging.getLogger(__name__)

__all__ = ["KeystoreCustodian"]


class KeystoreCustodian:
    """
    In-memory key custodian keyed by derived address.

    Implements both ``KeyCustodian`` and ``SignatureVerifier``.
    """

    def __init__(self, network: str = "f") -> None:
        self.network = network
        self._keys: Dict[bytes, SigningKey] = {}
        self._default: Optional[Address] = None

    @classmethod
    def from_file(cls, path: Union[str, Path], network: str = "f") -> KeystoreCustodian:
        """
        Load a keystore file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is malformed
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Keystore not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict) or not isinstance(data.get("keys", []), list):
            raise ValueError(f"Malformed keystore {path}: expected a mapping with a 'keys' list")

        custodian = cls(network=network)
        for secret_hex in data.get("keys", []):
            try:
                custodian.add_key(load_private_key(bytes.fromhex(str(secret_hex))))
            except ValueError as e:
                raise ValueError(f"Malformed key in keystore {path}: {e}") from e

        default = data.get("default")
        if default:
            custodian.set_default(parse_address(str(default)))

        logger.debug(f"Loaded {len(custodian._keys)} keys from {path}")
        return custodian

    def save(self, path: Union[str, Path]) -> None:
        """Write the keystore file with owner-only permissions."""
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "default": str(self._default) if self._default else None,
            "keys": [key.to_string().hex() for key in self._keys.values()],
        }
        with open(path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=True)
        os.chmod(path, 0o600)

    def add_key(self, key: SigningKey) -> Address:
        address = derive_key_address(public_key_bytes(key), self.network)
        self._keys[address.to_bytes()] = key
        if self._default is None:
            self._default = address
        return address

    def generate(self) -> Address:
        """Create a fresh key and return its address."""
        return self.add_key(generate_private_key())

    def set_default(self, address: Address) -> None:
        if address.to_bytes() not in self._keys:
            raise SigningError(f"address {address} is not controlled by this keystore")
        self._default = address.with_network(self.network)

    @property
    def addresses(self) -> List[Address]:
        return [derive_key_address(public_key_bytes(k), self.network) for k in self._keys.values()]

    @property
    def default_address(self) -> Address:
        if self._default is None:
            raise SigningError("keystore holds no keys")
        return self._default

    def sign(self, address: Address, data: bytes, purpose: MsgType = MsgType.UNKNOWN) -> Signature:
        key = self._keys.get(address.to_bytes())
        if key is None:
            raise SigningError(f"address {address} is not controlled by this keystore")
        logger.debug(f"Signing {len(data)} bytes as {address} for {purpose.value}")
        return Signature(SigType.SECP256K1, sign_recoverable(key, data))

    def verify(self, address: Address, data: bytes, signature: Signature) -> bool:
        """True when ``signature`` recovers to the key behind ``address``."""
        if signature.type != SigType.SECP256K1 or address.protocol != Protocol.SECP256K1:
            return False
        try:
            public = recover_public_key(data, signature.data)
        except ValueError:
            return False
        return derive_key_address(public, self.network) == address
