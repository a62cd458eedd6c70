"""
Proposal signing.

The signer never touches key material: it hands the canonical proposal
bytes to a key custodian and attaches the returned signature.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

import cbor2

from .address import Address, derive_key_address
from .codec import encode_proposal
from .deal_types import DealProposal, Signature, SignedProposal, SigType
from .errors import SigningError
from .secp256k1 import eth_address_from_public_key, recover_public_key

logger = logging.getLogger(__name__)

__all__ = [
    "MsgType",
    "KeyCustodian",
    "SignatureVerifier",
    "ProposalSigner",
    "verify_signed_proposal",
    "derive_eth_address",
    "KEY_RECOVERY_PAYLOAD",
]

# CBOR text string "dummy", signed only so the public key can be recovered
KEY_RECOVERY_PAYLOAD = cbor2.dumps("dummy")


class MsgType(str, Enum):
    """Purpose tag passed to the custodian alongside the bytes to sign."""
    UNKNOWN = "unknown"
    DEAL_PROPOSAL = "dealproposal"


@runtime_checkable
class KeyCustodian(Protocol):
    """Protocol for the holder of signing keys."""

    def sign(self, address: Address, data: bytes, purpose: MsgType = MsgType.UNKNOWN) -> Signature:
        """
        Sign ``data`` with the key behind ``address``.

        Raises:
            SigningError: If the address is not controlled or the custodian fails
        """
        ...


@runtime_checkable
class SignatureVerifier(Protocol):
    def verify(self, address: Address, data: bytes, signature: Signature) -> bool:
        ...


class ProposalSigner:
    """Signs proposals through an injected custodian."""

    def __init__(self, custodian: KeyCustodian):
        self.custodian = custodian

    def sign(self, proposal: DealProposal, signer: Address) -> SignedProposal:
        """
        Sign the canonical bytes of ``proposal`` as ``signer``.

        Raises:
            SigningError: On any custodian failure; no unsigned proposal escapes
        """
        signature = _custodian_sign(self.custodian, signer, encode_proposal(proposal), MsgType.DEAL_PROPOSAL)
        logger.debug(f"Signed proposal as {signer} ({signature.type.name})")
        return SignedProposal(proposal=proposal, signature=signature)


def verify_signed_proposal(signed: SignedProposal, signer: Address, verifier: SignatureVerifier) -> bool:
    """Check the signature against the re-encoded proposal it accompanies."""
    return verifier.verify(signer, encode_proposal(signed.proposal), signed.signature)


def _custodian_sign(custodian: KeyCustodian, address: Address, data: bytes, purpose: MsgType) -> Signature:
    try:
        signature = custodian.sign(address, data, purpose)
    except SigningError:
        raise
    except Exception as e:
        raise SigningError(f"wallet sign failed for {address}: {e}") from e

    if not isinstance(signature, Signature) or not signature.data:
        raise SigningError(f"custodian returned no signature for {address}")
    return signature


def derive_eth_address(custodian: KeyCustodian, address: Address) -> str:
    """
    EVM address of the secp256k1 key behind ``address``.

    The custodian signs a fixed payload; the public key is recovered from
    that signature and hashed with keccak256. Works with any custodian,
    since no public key lookup is needed.

    Raises:
        SigningError: If signing fails or the signature does not recover
            to a secp256k1 key for ``address``
    """
    signature = _custodian_sign(custodian, address, KEY_RECOVERY_PAYLOAD, MsgType.UNKNOWN)
    if signature.type != SigType.SECP256K1:
        raise SigningError(f"{address} does not sign with a secp256k1 key ({signature.type.name})")
    try:
        public_key = recover_public_key(KEY_RECOVERY_PAYLOAD, signature.data)
    except ValueError as e:
        raise SigningError(f"failed to recover public key for {address}: {e}") from e
    if derive_key_address(public_key, address.network) != address:
        raise SigningError(f"recovered public key does not belong to {address}")
    return eth_address_from_public_key(public_key)
