"""
Deal records exchanged between the builder, signer and negotiator.

Every record is immutable and constructed fresh per deal attempt. Nothing
here is cached or persisted.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional

from .address import Address
from .cid import ContentIdentifier
from .pieces import is_power_of_two

__all__ = [
    "SigType",
    "Signature",
    "CollateralBounds",
    "EpochWindow",
    "DealProposal",
    "SignedProposal",
    "TransferSpec",
    "DealEnvelope",
    "NegotiationOutcome",
    "NegotiationState",
]


class SigType(IntEnum):
    """Signature type tag (first byte of the signature wire form)."""
    SECP256K1 = 1
    BLS = 2
    DELEGATED = 3


@dataclass(frozen=True)
class Signature:
    type: SigType
    data: bytes

    def to_bytes(self) -> bytes:
        return bytes([int(self.type)]) + self.data

    @classmethod
    def from_bytes(cls, raw: bytes) -> Signature:
        if not raw:
            raise ValueError("empty signature bytes")
        return cls(SigType(raw[0]), bytes(raw[1:]))


@dataclass(frozen=True)
class CollateralBounds:
    """Provider collateral bounds reported by the chain, in attoFIL."""
    min: int
    max: int


@dataclass(frozen=True)
class EpochWindow:
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class DealProposal:
    """
    The storage deal a client offers to a provider.

    Invariants:
    - piece_size is a power of two
    - start_epoch < end_epoch
    - prices and collaterals are non-negative
    """
    piece_cid: ContentIdentifier
    piece_size: int
    verified: bool
    client: Address
    provider: Address
    label: str
    start_epoch: int
    end_epoch: int
    storage_price_per_epoch: int
    provider_collateral: int
    client_collateral: int = 0

    def __post_init__(self) -> None:
        if not is_power_of_two(self.piece_size):
            raise ValueError(f"piece_size must be a power of 2, got {self.piece_size}")
        if self.start_epoch >= self.end_epoch:
            raise ValueError(
                f"start_epoch ({self.start_epoch}) must be before end_epoch ({self.end_epoch})"
            )
        if self.storage_price_per_epoch < 0:
            raise ValueError("storage_price_per_epoch must be non-negative")
        if self.provider_collateral < 0:
            raise ValueError("provider_collateral must be non-negative")
        if self.client_collateral < 0:
            raise ValueError("client_collateral must be non-negative")

    @property
    def duration(self) -> int:
        return self.end_epoch - self.start_epoch


@dataclass(frozen=True)
class SignedProposal:
    """A proposal plus the client signature over its canonical bytes."""
    proposal: DealProposal
    signature: Signature


@dataclass(frozen=True)
class TransferSpec:
    """
    How the provider fetches the data for an online deal.

    ``params`` is transport specific; for "http" it is the JSON object
    ``{"URL": ..., "Headers": {...}}``.
    """
    type: str
    size: int
    params: bytes = b""
    client_id: str = ""

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError("size of car file cannot be 0")

    @classmethod
    def http(cls, url: str, size: int, headers: Optional[Dict[str, str]] = None) -> TransferSpec:
        params = {"URL": url, "Headers": dict(headers) if headers else None}
        return cls(type="http", size=size, params=json.dumps(params, separators=(",", ":")).encode("utf-8"))


@dataclass(frozen=True)
class DealEnvelope:
    """
    The request written to the provider.

    Invariants:
    - online deals carry a transfer spec, offline deals do not
    """
    deal_id: uuid.UUID
    signed_proposal: SignedProposal
    data_root: ContentIdentifier
    is_offline: bool
    transfer: Optional[TransferSpec] = None
    remove_unsealed_copy: bool = False
    skip_index_announce: bool = False

    def __post_init__(self) -> None:
        if self.is_offline and self.transfer is not None:
            raise ValueError("offline deals must not carry a transfer spec")
        if not self.is_offline and self.transfer is None:
            raise ValueError("online deals require a transfer spec")


@dataclass(frozen=True)
class NegotiationOutcome:
    """Provider's answer. ``accepted=False`` is a rejection, not a failure."""
    accepted: bool
    message: str = ""


class NegotiationState(str, Enum):
    IDLE = "idle"
    PEER_CONNECTED = "peer_connected"
    VERSION_CHECKED = "version_checked"
    REQUEST_SENT = "request_sent"
    AWAITING_RESPONSE = "awaiting_response"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    TRANSPORT_FAILED = "transport_failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    NegotiationState.ACCEPTED,
    NegotiationState.REJECTED,
    NegotiationState.TIMED_OUT,
    NegotiationState.TRANSPORT_FAILED,
})
