"""
Canonical wire encoding for deal messages.

Messages are CBOR encoded with ``cbor2`` in canonical mode so the same
record always produces the same bytes; the proposal signature depends on
that. On the stream each message is prefixed with its length as an
unsigned varint.

Layouts:

- proposal: 11-element array (piece CID, piece size, verified, client,
  provider, label, start epoch, end epoch, price per epoch, provider
  collateral, client collateral)
- envelope: map keyed DealUUID, ClientDealProposal, DealDataRoot,
  IsOffline, Transfer, RemoveUnsealedCopy, SkipIPNIAnnounce
- response: map keyed Accepted, Message

CIDs use CBOR tag 42 with a leading zero byte; big integers are a sign
byte followed by the big-endian magnitude, and zero is empty bytes.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Protocol

import cbor2

from .address import address_from_bytes
from .cid import ContentIdentifier, cid_from_bytes
from .deal_types import (
    DealEnvelope,
    DealProposal,
    NegotiationOutcome,
    Signature,
    SignedProposal,
    TransferSpec,
)
from .errors import CodecError, MalformedIdentifierError
from .varint import MAX_UVARINT_BYTES, decode_uvarint, encode_uvarint

__all__ = [
    "encode_proposal",
    "decode_proposal",
    "encode_envelope",
    "decode_envelope",
    "encode_outcome",
    "decode_outcome",
    "encode_bigint",
    "decode_bigint",
    "frame",
    "read_frame",
    "CID_TAG",
    "PROPOSAL_FIELDS",
]

CID_TAG = 42
PROPOSAL_FIELDS = 11


# Primitive encoders

def encode_bigint(value: int) -> bytes:
    if value == 0:
        return b""
    sign = b"\x01" if value < 0 else b"\x00"
    magnitude = abs(value)
    return sign + magnitude.to_bytes((magnitude.bit_length() + 7) // 8, "big")


def decode_bigint(raw: bytes) -> int:
    if not isinstance(raw, bytes):
        raise CodecError(f"big integer must be bytes, got {type(raw).__name__}")
    if not raw:
        return 0
    if raw[0] not in (0, 1):
        raise CodecError(f"invalid big integer sign byte {raw[0]}")
    magnitude = int.from_bytes(raw[1:], "big")
    return -magnitude if raw[0] == 1 else magnitude


def _cid_tag(cid: ContentIdentifier) -> cbor2.CBORTag:
    return cbor2.CBORTag(CID_TAG, b"\x00" + cid.to_bytes())


def _cid_from_tag(value: Any, field: str) -> ContentIdentifier:
    if not isinstance(value, cbor2.CBORTag) or value.tag != CID_TAG:
        raise CodecError(f"{field}: expected CID tag {CID_TAG}")
    raw = value.value
    if not isinstance(raw, bytes) or not raw or raw[0] != 0:
        raise CodecError(f"{field}: malformed CID payload")
    try:
        return cid_from_bytes(raw[1:])
    except MalformedIdentifierError as e:
        raise CodecError(f"{field}: {e}") from e


def _expect(value: Any, kind: type, field: str) -> Any:
    # bool is an int subclass; keep the two apart
    if kind is int and isinstance(value, bool):
        raise CodecError(f"{field}: expected int, got bool")
    if not isinstance(value, kind):
        raise CodecError(f"{field}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _dumps(obj: Any) -> bytes:
    try:
        return cbor2.dumps(obj, canonical=True)
    except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
        raise CodecError(f"failed to encode message: {e}") from e


def _loads(data: bytes) -> Any:
    try:
        return cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, EOFError) as e:
        raise CodecError(f"failed to decode message: {e}") from e


# Proposal

def _proposal_to_obj(proposal: DealProposal) -> List[Any]:
    return [
        _cid_tag(proposal.piece_cid),
        proposal.piece_size,
        proposal.verified,
        proposal.client.to_bytes(),
        proposal.provider.to_bytes(),
        proposal.label,
        proposal.start_epoch,
        proposal.end_epoch,
        encode_bigint(proposal.storage_price_per_epoch),
        encode_bigint(proposal.provider_collateral),
        encode_bigint(proposal.client_collateral),
    ]


def _proposal_from_obj(obj: Any, network: str) -> DealProposal:
    _expect(obj, list, "proposal")
    if len(obj) != PROPOSAL_FIELDS:
        raise CodecError(f"proposal: expected {PROPOSAL_FIELDS} fields, got {len(obj)}")
    try:
        return DealProposal(
            piece_cid=_cid_from_tag(obj[0], "PieceCID"),
            piece_size=_expect(obj[1], int, "PieceSize"),
            verified=_expect(obj[2], bool, "VerifiedDeal"),
            client=address_from_bytes(_expect(obj[3], bytes, "Client"), network),
            provider=address_from_bytes(_expect(obj[4], bytes, "Provider"), network),
            label=_expect(obj[5], str, "Label"),
            start_epoch=_expect(obj[6], int, "StartEpoch"),
            end_epoch=_expect(obj[7], int, "EndEpoch"),
            storage_price_per_epoch=decode_bigint(obj[8]),
            provider_collateral=decode_bigint(obj[9]),
            client_collateral=decode_bigint(obj[10]),
        )
    except CodecError:
        raise
    except ValueError as e:
        raise CodecError(f"invalid proposal: {e}") from e


def encode_proposal(proposal: DealProposal) -> bytes:
    """Canonical bytes of a proposal; the signature is computed over these."""
    return _dumps(_proposal_to_obj(proposal))


def decode_proposal(data: bytes, network: str = "f") -> DealProposal:
    return _proposal_from_obj(_loads(data), network)


# Envelope

_EMPTY_TRANSFER = {"Type": "", "ClientID": "", "Params": b"", "Size": 0}


def _transfer_to_obj(transfer: Optional[TransferSpec]) -> Dict[str, Any]:
    if transfer is None:
        return dict(_EMPTY_TRANSFER)
    return {
        "Type": transfer.type,
        "ClientID": transfer.client_id,
        "Params": transfer.params,
        "Size": transfer.size,
    }


def _transfer_from_obj(obj: Any) -> Optional[TransferSpec]:
    _expect(obj, dict, "Transfer")
    kind = _expect(obj.get("Type", ""), str, "Transfer.Type")
    if not kind:
        return None
    try:
        return TransferSpec(
            type=kind,
            size=_expect(obj.get("Size"), int, "Transfer.Size"),
            params=_expect(obj.get("Params", b""), bytes, "Transfer.Params"),
            client_id=_expect(obj.get("ClientID", ""), str, "Transfer.ClientID"),
        )
    except CodecError:
        raise
    except ValueError as e:
        raise CodecError(f"invalid transfer: {e}") from e


def encode_envelope(envelope: DealEnvelope) -> bytes:
    signed = envelope.signed_proposal
    return _dumps({
        "DealUUID": envelope.deal_id.bytes,
        "ClientDealProposal": [_proposal_to_obj(signed.proposal), signed.signature.to_bytes()],
        "DealDataRoot": _cid_tag(envelope.data_root),
        "IsOffline": envelope.is_offline,
        "Transfer": _transfer_to_obj(envelope.transfer),
        "RemoveUnsealedCopy": envelope.remove_unsealed_copy,
        "SkipIPNIAnnounce": envelope.skip_index_announce,
    })


def decode_envelope(data: bytes, network: str = "f") -> DealEnvelope:
    """Decode a request; used by provider-side tooling and tests."""
    obj = _expect(_loads(data), dict, "envelope")
    missing = {"DealUUID", "ClientDealProposal", "DealDataRoot", "IsOffline", "Transfer"} - set(obj)
    if missing:
        raise CodecError(f"envelope: missing fields {sorted(missing)}")

    client_proposal = _expect(obj["ClientDealProposal"], list, "ClientDealProposal")
    if len(client_proposal) != 2:
        raise CodecError("ClientDealProposal: expected [proposal, signature]")
    try:
        signature = Signature.from_bytes(_expect(client_proposal[1], bytes, "ClientSignature"))
        deal_id = uuid.UUID(bytes=_expect(obj["DealUUID"], bytes, "DealUUID"))
        return DealEnvelope(
            deal_id=deal_id,
            signed_proposal=SignedProposal(_proposal_from_obj(client_proposal[0], network), signature),
            data_root=_cid_from_tag(obj["DealDataRoot"], "DealDataRoot"),
            is_offline=_expect(obj["IsOffline"], bool, "IsOffline"),
            transfer=_transfer_from_obj(obj["Transfer"]),
            remove_unsealed_copy=_expect(obj.get("RemoveUnsealedCopy", False), bool, "RemoveUnsealedCopy"),
            skip_index_announce=_expect(obj.get("SkipIPNIAnnounce", False), bool, "SkipIPNIAnnounce"),
        )
    except CodecError:
        raise
    except ValueError as e:
        raise CodecError(f"invalid envelope: {e}") from e


# Response

def encode_outcome(outcome: NegotiationOutcome) -> bytes:
    return _dumps({"Accepted": outcome.accepted, "Message": outcome.message})


def decode_outcome(data: bytes) -> NegotiationOutcome:
    obj = _expect(_loads(data), dict, "response")
    if "Accepted" not in obj:
        raise CodecError("response: missing Accepted")
    return NegotiationOutcome(
        accepted=_expect(obj["Accepted"], bool, "Accepted"),
        message=_expect(obj.get("Message", ""), str, "Message"),
    )


# Framing

class _Reader(Protocol):
    async def read_exactly(self, n: int) -> bytes:
        ...


def frame(payload: bytes) -> bytes:
    """Prefix a message with its varint length."""
    return encode_uvarint(len(payload)) + payload


async def read_frame(reader: _Reader, max_size: int) -> bytes:
    """
    Read one length-prefixed message.

    Raises:
        CodecError: If the length prefix is malformed or exceeds ``max_size``
        EOFError / OSError: From the underlying stream
    """
    prefix = bytearray()
    while True:
        byte = await reader.read_exactly(1)
        prefix += byte
        if not byte[0] & 0x80:
            break
        if len(prefix) >= MAX_UVARINT_BYTES:
            raise CodecError("frame length prefix too long")

    try:
        length, _ = decode_uvarint(bytes(prefix))
    except ValueError as e:
        raise CodecError(f"invalid frame length prefix: {e}") from e

    if length > max_size:
        raise CodecError(f"frame of {length} bytes exceeds limit of {max_size}")
    if length == 0:
        return b""
    return await reader.read_exactly(length)
