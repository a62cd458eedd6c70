"""
Deal proposal assembly.

Puts the resolved epochs, prices, collateral and addresses together into a
``DealProposal`` and produces its canonical bytes for signing.
"""
from __future__ import annotations

import logging
from typing import Union

from .address import Address
from .cid import ContentIdentifier, parse_cid
from .codec import encode_proposal
from .deal_types import DealProposal, EpochWindow
from .errors import InvalidLabelSourceError
from .pricing import storage_price_per_epoch

logger = logging.getLogger(__name__)

__all__ = ["ProposalBuilder", "label_from_actor_id", "ACTOR_ID_PREFIXES"]

ACTOR_ID_PREFIXES = ("f0", "t0")


def label_from_actor_id(actor_id: Union[str, Address]) -> str:
    """
    Numeric part of an actor id such as ``f01234`` -> ``"1234"``.

    The label carries the signer's identity so the client contract can check
    who signed the proposal.

    Raises:
        InvalidLabelSourceError: If the id is too short or lacks an f0/t0 prefix
    """
    text = str(actor_id)
    if len(text) <= 2:
        raise InvalidLabelSourceError(f"invalid signer actor id {text!r}: too short")

    prefix = text[:2]
    if prefix not in ACTOR_ID_PREFIXES:
        raise InvalidLabelSourceError(
            f"invalid signer actor id prefix: expected 'f0' or 't0', got {prefix!r}"
        )
    return text[2:]


class ProposalBuilder:
    """Builds proposals and their canonical serialization."""

    def build(
        self,
        *,
        piece_cid: Union[str, ContentIdentifier],
        piece_size: int,
        verified: bool,
        client: Address,
        provider: Address,
        actor_id: Union[str, Address],
        window: EpochWindow,
        storage_price: int,
        provider_collateral: int,
    ) -> DealProposal:
        """
        Assemble a proposal.

        Args:
            piece_cid: Piece commitment, as text or already parsed
            piece_size: Padded piece size (power of two)
            verified: Whether the deal draws on verified datacap
            client: Client address (the contract's delegated address)
            provider: Storage provider address
            actor_id: Signer's actor id, source of the label
            window: Resolved start/end epochs
            storage_price: attoFIL per epoch per GiB
            provider_collateral: Resolved provider collateral

        Raises:
            MalformedIdentifierError: If ``piece_cid`` does not parse
            InvalidLabelSourceError: If ``actor_id`` cannot become a label
            ValueError: If the proposal invariants do not hold
        """
        if not isinstance(piece_cid, ContentIdentifier):
            piece_cid = parse_cid(piece_cid)
        if not piece_cid.is_piece_commitment:
            logger.warning(f"Piece CID {piece_cid} is not an unsealed piece commitment")

        proposal = DealProposal(
            piece_cid=piece_cid,
            piece_size=piece_size,
            verified=verified,
            client=client,
            provider=provider,
            label=label_from_actor_id(actor_id),
            start_epoch=window.start,
            end_epoch=window.end,
            storage_price_per_epoch=storage_price_per_epoch(piece_size, storage_price),
            provider_collateral=provider_collateral,
        )
        logger.debug(f"Built proposal for piece {piece_cid} with provider {provider}")
        return proposal

    @staticmethod
    def serialize(proposal: DealProposal) -> bytes:
        """Canonical bytes of the proposal; identical input gives identical bytes."""
        return encode_proposal(proposal)
