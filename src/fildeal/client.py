"""
Deal client.

Turns a ``DealRequest`` into a signed ``DealEnvelope`` (``prepare``) and
negotiates it with the provider (``submit`` / ``make_deal``). Collaborators
are injected; nothing is read from global state and nothing is reused
between attempts.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .address import Address, parse_address, translate_eth_address
from .builder import ProposalBuilder
from .chain import ChainReader
from .cid import ContentIdentifier, parse_cid
from .deal_types import DealEnvelope, NegotiationOutcome, SignedProposal, TransferSpec
from .epochs import DEFAULT_DURATION, EpochResolver, check_start_epoch_args
from .negotiator import SUPPORTED_PROTOCOLS, PeerConnector, PeerStream, ProtocolNegotiator
from .pieces import is_power_of_two
from .pricing import PricingCalculator
from .settings import Settings
from .signer import KeyCustodian, ProposalSigner

logger = logging.getLogger(__name__)

__all__ = [
    "DealRequest",
    "PreparedDeal",
    "DealReceipt",
    "DealClient",
    "parse_http_headers",
    "build_transfer",
]


@dataclass(frozen=True)
class DealRequest:
    """
    Everything the caller decides about a deal.

    Attributes:
        provider: Storage provider address (e.g. "f01234")
        piece_cid: Piece commitment (commP)
        piece_size: Padded piece size, power of two
        payload_cid: Root CID of the CAR payload
        contract: EVM address of the client contract
        wallet: Signer address; the custodian default when None
        http_url: Where the provider downloads the CAR (online deals)
        car_size: CAR size in bytes (online deals)
        http_headers: "key=value" headers sent with the download
        start_epoch_head_offset: Start this many epochs after the head
        start_epoch: Explicit start epoch
        duration: Deal duration in epochs
        provider_collateral: attoFIL; 0 derives it from the chain minimum
        storage_price: attoFIL per epoch per GiB
        verified: Draw on verified datacap
        remove_unsealed_copy: Provider may drop the unsealed copy
        skip_ipni_announce: Do not announce the deal index
        offline: Data is delivered out of band
    """
    provider: str
    piece_cid: str
    piece_size: int
    payload_cid: str
    contract: str
    wallet: Optional[str] = None
    http_url: str = ""
    car_size: int = 0
    http_headers: Tuple[str, ...] = ()
    start_epoch_head_offset: int = 0
    start_epoch: int = 0
    duration: int = DEFAULT_DURATION
    provider_collateral: int = 0
    storage_price: int = 1
    verified: bool = True
    remove_unsealed_copy: bool = False
    skip_ipni_announce: bool = False
    offline: bool = False

    def __post_init__(self) -> None:
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if self.provider_collateral < 0:
            raise ValueError("provider collateral must be non-negative")
        if self.storage_price < 0:
            raise ValueError("storage price must be non-negative")


@dataclass(frozen=True)
class PreparedDeal:
    """A signed request ready to be negotiated."""
    envelope: DealEnvelope
    provider: Address
    client: Address
    signer: Address
    http_url: str = ""

    @property
    def deal_id(self) -> uuid.UUID:
        return self.envelope.deal_id

    @property
    def signed_proposal(self) -> SignedProposal:
        return self.envelope.signed_proposal


@dataclass(frozen=True)
class DealReceipt:
    """Outcome of a completed round trip, with the proposal for audit."""
    deal: PreparedDeal
    outcome: NegotiationOutcome
    protocol: str

    @property
    def accepted(self) -> bool:
        return self.outcome.accepted


def parse_http_headers(headers: Iterable[str]) -> Dict[str, str]:
    """
    Parse "key=value" header strings.

    Raises:
        ValueError: If a header does not split into exactly key and value
    """
    parsed: Dict[str, str] = {}
    for header in headers:
        parts = header.split("=")
        if len(parts) != 2:
            raise ValueError(f"malformed http header: {header}")
        parsed[parts[0]] = parts[1]
    return parsed


def build_transfer(request: DealRequest) -> Optional[TransferSpec]:
    """Transfer spec for online deals; None for offline deals."""
    if request.offline:
        return None
    if request.car_size <= 0:
        raise ValueError("size of car file cannot be 0")
    headers = parse_http_headers(request.http_headers) if request.http_url else None
    return TransferSpec.http(request.http_url, request.car_size, headers)


class DealClient:
    """
    Prepares and negotiates storage deals.

    Args:
        chain: Chain Reader for head, collateral bounds and actor ids
        custodian: Key Custodian that signs proposals
        settings: Network, deadline and frame size settings
        supported_protocols: Deal protocol ids this client speaks
    """

    def __init__(self, chain: ChainReader, custodian: KeyCustodian, settings: Settings,
                 supported_protocols: Sequence[str] = SUPPORTED_PROTOCOLS):
        self.chain = chain
        self.custodian = custodian
        self.settings = settings
        self.supported_protocols = tuple(supported_protocols)
        self.builder = ProposalBuilder()
        self.signer = ProposalSigner(custodian)
        self.pricing = PricingCalculator(chain)
        self.epochs = EpochResolver(chain)

    def _signer_address(self, wallet: Optional[str]) -> Address:
        if wallet:
            return parse_address(wallet)
        default = getattr(self.custodian, "default_address", None)
        if default is None:
            raise ValueError("no wallet given and the key custodian has no default address")
        return default

    def prepare(self, request: DealRequest) -> PreparedDeal:
        """
        Build and sign the request for ``request``.

        Local validation runs first, so input errors surface before any
        chain query.

        Raises:
            ConflictingStartEpochError: Both start epoch forms given
            MalformedIdentifierError: Bad piece/root CID or address
            InvalidLabelSourceError: Signer actor id unusable as label
            ChainReadError: Chain Reader failure
            SigningError: Key Custodian failure
            ValueError: Other invalid input
        """
        network = self.settings.address_prefix

        check_start_epoch_args(request.start_epoch_head_offset, request.start_epoch)
        if not is_power_of_two(request.piece_size):
            raise ValueError("piece-size must be a power of 2")

        provider = parse_address(request.provider)
        piece_cid: ContentIdentifier = parse_cid(request.piece_cid)
        data_root = parse_cid(request.payload_cid)
        transfer = build_transfer(request)
        client = translate_eth_address(request.contract, network)

        signer = self._signer_address(request.wallet)
        logger.info(f"Selected wallet {signer}")

        collateral = self.pricing.provider_collateral(
            request.piece_size, request.verified, request.provider_collateral
        )
        window = self.epochs.resolve(
            head_offset=request.start_epoch_head_offset,
            explicit_start=request.start_epoch,
            duration=request.duration,
        )
        actor_id = self.chain.resolve_actor_id(signer)

        proposal = self.builder.build(
            piece_cid=piece_cid,
            piece_size=request.piece_size,
            verified=request.verified,
            client=client,
            provider=provider,
            actor_id=actor_id,
            window=window,
            storage_price=request.storage_price,
            provider_collateral=collateral,
        )
        signed = self.signer.sign(proposal, signer)

        envelope = DealEnvelope(
            deal_id=uuid.uuid4(),
            signed_proposal=signed,
            data_root=data_root,
            is_offline=request.offline,
            transfer=transfer,
            remove_unsealed_copy=request.remove_unsealed_copy,
            skip_index_announce=request.skip_ipni_announce,
        )
        return PreparedDeal(
            envelope=envelope,
            provider=provider,
            client=client,
            signer=signer,
            http_url="" if request.offline else request.http_url,
        )

    async def submit(self, deal: PreparedDeal, stream: PeerStream, peer_protocols: Sequence[str], *,
                     cancel: Optional[asyncio.Event] = None,
                     timeout: Optional[float] = None) -> DealReceipt:
        """
        Negotiate a prepared deal over an open stream.

        The stream is closed on return. ``timeout`` defaults to the
        configured deal deadline.
        """
        negotiator = ProtocolNegotiator(self.supported_protocols, self.settings.max_frame_size)
        deadline = self.settings.deal_timeout_s if timeout is None else timeout
        outcome = await negotiator.negotiate(
            stream, peer_protocols, deal.envelope, cancel=cancel, timeout=deadline
        )
        return DealReceipt(deal=deal, outcome=outcome, protocol=negotiator.protocol or "")

    async def make_deal(self, request: DealRequest, connector: PeerConnector, *,
                        cancel: Optional[asyncio.Event] = None,
                        timeout: Optional[float] = None) -> DealReceipt:
        """Prepare ``request``, connect to the provider and negotiate."""
        deal = self.prepare(request)
        logger.info(f"Found storage provider {deal.provider}")
        stream, protocols = await connector.connect(deal.provider)
        return await self.submit(deal, stream, protocols, cancel=cancel, timeout=timeout)
