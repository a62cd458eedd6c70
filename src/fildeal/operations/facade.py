"""
Operations Facade - Application service layer.

Provides a clean interface between CLI and the deal client, centralizing
command orchestration and configuration while keeping CLI commands thin
and testable.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from ..address import Address, parse_address, translate_eth_address
from ..builder import label_from_actor_id
from ..chain import ChainReader
from ..client import DealClient, DealReceipt, DealRequest
from ..keystore import KeystoreCustodian
from ..negotiator import PeerConnector
from ..pieces import padded_piece_size_for, path_size
from ..pricing import convert_price
from ..settings import Settings
from ..signer import KeyCustodian, MsgType, derive_eth_address

logger = logging.getLogger(__name__)

# Payload signed by the sign-data command
SAMPLE_SIGN_PAYLOAD = b"Hello, Filecoin!"


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Centralizes policy decisions like the negotiation deadline override and
    output verbosity.
    """
    verbose: bool = False                 # Show detailed output
    deal_timeout_s: Optional[float] = None  # Override settings.deal_timeout_s


class Operations:
    """
    Application service facade for CLI operations.

    One method per CLI verb. Collaborators (chain reader, key custodian) are
    injected so commands can be tested with fakes; exceptions bubble up for
    central mapping in ``run_and_exit``.
    """

    def __init__(self, config: OpsConfig, settings: Optional[Settings] = None,
                 chain: Optional[ChainReader] = None,
                 custodian: Optional[KeyCustodian] = None):
        self.cfg = config
        self.settings = settings
        self.chain = chain
        self.custodian = custodian

    def _require(self, name: str):
        value = getattr(self, name)
        if value is None:
            raise ValueError(f"{name} required for this operation")
        return value

    def _network(self) -> str:
        return self.settings.address_prefix if self.settings else "f"

    def make_deal(self, request: DealRequest, connector: PeerConnector) -> DealReceipt:
        """
        Prepare, sign and negotiate a deal.

        Returns:
            DealReceipt; check ``accepted`` for the provider's decision
        """
        client = DealClient(
            chain=self._require("chain"),
            custodian=self._require("custodian"),
            settings=self._require("settings"),
        )
        return asyncio.run(client.make_deal(request, connector, timeout=self.cfg.deal_timeout_s))

    def lookup_actor_id(self, address: Optional[str]) -> Tuple[Address, str]:
        """
        Resolve the actor id behind ``address`` (custodian default when None).

        Returns:
            (address, numeric actor id without network prefix)
        """
        chain = self._require("chain")
        if address:
            target = parse_address(address)
        else:
            target = self._require("custodian").default_address
        actor = chain.resolve_actor_id(target)
        return target, label_from_actor_id(actor)

    def convert_price(self, price_per_tib_month: str) -> int:
        return convert_price(price_per_tib_month)

    def translate_address(self, eth_address: str, network: Optional[str] = None) -> Address:
        network = network or self._network()
        return translate_eth_address(eth_address, network)

    def piece_size(self, path: str) -> Tuple[int, int]:
        """
        Returns:
            (raw size in bytes, padded piece size)
        """
        raw = path_size(path)
        return raw, padded_piece_size_for(raw)

    def sign_data(self, wallet: Optional[str]) -> Tuple[Address, str]:
        """
        Sign a fixed sample payload, proving control of ``wallet``.

        Returns:
            (address, hex of signature type byte followed by signature bytes)
        """
        custodian = self._require("custodian")
        address = parse_address(wallet) if wallet else custodian.default_address
        signature = custodian.sign(address, SAMPLE_SIGN_PAYLOAD, MsgType.UNKNOWN)
        return address, signature.to_bytes().hex()

    def get_eth_addr(self, filecoin_addr: Optional[str]) -> Tuple[Address, str]:
        """
        EVM address of a secp256k1 wallet (custodian default when None).

        Returns:
            (wallet address, EIP-55 checksummed EVM address)
        """
        custodian = self._require("custodian")
        address = parse_address(filecoin_addr) if filecoin_addr else custodian.default_address
        return address, derive_eth_address(custodian, address)

    def new_wallet(self, keystore_path: str, network: Optional[str] = None) -> Address:
        """Generate a key and add it to the keystore file (created if missing)."""
        network = network or self._network()
        path = Path(keystore_path).expanduser()
        if path.exists():
            keystore = KeystoreCustodian.from_file(path, network=network)
        else:
            keystore = KeystoreCustodian(network=network)
        address = keystore.generate()
        keystore.save(path)
        logger.info(f"Added {address} to {path}")
        return address
