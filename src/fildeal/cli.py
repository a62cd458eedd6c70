"""
fildeal CLI

Implements the deal-making verbs on top of the Operations facade:
- deal: Propose an online deal (provider downloads the CAR over HTTP)
- offline-deal: Propose an offline deal (data delivered out of band)
- actor-id: Resolve the actor id behind a wallet address
- convert-price: Convert FIL/TiB/month to attoFIL per byte per epoch
- eth-to-f4: Translate an EVM address to a delegated address
- piece-size: Padded piece size for a file or folder
- sign-data: Sign a sample payload to prove control of a wallet
- get-eth-addr: EVM address of a secp256k1 wallet
- wallet-new: Generate a key in the local keystore
"""
from __future__ import annotations

import logging
import typer
from typing import List, Optional, Tuple

from .client import DealRequest
from .epochs import DEFAULT_DURATION
from .negotiator import SUPPORTED_PROTOCOLS, StaticPeerConnector
from .operations import REJECTED_EXIT_CODE, Operations, OpsConfig, run_and_exit
from .operations.printers import (
    print_actor_id, print_address, print_deal_receipt, print_eth_address, print_new_wallet,
    print_piece_size, print_price, print_rejection, print_signature
)
from .cli_context import CLIContext
from .settings import NETWORK_PREFIXES

app = typer.Typer(name="fildeal", help="Storage deal client CLI")


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _network_prefix(network: str) -> str:
    if network not in NETWORK_PREFIXES:
        raise ValueError(f"network must be one of {sorted(NETWORK_PREFIXES)}, got {network!r}")
    return NETWORK_PREFIXES[network]


def _parse_peer(peer: str) -> Tuple[str, int]:
    """
    Parse a "host:port" peer location.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = peer.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid peer location {peer!r}, expected host:port")
    return host, int(port)


def _context_ops(config: OpsConfig) -> Operations:
    context = CLIContext.from_env()
    return Operations(
        config=config,
        settings=context.settings,
        chain=context.chain,
        custodian=context.custodian,
    )


def _run_deal(request: DealRequest, peer: str, peer_protocols: Optional[List[str]],
              timeout: Optional[float], verbose: bool) -> None:
    host, port = _parse_peer(peer)
    connector = StaticPeerConnector(host, port, protocols=peer_protocols or SUPPORTED_PROTOCOLS)
    ops = _context_ops(OpsConfig(verbose=verbose, deal_timeout_s=timeout))

    receipt = ops.make_deal(request, connector)
    if not receipt.accepted:
        print_rejection(receipt)
        raise typer.Exit(code=REJECTED_EXIT_CODE)
    print_deal_receipt(receipt)


@app.command()
def deal(
    provider: str = typer.Option(..., "--provider", help="Storage provider on-chain address"),
    peer: str = typer.Option(..., "--peer", help="Storage provider network location (host:port)"),
    http_url: str = typer.Option(..., "--http-url", help="URL the provider downloads the CAR from"),
    car_size: int = typer.Option(..., "--car-size", help="Size of the CAR file in bytes"),
    commp: str = typer.Option(..., "--commp", help="Piece commitment (commP)"),
    piece_size: int = typer.Option(..., "--piece-size", help="Padded piece size"),
    payload_cid: str = typer.Option(..., "--payload-cid", help="Root CID of the CAR file"),
    contract: str = typer.Option(..., "--contract", help="EVM address of the client contract"),
    http_header: Optional[List[str]] = typer.Option(None, "--http-header", help="HTTP header key=value sent with the download (repeatable)"),
    wallet: Optional[str] = typer.Option(None, "--wallet", help="Signer wallet address (keystore default if omitted)"),
    start_epoch_head_offset: int = typer.Option(0, "--start-epoch-head-offset", help="Start this many epochs after the chain head"),
    start_epoch: int = typer.Option(0, "--start-epoch", help="Explicit start epoch"),
    duration: int = typer.Option(DEFAULT_DURATION, "--duration", help="Deal duration in epochs"),
    provider_collateral: int = typer.Option(0, "--provider-collateral", help="Provider collateral in attoFIL (0 derives it from the chain minimum)"),
    storage_price: int = typer.Option(1, "--storage-price", help="Storage price in attoFIL per epoch per GiB"),
    verified: bool = typer.Option(True, "--verified/--unverified", help="Use verified datacap"),
    remove_unsealed_copy: bool = typer.Option(False, "--remove-unsealed-copy", help="Let the provider drop the unsealed copy"),
    skip_ipni_announce: bool = typer.Option(False, "--skip-ipni-announce", help="Do not announce the deal index"),
    peer_protocol: Optional[List[str]] = typer.Option(None, "--peer-protocol", help="Protocol id the provider advertises (repeatable)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Negotiation deadline in seconds"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging")
) -> None:
    """Make an online deal with a storage provider."""
    _configure_logging(verbose)

    def _deal() -> None:
        request = DealRequest(
            provider=provider,
            piece_cid=commp,
            piece_size=piece_size,
            payload_cid=payload_cid,
            contract=contract,
            wallet=wallet,
            http_url=http_url,
            car_size=car_size,
            http_headers=tuple(http_header or ()),
            start_epoch_head_offset=start_epoch_head_offset,
            start_epoch=start_epoch,
            duration=duration,
            provider_collateral=provider_collateral,
            storage_price=storage_price,
            verified=verified,
            remove_unsealed_copy=remove_unsealed_copy,
            skip_ipni_announce=skip_ipni_announce,
        )
        _run_deal(request, peer, peer_protocol, timeout, verbose)

    run_and_exit(_deal)


@app.command("offline-deal")
def offline_deal(
    provider: str = typer.Option(..., "--provider", help="Storage provider on-chain address"),
    peer: str = typer.Option(..., "--peer", help="Storage provider network location (host:port)"),
    commp: str = typer.Option(..., "--commp", help="Piece commitment (commP)"),
    piece_size: int = typer.Option(..., "--piece-size", help="Padded piece size"),
    payload_cid: str = typer.Option(..., "--payload-cid", help="Root CID of the CAR file"),
    contract: str = typer.Option(..., "--contract", help="EVM address of the client contract"),
    wallet: Optional[str] = typer.Option(None, "--wallet", help="Signer wallet address (keystore default if omitted)"),
    start_epoch_head_offset: int = typer.Option(0, "--start-epoch-head-offset", help="Start this many epochs after the chain head"),
    start_epoch: int = typer.Option(0, "--start-epoch", help="Explicit start epoch"),
    duration: int = typer.Option(DEFAULT_DURATION, "--duration", help="Deal duration in epochs"),
    provider_collateral: int = typer.Option(0, "--provider-collateral", help="Provider collateral in attoFIL (0 derives it from the chain minimum)"),
    storage_price: int = typer.Option(1, "--storage-price", help="Storage price in attoFIL per epoch per GiB"),
    verified: bool = typer.Option(True, "--verified/--unverified", help="Use verified datacap"),
    remove_unsealed_copy: bool = typer.Option(False, "--remove-unsealed-copy", help="Let the provider drop the unsealed copy"),
    skip_ipni_announce: bool = typer.Option(False, "--skip-ipni-announce", help="Do not announce the deal index"),
    peer_protocol: Optional[List[str]] = typer.Option(None, "--peer-protocol", help="Protocol id the provider advertises (repeatable)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Negotiation deadline in seconds"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging")
) -> None:
    """Make an offline deal; the data reaches the provider out of band."""
    _configure_logging(verbose)

    def _offline_deal() -> None:
        request = DealRequest(
            provider=provider,
            piece_cid=commp,
            piece_size=piece_size,
            payload_cid=payload_cid,
            contract=contract,
            wallet=wallet,
            start_epoch_head_offset=start_epoch_head_offset,
            start_epoch=start_epoch,
            duration=duration,
            provider_collateral=provider_collateral,
            storage_price=storage_price,
            verified=verified,
            remove_unsealed_copy=remove_unsealed_copy,
            skip_ipni_announce=skip_ipni_announce,
            offline=True,
        )
        _run_deal(request, peer, peer_protocol, timeout, verbose)

    run_and_exit(_offline_deal)


@app.command("actor-id")
def actor_id(
    address: Optional[str] = typer.Argument(None, help="Wallet address (keystore default if omitted)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging")
) -> None:
    """Resolve the actor id behind a wallet address."""
    _configure_logging(verbose)

    def _actor_id() -> None:
        ops = _context_ops(OpsConfig(verbose=verbose))
        target, label = ops.lookup_actor_id(address)
        print_actor_id(str(target), label)

    run_and_exit(_actor_id)


@app.command("convert-price")
def convert_price(
    price: str = typer.Argument(..., help="Price in FIL per TiB per month")
) -> None:
    """Convert FIL/TiB/month into attoFIL per byte per epoch."""

    def _convert() -> None:
        ops = Operations(config=OpsConfig())
        print_price(price, ops.convert_price(price))

    run_and_exit(_convert)


@app.command("eth-to-f4")
def eth_to_f4(
    eth_address: str = typer.Argument(..., help="EVM address (0x-prefixed hex)"),
    network: str = typer.Option("mainnet", "--network", envvar="FILDEAL_NETWORK", help="mainnet or testnet")
) -> None:
    """Translate an EVM address into a delegated (f4) address."""

    def _translate() -> None:
        prefix = _network_prefix(network)
        ops = Operations(config=OpsConfig())
        print_address(eth_address, ops.translate_address(eth_address, prefix))

    run_and_exit(_translate)


@app.command("piece-size")
def piece_size(
    path: str = typer.Argument(..., help="CAR file or folder")
) -> None:
    """Padded piece size for a local file or folder."""

    def _piece_size() -> None:
        ops = Operations(config=OpsConfig())
        raw, padded = ops.piece_size(path)
        print_piece_size(path, raw, padded)

    run_and_exit(_piece_size)


@app.command("sign-data")
def sign_data(
    wallet: Optional[str] = typer.Option(None, "--wallet", help="Wallet address (keystore default if omitted)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging")
) -> None:
    """Sign a sample payload with a keystore wallet."""
    _configure_logging(verbose)

    def _sign() -> None:
        ops = _context_ops(OpsConfig(verbose=verbose))
        address, signature_hex = ops.sign_data(wallet)
        print_signature(address, signature_hex)

    run_and_exit(_sign)


@app.command("get-eth-addr")
def get_eth_addr(
    filecoin_addr: Optional[str] = typer.Option(None, "--filecoin-addr", "-f", help="Filecoin address to convert (keystore default if omitted)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging")
) -> None:
    """Get the Ethereum address corresponding to a Filecoin wallet address."""
    _configure_logging(verbose)

    def _get_eth_addr() -> None:
        ops = _context_ops(OpsConfig(verbose=verbose))
        address, eth_address = ops.get_eth_addr(filecoin_addr)
        print_eth_address(address, eth_address)

    run_and_exit(_get_eth_addr)


@app.command("wallet-new")
def wallet_new(
    keystore: str = typer.Option(..., "--keystore", envvar="FILDEAL_KEYSTORE", help="Keystore file (created if missing)"),
    network: str = typer.Option("mainnet", "--network", envvar="FILDEAL_NETWORK", help="mainnet or testnet")
) -> None:
    """Generate a new key in the local keystore."""

    def _wallet_new() -> None:
        prefix = _network_prefix(network)
        ops = Operations(config=OpsConfig())
        address = ops.new_wallet(keystore, prefix)
        print_new_wallet(address, keystore)

    run_and_exit(_wallet_new)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
