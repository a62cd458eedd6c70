"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin.
"""
from __future__ import annotations

from decimal import Decimal

import typer

from ..address import Address
from ..client import DealReceipt

# Optional Rich support for enhanced output
try:
    from rich.console import Console
    from rich.markup import escape
    _RICH = True
except ImportError:
    _RICH = False


def print_deal_receipt(receipt: DealReceipt) -> None:
    """
    Print the summary of an accepted deal.

    Args:
        receipt: Receipt returned by the deal client
    """
    deal = receipt.deal
    proposal = deal.signed_proposal.proposal
    envelope = deal.envelope

    header = "sent deal proposal"
    if envelope.is_offline:
        header += " for offline deal"

    rows = [
        ("deal uuid", deal.deal_id),
        ("storage provider", deal.provider),
        ("client contract address", deal.client),
        ("signer wallet", deal.signer),
        ("payload cid", envelope.data_root),
    ]
    if not envelope.is_offline:
        rows.append(("url", deal.http_url))
    rows += [
        ("commp", proposal.piece_cid),
        ("start epoch", proposal.start_epoch),
        ("end epoch", proposal.end_epoch),
        ("provider collateral", format_fil(proposal.provider_collateral)),
    ]
    if receipt.outcome.message:
        rows.append(("provider message", receipt.outcome.message))

    if _RICH:
        # Built per call so color detection sees the current stdout
        console = Console(emoji=False, highlight=False)
        console.print(f"[bold green]{header}[/]", soft_wrap=True)
        for label, value in rows:
            console.print(f"  [bold]{label}:[/] {escape(str(value))}", soft_wrap=True)
        return

    # Fallback to plain text
    typer.echo(header)
    for label, value in rows:
        typer.echo(f"  {label}: {value}")


def print_rejection(receipt: DealReceipt) -> None:
    """Print a rejected deal to stderr."""
    typer.echo(f"deal proposal rejected: {receipt.outcome.message}", err=True)
    typer.echo(f"  deal uuid: {receipt.deal.deal_id}", err=True)


def print_actor_id(address: str, label: str) -> None:
    typer.echo(f"Using Filecoin Address: {address}")
    typer.echo(f"Actor ID: {label}")


def print_price(price_per_tib_month: str, atto_per_byte_epoch: int) -> None:
    typer.echo(f"Price: {price_per_tib_month} FIL/TiB/month")
    typer.echo(f"Price per byte per epoch: {atto_per_byte_epoch} attoFIL")


def print_address(source: str, address: Address) -> None:
    typer.echo(f"EVM address: {source}")
    typer.echo(f"Delegated address: {address}")


def print_piece_size(path: str, raw_size: int, piece_size: int) -> None:
    typer.echo(f"Path: {path}")
    typer.echo(f"Raw size: {raw_size} bytes")
    typer.echo(f"Padded piece size: {piece_size}")


def print_signature(address: Address, signature_hex: str) -> None:
    typer.echo(f"Using wallet: {address}")
    typer.echo(f"Signature: {signature_hex}")


def print_eth_address(address: Address, eth_address: str) -> None:
    typer.echo(f"Using Filecoin Address: {address}")
    typer.echo(f"Derived Ethereum Address: {eth_address}")


def print_new_wallet(address: Address, keystore: str) -> None:
    typer.echo(f"Created wallet {address}")
    typer.echo(f"Keystore: {keystore}")


_FIL_UNITS = (
    (10 ** 18, "FIL"),
    (10 ** 15, "mFIL"),
    (10 ** 12, "μFIL"),
    (10 ** 9, "nFIL"),
    (10 ** 6, "pFIL"),
    (10 ** 3, "fFIL"),
)


def format_fil(atto: int) -> str:
    """
    Format an attoFIL amount with the largest unit that keeps it >= 1.

    Returns:
        Formatted string (e.g., "1.2 FIL", "500 μFIL", "0 FIL")
    """
    if atto == 0:
        return "0 FIL"
    magnitude = abs(atto)
    for scale, unit in _FIL_UNITS:
        if magnitude >= scale:
            value = (Decimal(atto) / scale).quantize(Decimal("0.0001")).normalize()
            return f"{value:f} {unit}"
    return f"{atto} aFIL"