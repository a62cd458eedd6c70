"""
Deal pricing and collateral.

Two independent pricing inputs exist and are kept as separate code paths:

- ``convert_price`` turns a provider-registration price quoted per TiB per
  month into attoFIL per byte per epoch.
- ``storage_price_per_epoch`` turns the deal's own price, quoted in attoFIL
  per epoch per GiB, into the total per-epoch price of a piece.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Protocol, Union

from .deal_types import CollateralBounds

logger = logging.getLogger(__name__)

__all__ = [
    "convert_price",
    "storage_price_per_epoch",
    "collateral_with_margin",
    "PricingCalculator",
    "BYTES_PER_TIB",
    "EPOCHS_PER_MONTH",
    "ATTO_PER_FIL",
]

ATTO_PER_FIL = 10 ** 18
BYTES_PER_TIB = 1 << 40
BYTES_PER_GIB = 1 << 30
# 30 days, 24h, 60m, one epoch every 30 seconds
EPOCHS_PER_MONTH = 30 * 24 * 60 * 2

COLLATERAL_MARGIN_NUMERATOR = 6
COLLATERAL_MARGIN_DENOMINATOR = 5


def convert_price(price_per_tib_month: Union[Decimal, float, int, str]) -> int:
    """
    Convert a price per TiB per month into attoFIL per byte per epoch.

    ``floor(price * 1e18 / (2^40 * epochs_per_month))``, computed exactly.

    Raises:
        ValueError: If the price is negative or not a number
    """
    try:
        price = Decimal(str(price_per_tib_month))
    except InvalidOperation as e:
        raise ValueError(f"price must be a number, got {price_per_tib_month!r}") from e
    if not price.is_finite() or price < 0:
        raise ValueError(f"price must be a non-negative number, got {price_per_tib_month}")
    return int((price * ATTO_PER_FIL) // (BYTES_PER_TIB * EPOCHS_PER_MONTH))


def storage_price_per_epoch(piece_size: int, storage_price: int) -> int:
    """
    Total per-epoch price of a deal.

    ``storage_price`` is attoFIL per epoch per GiB, so the result is
    ``floor(piece_size * storage_price / 2^30)``.
    """
    if storage_price < 0:
        raise ValueError(f"storage_price must be non-negative, got {storage_price}")
    return (piece_size * storage_price) // BYTES_PER_GIB


def collateral_with_margin(bounds: CollateralBounds) -> int:
    """Minimum provider collateral plus a 20% safety margin."""
    return (bounds.min * COLLATERAL_MARGIN_NUMERATOR) // COLLATERAL_MARGIN_DENOMINATOR


class _BoundsSource(Protocol):
    def collateral_bounds(self, piece_size: int, verified: bool) -> CollateralBounds:
        ...


class PricingCalculator:
    """Resolves provider collateral, consulting the chain only when needed."""

    def __init__(self, chain: _BoundsSource):
        self.chain = chain

    def provider_collateral(self, piece_size: int, verified: bool, requested: int = 0) -> int:
        """
        Collateral for the proposal.

        A non-zero ``requested`` value is used verbatim. Otherwise the chain's
        minimum for this piece size is raised by 20%. No upper bound is applied.
        """
        if requested < 0:
            raise ValueError(f"provider collateral must be non-negative, got {requested}")
        if requested:
            return requested

        bounds = self.chain.collateral_bounds(piece_size, verified)
        collateral = collateral_with_margin(bounds)
        logger.debug(f"Collateral bounds min={bounds.min} max={bounds.max}, using {collateral}")
        return collateral

    def price_per_epoch(self, piece_size: int, storage_price: int) -> int:
        return storage_price_per_epoch(piece_size, storage_price)
