"""
Piece size helpers.

A piece is the padded, content-addressed unit a provider seals. Its padded
size must be a power of two.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Union

__all__ = ["is_power_of_two", "padded_piece_size_for", "path_size", "CAR_OVERHEAD"]

# Headroom for the CAR header and padding added on top of the raw payload
CAR_OVERHEAD = 256


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


def padded_piece_size_for(raw_size: int) -> int:
    """
    Smallest power of two strictly greater than ``raw_size + CAR_OVERHEAD``.

    Matches the sizing used when a piece is built from a local file or folder.
    """
    if raw_size < 0:
        raise ValueError(f"raw_size must be non-negative, got {raw_size}")
    return 1 << (raw_size + CAR_OVERHEAD).bit_length()


def path_size(path: Union[str, Path]) -> int:
    """
    Total size in bytes of a file, or of every file under a folder.

    Raises:
        FileNotFoundError: If the path does not exist
    """
    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"the provided path does not exist: {path}")

    if root.is_file():
        return root.stat().st_size

    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            total += (Path(dirpath) / name).stat().st_size
    return total
