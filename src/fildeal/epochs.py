"""
Deal epoch resolution.

An epoch is 30 seconds of chain time. The start epoch comes from exactly one
of: a head-relative offset, an explicit epoch, or the default offset from the
current head.
"""
from __future__ import annotations

import logging
from typing import Protocol

from .deal_types import EpochWindow
from .errors import ConflictingStartEpochError

logger = logging.getLogger(__name__)

__all__ = [
    "EpochResolver",
    "check_start_epoch_args",
    "resolve_start_epoch",
    "resolve_epochs",
    "EPOCHS_PER_DAY",
    "DEFAULT_START_OFFSET",
    "DEFAULT_DURATION",
]

EPOCHS_PER_DAY = 2880
DEFAULT_START_OFFSET = 2 * EPOCHS_PER_DAY
DEFAULT_DURATION = 180 * EPOCHS_PER_DAY


def check_start_epoch_args(head_offset: int, explicit_start: int) -> None:
    """Reject the mutually exclusive start-epoch inputs when both are set."""
    if head_offset > 0 and explicit_start > 0:
        raise ConflictingStartEpochError(
            "only one of start-epoch-head-offset or start-epoch can be specified"
        )


def resolve_start_epoch(head: int, head_offset: int = 0, explicit_start: int = 0) -> int:
    check_start_epoch_args(head_offset, explicit_start)
    if head_offset > 0:
        return head + head_offset
    if explicit_start > 0:
        return explicit_start
    return head + DEFAULT_START_OFFSET


def resolve_epochs(head: int, *, head_offset: int = 0, explicit_start: int = 0,
                   duration: int = DEFAULT_DURATION) -> EpochWindow:
    """Start and end epoch; ``duration`` is not re-validated here."""
    start = resolve_start_epoch(head, head_offset, explicit_start)
    return EpochWindow(start=start, end=start + duration)


class _HeadSource(Protocol):
    def chain_head(self) -> int:
        ...


class EpochResolver:
    """Resolves the deal window, reading the chain head only when needed."""

    def __init__(self, chain: _HeadSource):
        self.chain = chain

    def resolve(self, head_offset: int = 0, explicit_start: int = 0,
                duration: int = DEFAULT_DURATION) -> EpochWindow:
        check_start_epoch_args(head_offset, explicit_start)

        if explicit_start > 0:
            window = EpochWindow(start=explicit_start, end=explicit_start + duration)
        else:
            head = self.chain.chain_head()
            window = resolve_epochs(head, head_offset=head_offset, duration=duration)
            logger.debug(f"Chain head {head}, head offset {head_offset}")

        logger.debug(f"Deal window start={window.start} end={window.end}")
        return window
