"""
Deal negotiation error classes.

Provides a clear taxonomy of the failures a deal attempt can end in. Every
error says whether the attempt may be retried from scratch, and errors
raised around the wire exchange say whether the request had already been
written to the provider.
"""
from __future__ import annotations


class DealError(Exception):
    """
    Base class for all deal negotiation errors.

    Attributes:
        retry_safe: True when a fresh attempt (new proposal, new stream)
            cannot create a duplicate deal.
    """
    retry_safe: bool = True


class ConflictingStartEpochError(DealError):
    """
    Both a head-relative start offset and an explicit start epoch were given.

    Raised before any chain or network activity.
    """
    pass


class MalformedIdentifierError(DealError, ValueError):
    """
    A piece or data-root content identifier failed to parse.

    Raised before signing.
    """
    pass


class InvalidAddressError(MalformedIdentifierError):
    """
    A chain address (provider, wallet, contract) failed to parse.
    """
    pass


class InvalidLabelSourceError(DealError, ValueError):
    """
    The signer's actor id is too short or lacks an ``f0``/``t0`` prefix.

    Raised before signing.
    """
    pass


class SigningError(DealError):
    """
    The key custodian could not sign the proposal.

    Raised when:
    - the custodian is unreachable
    - the signer address is not controlled by the custodian
    No request is ever sent without a signature.
    """
    pass


class ChainReadError(DealError):
    """
    The chain reader failed or returned a result that does not decode.
    """
    pass


class CodecError(DealError, ValueError):
    """
    A wire message could not be encoded or decoded.
    """
    pass


class ExchangeError(DealError):
    """
    Base for failures around the wire exchange.

    Attributes:
        request_sent: Whether the request frame was fully written.
    """

    def __init__(self, message: str, *, request_sent: bool = False):
        super().__init__(message)
        self.request_sent = request_sent


class UnsupportedProtocolError(ExchangeError):
    """
    The peer advertises no protocol version this client speaks.

    Raised before anything is written to the stream.
    """
    pass


class TransportFailed(ExchangeError):
    """
    Write, read or decode failure on the deal stream.

    Fatal for this attempt. A fresh proposal on a fresh stream is safe.
    """
    pass


class TimedOut(ExchangeError):
    """
    The cancellation signal or deadline fired before the response was read.

    The outcome is unknown: the provider may have accepted the deal.
    Callers must reconcile out of band before retrying.
    ``request_sent`` is True as soon as the request write began, since a
    buffered frame can reach the provider even if the write never returned.
    """

    @property
    def retry_safe(self) -> bool:  # type: ignore[override]
        return not self.request_sent


__all__ = [
    "DealError",
    "ConflictingStartEpochError",
    "MalformedIdentifierError",
    "InvalidAddressError",
    "InvalidLabelSourceError",
    "SigningError",
    "ChainReadError",
    "CodecError",
    "ExchangeError",
    "UnsupportedProtocolError",
    "TransportFailed",
    "TimedOut",
]
