"""
Deal protocol negotiation.

Selects a protocol version with the provider, writes one framed request,
reads one framed response and classifies the result. The write-then-read
exchange races a cancellation signal; whichever finishes first decides the
terminal state.

States::

    IDLE -> PEER_CONNECTED -> VERSION_CHECKED -> REQUEST_SENT
         -> AWAITING_RESPONSE -> ACCEPTED | REJECTED
    any step -> TRANSPORT_FAILED | TIMED_OUT

The stream is closed exactly once, whatever the terminal state.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .address import Address
from .codec import decode_outcome, encode_envelope, frame, read_frame
from .deal_types import DealEnvelope, NegotiationOutcome, NegotiationState
from .errors import CodecError, TimedOut, TransportFailed, UnsupportedProtocolError

logger = logging.getLogger(__name__)

__all__ = [
    "DEAL_PROTOCOL_V120",
    "SUPPORTED_PROTOCOLS",
    "PeerStream",
    "PeerConnector",
    "AsyncioPeerStream",
    "StaticPeerConnector",
    "ProtocolNegotiator",
    "select_protocol",
    "protocol_version",
]

DEAL_PROTOCOL_V120 = "/fil/storage/mk/1.2.0"
SUPPORTED_PROTOCOLS: Tuple[str, ...] = (DEAL_PROTOCOL_V120,)

_PROTOCOL_RE = re.compile(r"^/fil/storage/mk/(\d+)\.(\d+)\.(\d+)$")

DEFAULT_MAX_FRAME_SIZE = 1 << 20


@runtime_checkable
class PeerStream(Protocol):
    """An open bidirectional byte stream to the provider."""

    async def write(self, data: bytes) -> None:
        ...

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly ``n`` bytes or raise ``EOFError``."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class PeerConnector(Protocol):
    """Resolves a provider to an open stream plus its advertised protocols."""

    async def connect(self, provider: Address) -> Tuple[PeerStream, List[str]]:
        ...


class AsyncioPeerStream:
    """``PeerStream`` over an asyncio reader/writer pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._closed = False

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def read_exactly(self, n: int) -> bytes:
        return await self.reader.readexactly(n)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing stream: {e}")


class StaticPeerConnector:
    """
    Connects to a provider at a known host and port.

    The peer directory is out of scope, so the caller supplies the network
    location and the protocol list the provider advertises.
    """

    def __init__(self, host: str, port: int, protocols: Sequence[str] = SUPPORTED_PROTOCOLS,
                 connect_timeout_s: float = 10.0):
        self.host = host
        self.port = port
        self.protocols = list(protocols)
        self.connect_timeout_s = connect_timeout_s

    async def connect(self, provider: Address) -> Tuple[PeerStream, List[str]]:
        logger.info(f"Connecting to storage provider {provider} at {self.host}:{self.port}")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.connect_timeout_s
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportFailed(f"failed to connect to peer {provider} at {self.host}:{self.port}: {e}") from e
        return AsyncioPeerStream(reader, writer), list(self.protocols)


def protocol_version(protocol_id: str) -> Optional[Tuple[int, int, int]]:
    """Semantic version of a deal protocol id, or None for other protocols."""
    match = _PROTOCOL_RE.match(protocol_id)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def select_protocol(supported: Iterable[str], advertised: Iterable[str]) -> str:
    """
    Highest deal protocol version both sides speak.

    Raises:
        UnsupportedProtocolError: If there is no common version
    """
    common = [p for p in set(supported) & set(advertised) if protocol_version(p) is not None]
    if not common:
        raise UnsupportedProtocolError(
            f"provider does not support any of {', '.join(sorted(supported))}"
        )
    return max(common, key=protocol_version)


class ProtocolNegotiator:
    """
    One request/response exchange with a provider.

    A negotiator is used for exactly one deal attempt; ``state`` ends in a
    terminal ``NegotiationState``. ``request_sent`` tells whether the request
    frame was fully written. ``write_started`` is set as soon as the write
    begins: from then on the frame may reach the provider even if the write
    never returns, so a timeout after that point counts as sent.
    """

    def __init__(self, supported: Sequence[str] = SUPPORTED_PROTOCOLS,
                 max_frame_size: int = DEFAULT_MAX_FRAME_SIZE):
        self.supported = tuple(supported)
        self.max_frame_size = max_frame_size
        self.state = NegotiationState.IDLE
        self.protocol: Optional[str] = None
        self.write_started = False
        self.request_sent = False

    def _transition(self, state: NegotiationState) -> None:
        logger.debug(f"Negotiation {self.state.value} -> {state.value}")
        self.state = state

    async def negotiate(
        self,
        stream: PeerStream,
        peer_protocols: Sequence[str],
        envelope: DealEnvelope,
        *,
        cancel: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> NegotiationOutcome:
        """
        Run the exchange over ``stream`` and close it.

        Args:
            stream: Open stream to the provider (closed on return)
            peer_protocols: Protocol ids the provider advertises
            envelope: Signed request to send
            cancel: Event that aborts the wait when set
            timeout: Deadline in seconds for the write/read exchange

        Returns:
            The provider's outcome; ``accepted=False`` is a rejection

        Raises:
            UnsupportedProtocolError: No common version; nothing written
            TransportFailed: Write, read or decode failure
            TimedOut: Cancelled or deadline passed before the response was read
            RuntimeError: If this negotiator was already used
        """
        if self.state != NegotiationState.IDLE:
            raise RuntimeError("a negotiator handles a single deal attempt")

        try:
            self._transition(NegotiationState.PEER_CONNECTED)
            try:
                self.protocol = select_protocol(self.supported, peer_protocols)
            except UnsupportedProtocolError:
                self._transition(NegotiationState.TRANSPORT_FAILED)
                raise
            self._transition(NegotiationState.VERSION_CHECKED)
            logger.debug(f"Using protocol {self.protocol}")

            try:
                request = frame(encode_envelope(envelope))
            except CodecError as e:
                self._transition(NegotiationState.TRANSPORT_FAILED)
                raise TransportFailed(f"failed to encode request: {e}") from e

            logger.info(f"About to submit deal proposal {envelope.deal_id}")
            return await self._race(stream, request, cancel, timeout)
        finally:
            await stream.close()

    async def _race(self, stream: PeerStream, request: bytes,
                    cancel: Optional[asyncio.Event], timeout: Optional[float]) -> NegotiationOutcome:
        rpc = asyncio.ensure_future(self._exchange(stream, request))
        waiters = {rpc}
        cancelled = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            rpc.cancel()
            await asyncio.gather(rpc, return_exceptions=True)
            raise
        finally:
            if cancelled is not None and not cancelled.done():
                cancelled.cancel()

        if rpc in done:
            try:
                outcome = rpc.result()
            except TransportFailed:
                self._transition(NegotiationState.TRANSPORT_FAILED)
                raise
            if outcome.accepted:
                self._transition(NegotiationState.ACCEPTED)
            else:
                self._transition(NegotiationState.REJECTED)
                logger.warning(f"Deal proposal rejected: {outcome.message}")
            return outcome

        # Cancellation or deadline won; the request may already be on the wire
        rpc.cancel()
        await asyncio.gather(rpc, return_exceptions=True)
        self._transition(NegotiationState.TIMED_OUT)
        reason = "cancelled" if cancelled is not None and cancelled in done else "deadline exceeded"
        raise TimedOut(
            f"deal negotiation {reason} before a response was read; outcome unknown",
            request_sent=self.request_sent or self.write_started,
        )

    async def _exchange(self, stream: PeerStream, request: bytes) -> NegotiationOutcome:
        self.write_started = True
        try:
            await stream.write(request)
        except (OSError, EOFError) as e:
            logger.error(f"Failed to send deal request: {e}")
            raise TransportFailed(f"failed to send request: {e}") from e

        self.request_sent = True
        self._transition(NegotiationState.REQUEST_SENT)
        self._transition(NegotiationState.AWAITING_RESPONSE)

        try:
            payload = await read_frame(stream, self.max_frame_size)
            return decode_outcome(payload)
        except CodecError as e:
            logger.error(f"Failed to decode deal response: {e}")
            raise TransportFailed(f"failed to read response: {e}", request_sent=True) from e
        except (OSError, EOFError) as e:
            logger.error(f"Failed to read deal response: {e}")
            raise TransportFailed(f"failed to read response: {e}", request_sent=True) from e
