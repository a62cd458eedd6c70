"""
Tests for the deal protocol negotiator.

Drives the state machine over a write-counting fake stream: version
selection, accepted and rejected outcomes, transport failures, and the
race between the exchange and cancellation or the deadline.
"""
from __future__ import annotations

import asyncio

import pytest

from fildeal.codec import decode_envelope, frame
from fildeal.deal_types import NegotiationState
from fildeal.errors import TimedOut, TransportFailed, UnsupportedProtocolError
from fildeal.negotiator import (
    DEAL_PROTOCOL_V120,
    ProtocolNegotiator,
    protocol_version,
    select_protocol,
)
from fildeal.varint import decode_uvarint
from tests.fakes.fake_stream import FakePeerStream, response_frame


def _negotiate(negotiator, stream, envelope, protocols=(DEAL_PROTOCOL_V120,), **kwargs):
    return asyncio.run(negotiator.negotiate(stream, list(protocols), envelope, **kwargs))


class TestProtocolSelection:
    """Version matching."""

    def test_protocol_version(self):
        assert protocol_version(DEAL_PROTOCOL_V120) == (1, 2, 0)
        assert protocol_version("/ipfs/ping/1.0.0") is None

    def test_exact_match(self):
        assert select_protocol([DEAL_PROTOCOL_V120], [DEAL_PROTOCOL_V120]) == DEAL_PROTOCOL_V120

    def test_highest_common_version(self):
        supported = ["/fil/storage/mk/1.2.0", "/fil/storage/mk/1.10.0"]
        advertised = ["/fil/storage/mk/1.1.0", "/fil/storage/mk/1.2.0", "/fil/storage/mk/1.10.0"]
        assert select_protocol(supported, advertised) == "/fil/storage/mk/1.10.0"

    def test_no_common_version(self):
        with pytest.raises(UnsupportedProtocolError):
            select_protocol([DEAL_PROTOCOL_V120], ["/fil/storage/mk/1.1.0"])


class TestNegotiationOutcomes:
    """Terminal outcomes of a single attempt."""

    def test_empty_peer_protocols(self, prepared_deal):
        """No common version: fails fast, writes nothing, still closes the stream."""
        stream = FakePeerStream(response=response_frame(True))
        negotiator = ProtocolNegotiator()

        with pytest.raises(UnsupportedProtocolError) as exc_info:
            _negotiate(negotiator, stream, prepared_deal.envelope, protocols=())

        assert stream.write_count == 0
        assert stream.close_count == 1
        assert negotiator.state == NegotiationState.TRANSPORT_FAILED
        assert exc_info.value.request_sent is False
        assert exc_info.value.retry_safe is True

    def test_accepted(self, prepared_deal):
        stream = FakePeerStream(response=response_frame(True))
        negotiator = ProtocolNegotiator()

        outcome = _negotiate(negotiator, stream, prepared_deal.envelope)

        assert outcome.accepted is True
        assert negotiator.state == NegotiationState.ACCEPTED
        assert negotiator.protocol == DEAL_PROTOCOL_V120
        assert negotiator.request_sent is True
        assert stream.write_count == 1
        assert stream.close_count == 1

    def test_request_is_framed_envelope(self, prepared_deal):
        stream = FakePeerStream(response=response_frame(True))
        _negotiate(ProtocolNegotiator(), stream, prepared_deal.envelope)

        length, offset = decode_uvarint(stream.written)
        body = stream.written[offset:]
        assert length == len(body)
        assert decode_envelope(body) == prepared_deal.envelope

    def test_rejected_is_an_outcome(self, prepared_deal):
        """A rejection is returned, not raised."""
        stream = FakePeerStream(response=response_frame(False, "insufficient collateral"))
        negotiator = ProtocolNegotiator()

        outcome = _negotiate(negotiator, stream, prepared_deal.envelope)

        assert outcome.accepted is False
        assert outcome.message == "insufficient collateral"
        assert negotiator.state == NegotiationState.REJECTED
        assert stream.close_count == 1

    def test_negotiator_is_single_use(self, prepared_deal):
        negotiator = ProtocolNegotiator()
        _negotiate(negotiator, FakePeerStream(response=response_frame(True)), prepared_deal.envelope)

        with pytest.raises(RuntimeError, match="single deal attempt"):
            _negotiate(negotiator, FakePeerStream(response=response_frame(True)), prepared_deal.envelope)


class TestTransportFailures:
    """Write, read and decode failures."""

    def test_write_failure(self, prepared_deal):
        stream = FakePeerStream(write_error=ConnectionResetError("reset by peer"))
        negotiator = ProtocolNegotiator()

        with pytest.raises(TransportFailed) as exc_info:
            _negotiate(negotiator, stream, prepared_deal.envelope)

        assert exc_info.value.request_sent is False
        assert exc_info.value.retry_safe is True
        assert negotiator.state == NegotiationState.TRANSPORT_FAILED
        assert stream.close_count == 1

    def test_peer_closes_before_responding(self, prepared_deal):
        stream = FakePeerStream(response=b"")
        negotiator = ProtocolNegotiator()

        with pytest.raises(TransportFailed) as exc_info:
            _negotiate(negotiator, stream, prepared_deal.envelope)

        assert exc_info.value.request_sent is True
        assert negotiator.state == NegotiationState.TRANSPORT_FAILED
        assert stream.close_count == 1

    def test_truncated_response(self, prepared_deal):
        stream = FakePeerStream(response=b"\x05ab")
        with pytest.raises(TransportFailed, match="failed to read response"):
            _negotiate(ProtocolNegotiator(), stream, prepared_deal.envelope)

    def test_undecodable_response(self, prepared_deal):
        stream = FakePeerStream(response=frame(b"\xff\xff"))
        with pytest.raises(TransportFailed):
            _negotiate(ProtocolNegotiator(), stream, prepared_deal.envelope)

    def test_oversized_response(self, prepared_deal):
        stream = FakePeerStream(response=frame(b"\x00" * 100))
        with pytest.raises(TransportFailed, match="exceeds limit"):
            _negotiate(ProtocolNegotiator(max_frame_size=16), stream, prepared_deal.envelope)


class TestCancellation:
    """The exchange races cancellation and the deadline."""

    def test_cancel_before_response(self, prepared_deal):
        """Cancelling while awaiting the response: TimedOut, stream closed once."""
        stream = FakePeerStream(block_read=True)
        negotiator = ProtocolNegotiator()

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            return await negotiator.negotiate(
                stream, [DEAL_PROTOCOL_V120], prepared_deal.envelope, cancel=cancel
            )

        with pytest.raises(TimedOut, match="cancelled") as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.request_sent is True
        assert exc_info.value.retry_safe is False
        assert negotiator.state == NegotiationState.TIMED_OUT
        assert stream.close_count == 1

    def test_deadline_exceeded(self, prepared_deal):
        stream = FakePeerStream(block_read=True)
        negotiator = ProtocolNegotiator()

        with pytest.raises(TimedOut, match="deadline exceeded"):
            _negotiate(negotiator, stream, prepared_deal.envelope, timeout=0.05)

        assert negotiator.state == NegotiationState.TIMED_OUT
        assert stream.close_count == 1

    def test_response_wins_over_late_cancel(self, prepared_deal):
        stream = FakePeerStream(response=response_frame(True))

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(5, cancel.set)
            return await ProtocolNegotiator().negotiate(
                stream, [DEAL_PROTOCOL_V120], prepared_deal.envelope, cancel=cancel
            )

        assert asyncio.run(scenario()).accepted is True
        assert stream.close_count == 1

    def test_deadline_while_write_drains(self, prepared_deal):
        """The frame is already buffered when the deadline fires: treated as sent."""
        stream = FakePeerStream(block_write=True)
        negotiator = ProtocolNegotiator()

        with pytest.raises(TimedOut, match="deadline exceeded") as exc_info:
            _negotiate(negotiator, stream, prepared_deal.envelope, timeout=0.05)

        assert stream.write_count == 1
        assert negotiator.write_started is True
        assert negotiator.request_sent is False
        assert exc_info.value.request_sent is True
        assert exc_info.value.retry_safe is False
        assert negotiator.state == NegotiationState.TIMED_OUT
        assert stream.close_count == 1

    def test_cancel_while_write_drains(self, prepared_deal):
        stream = FakePeerStream(block_write=True)
        negotiator = ProtocolNegotiator()

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            return await negotiator.negotiate(
                stream, [DEAL_PROTOCOL_V120], prepared_deal.envelope, cancel=cancel
            )

        with pytest.raises(TimedOut, match="cancelled") as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.retry_safe is False
        assert stream.close_count == 1

    def test_outer_task_cancelled(self, prepared_deal):
        """Cancelling the caller's task reaps the exchange and still closes the stream."""
        stream = FakePeerStream(block_read=True)
        negotiator = ProtocolNegotiator()

        async def scenario():
            task = asyncio.ensure_future(
                negotiator.negotiate(stream, [DEAL_PROTOCOL_V120], prepared_deal.envelope)
            )
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return {t for t in asyncio.all_tasks() if t is not asyncio.current_task()}

        assert asyncio.run(scenario()) == set()
        assert stream.close_count == 1
