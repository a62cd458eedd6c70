"""
Tests for CLI output formatting.

The deal receipt prints the same lines with or without rich installed.
"""
from __future__ import annotations

import dataclasses

import pytest

from fildeal.client import DealReceipt
from fildeal.deal_types import NegotiationOutcome
from fildeal.negotiator import DEAL_PROTOCOL_V120
from fildeal.operations import printers
from fildeal.operations.printers import format_fil, print_deal_receipt


@pytest.fixture
def receipt(prepared_deal):
    outcome = NegotiationOutcome(accepted=True, message="see [docs]")
    return DealReceipt(deal=prepared_deal, outcome=outcome, protocol=DEAL_PROTOCOL_V120)


def _expected_lines(receipt):
    proposal = receipt.deal.signed_proposal.proposal
    return [
        f"  deal uuid: {receipt.deal.deal_id}",
        f"  storage provider: {receipt.deal.provider}",
        f"  commp: {proposal.piece_cid}",
        f"  start epoch: {proposal.start_epoch}",
        "  url: https://data.example.com/piece.car",
        "  provider message: see [docs]",
    ]


class TestPrintDealReceipt:

    def test_plain_text(self, monkeypatch, capsys, receipt):
        monkeypatch.setattr(printers, "_RICH", False)
        print_deal_receipt(receipt)

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "sent deal proposal"
        for line in _expected_lines(receipt):
            assert line in lines

    def test_rich(self, capsys, receipt):
        pytest.importorskip("rich")
        if not printers._RICH:
            pytest.skip("rich not importable by printers")
        print_deal_receipt(receipt)

        lines = [line.rstrip() for line in capsys.readouterr().out.splitlines()]
        assert lines[0] == "sent deal proposal"
        for line in _expected_lines(receipt):
            assert line in lines

    def test_offline_has_no_url(self, monkeypatch, capsys, receipt):
        monkeypatch.setattr(printers, "_RICH", False)
        envelope = dataclasses.replace(receipt.deal.envelope, is_offline=True, transfer=None)
        offline = dataclasses.replace(receipt, deal=dataclasses.replace(receipt.deal, envelope=envelope))

        print_deal_receipt(offline)

        out = capsys.readouterr().out
        assert out.startswith("sent deal proposal for offline deal")
        assert "url:" not in out


class TestFormatFil:

    @pytest.mark.parametrize("atto, text", [
        (0, "0 FIL"),
        (10 ** 18, "1 FIL"),
        (12 * 10 ** 17, "1.2 FIL"),
        (500 * 10 ** 12, "500 μFIL"),
        (120, "120 aFIL"),
    ])
    def test_units(self, atto, text):
        assert format_fil(atto) == text
