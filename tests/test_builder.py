"""
Tests for proposal assembly and the signer-identity label.
"""
from __future__ import annotations

import logging

import pytest

from fildeal.address import new_id_address, parse_address, translate_eth_address
from fildeal.builder import ProposalBuilder, label_from_actor_id
from fildeal.cid import parse_cid
from fildeal.deal_types import EpochWindow
from fildeal.errors import InvalidLabelSourceError, MalformedIdentifierError
from tests.helpers.samples import CONTRACT, PAYLOAD_CID


class TestLabel:
    """Actor id -> label."""

    @pytest.mark.parametrize("actor_id, label", [
        ("f01234", "1234"),
        ("t01234", "1234"),
        ("f00", "0"),
    ])
    def test_prefix_stripped(self, actor_id, label):
        assert label_from_actor_id(actor_id) == label

    def test_accepts_address(self):
        assert label_from_actor_id(new_id_address(99, "t")) == "99"

    @pytest.mark.parametrize("actor_id", ["", "f0", "t"])
    def test_too_short(self, actor_id):
        with pytest.raises(InvalidLabelSourceError, match="too short"):
            label_from_actor_id(actor_id)

    @pytest.mark.parametrize("actor_id", ["f1abc", "x01234", "f4101"])
    def test_wrong_prefix(self, actor_id):
        with pytest.raises(InvalidLabelSourceError, match="expected 'f0' or 't0'"):
            label_from_actor_id(actor_id)


def _build(**overrides):
    kwargs = dict(
        piece_cid=overrides.pop("piece_cid"),
        piece_size=1 << 30,
        verified=True,
        client=translate_eth_address(CONTRACT),
        provider=parse_address("f01000"),
        actor_id="f01234",
        window=EpochWindow(start=6760, end=6760 + 518_400),
        storage_price=3,
        provider_collateral=120,
    )
    kwargs.update(overrides)
    return ProposalBuilder().build(**kwargs)


class TestProposalBuilder:
    """Assembly of proposals."""

    def test_fields(self, piece_cid):
        proposal = _build(piece_cid=piece_cid)

        assert proposal.piece_cid == piece_cid
        assert proposal.label == "1234"
        assert proposal.start_epoch == 6760
        assert proposal.end_epoch == 6760 + 518_400
        assert proposal.storage_price_per_epoch == 3
        assert proposal.provider_collateral == 120
        assert proposal.client_collateral == 0
        assert str(proposal.client).startswith("f410f")

    def test_piece_cid_text_parsed(self, piece_cid):
        assert _build(piece_cid=str(piece_cid)).piece_cid == piece_cid

    def test_malformed_piece_cid(self):
        with pytest.raises(MalformedIdentifierError):
            _build(piece_cid="not-a-cid")

    def test_bad_label_source(self, piece_cid):
        with pytest.raises(InvalidLabelSourceError):
            _build(piece_cid=piece_cid, actor_id="f1")

    def test_non_power_of_two_piece(self, piece_cid):
        with pytest.raises(ValueError, match="power of 2"):
            _build(piece_cid=piece_cid, piece_size=3000)

    def test_empty_window_rejected(self, piece_cid):
        with pytest.raises(ValueError, match="before end_epoch"):
            _build(piece_cid=piece_cid, window=EpochWindow(start=100, end=100))

    def test_warns_on_non_commitment(self, caplog):
        with caplog.at_level(logging.WARNING, logger="fildeal.builder"):
            _build(piece_cid=parse_cid(PAYLOAD_CID))
        assert "not an unsealed piece commitment" in caplog.text

    def test_serialize_is_deterministic(self, piece_cid):
        first = ProposalBuilder.serialize(_build(piece_cid=piece_cid))
        second = ProposalBuilder.serialize(_build(piece_cid=piece_cid))
        assert first == second

    def test_serialize_changes_with_fields(self, piece_cid):
        base = ProposalBuilder.serialize(_build(piece_cid=piece_cid))
        other = ProposalBuilder.serialize(_build(piece_cid=piece_cid, storage_price=4))
        assert base != other
