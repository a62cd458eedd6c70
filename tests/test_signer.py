"""
Tests for proposal signing and verification.

Covers the encode -> sign -> verify round trip and that tampering with any
single field breaks verification.
"""
from __future__ import annotations

import dataclasses

import pytest

from fildeal.address import new_id_address
from fildeal.codec import encode_proposal
from fildeal.deal_types import SigType
from fildeal.errors import SigningError
from fildeal.keystore import KeystoreCustodian
from fildeal.secp256k1 import load_private_key
from fildeal.signer import (
    KEY_RECOVERY_PAYLOAD,
    KeyCustodian,
    ProposalSigner,
    SignatureVerifier,
    derive_eth_address,
    verify_signed_proposal,
)
from tests.fakes.fake_custodian import (
    BlsCustodian,
    EmptySignatureCustodian,
    FailingCustodian,
    ForeignKeyCustodian,
)
from tests.helpers.samples import make_piece_cid


@pytest.fixture
def proposal(prepared_deal):
    return prepared_deal.signed_proposal.proposal


class TestRoundTrip:
    """Sign and verify."""

    def test_keystore_satisfies_protocols(self, keystore):
        assert isinstance(keystore, KeyCustodian)
        assert isinstance(keystore, SignatureVerifier)

    def test_sign_then_verify(self, keystore, proposal):
        signer = keystore.default_address
        signed = ProposalSigner(keystore).sign(proposal, signer)

        assert signed.proposal is proposal
        assert signed.signature.type == SigType.SECP256K1
        assert verify_signed_proposal(signed, signer, keystore)

    def test_signature_covers_canonical_bytes(self, keystore, proposal):
        signer = keystore.default_address
        signed = ProposalSigner(keystore).sign(proposal, signer)
        assert keystore.verify(signer, encode_proposal(proposal), signed.signature)

    @pytest.mark.parametrize("field, value", [
        ("piece_cid", make_piece_cid(fill=9)),
        ("piece_size", 4096),
        ("verified", False),
        ("provider", new_id_address(2000)),
        ("label", "4321"),
        ("start_epoch", 6761),
        ("end_epoch", 600_000),
        ("storage_price_per_epoch", 7),
        ("provider_collateral", 121),
        ("client_collateral", 1),
    ])
    def test_mutated_field_fails_verification(self, keystore, proposal, field, value):
        signer = keystore.default_address
        signed = ProposalSigner(keystore).sign(proposal, signer)
        tampered = dataclasses.replace(signed, proposal=dataclasses.replace(proposal, **{field: value}))

        assert not verify_signed_proposal(tampered, signer, keystore)

    def test_wrong_signer_fails_verification(self, keystore, proposal):
        signer = keystore.default_address
        other = keystore.generate()
        signed = ProposalSigner(keystore).sign(proposal, signer)

        assert not verify_signed_proposal(signed, other, keystore)


class TestSigningErrors:
    """Custodian failures surface as SigningError."""

    def test_custodian_failure_wrapped(self, keystore, proposal):
        custodian = FailingCustodian()
        with pytest.raises(SigningError, match="wallet sign failed"):
            ProposalSigner(custodian).sign(proposal, keystore.default_address)
        assert custodian.sign_calls == 1

    def test_empty_signature_rejected(self, keystore, proposal):
        with pytest.raises(SigningError, match="no signature"):
            ProposalSigner(EmptySignatureCustodian()).sign(proposal, keystore.default_address)

    def test_uncontrolled_address(self, keystore, proposal):
        with pytest.raises(SigningError, match="not controlled"):
            ProposalSigner(keystore).sign(proposal, new_id_address(5))


class TestDeriveEthAddress:
    """EVM address recovered from a wallet signature."""

    def test_recovery_payload_is_cbor_text(self):
        assert KEY_RECOVERY_PAYLOAD == b"\x65dummy"

    def test_known_key(self):
        custodian = KeystoreCustodian()
        address = custodian.add_key(load_private_key((1).to_bytes(32, "big")))

        assert derive_eth_address(custodian, address) == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    def test_testnet_wallet(self):
        custodian = KeystoreCustodian(network="t")
        address = custodian.add_key(load_private_key((1).to_bytes(32, "big")))

        assert derive_eth_address(custodian, address) == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    def test_same_key_same_address(self, keystore):
        first = derive_eth_address(keystore, keystore.default_address)
        assert first == derive_eth_address(keystore, keystore.default_address)
        assert first.startswith("0x") and len(first) == 42

    def test_custodian_failure_wrapped(self, keystore):
        with pytest.raises(SigningError, match="wallet sign failed"):
            derive_eth_address(FailingCustodian(), keystore.default_address)

    def test_non_secp256k1_signature(self, keystore):
        with pytest.raises(SigningError, match="secp256k1"):
            derive_eth_address(BlsCustodian(), keystore.default_address)

    def test_key_must_belong_to_address(self, keystore):
        other = KeystoreCustodian().generate()
        with pytest.raises(SigningError, match="does not belong"):
            derive_eth_address(ForeignKeyCustodian(keystore), other)
