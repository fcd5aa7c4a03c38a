"""Tests for CardVerifier."""

from dataclasses import replace

import pytest

from keycard.cards import (
    AUTHORITY_SIGNER,
    ModelSigner,
    card_to_raw_signed_model,
    generate_raw_signed_model,
    parse_raw_signed_model,
)
from keycard.crypto import generate_key_pair
from keycard.snapshot import encode_base64
from keycard.types import KeycardError, VerifierCredentials
from keycard.verifier import CardVerifier


def public_key_base64(crypto, key_pair) -> str:
    return encode_base64(crypto.export_public_key(key_pair.public_key))


@pytest.fixture
def authority():
    return generate_key_pair()


@pytest.fixture
def signed_card(crypto, authority):
    """Build a card signed by itself, the authority, and optional extra signers."""

    def _build(*extra_signers):
        keys = generate_key_pair()
        model = generate_raw_signed_model(crypto, identity="alice", public_key=keys.public_key)
        signer = ModelSigner(crypto)
        signer.sign(model, keys.private_key)
        signer.sign(model, authority.private_key, signer=AUTHORITY_SIGNER)
        for name, key_pair in extra_signers:
            signer.sign(model, key_pair.private_key, signer=name)
        return parse_raw_signed_model(crypto, model)

    return _build


class TestCardVerifier:

    def test_valid_card(self, crypto, authority, signed_card):
        verifier = CardVerifier(
            crypto, authority_public_key_base64=public_key_base64(crypto, authority)
        )
        assert verifier.verify_card(signed_card()) is True

    def test_default_authority_key_rejects_foreign_authority(self, crypto, signed_card):
        assert CardVerifier(crypto).verify_card(signed_card()) is False

    def test_missing_authority_signature(self, crypto, authority, make_card):
        verifier = CardVerifier(
            crypto, authority_public_key_base64=public_key_base64(crypto, authority)
        )
        card = make_card()
        assert verifier.verify_card(card) is False
        assert CardVerifier(crypto, verify_authority_signature=False).verify_card(card) is True

    def test_tampered_self_signature(self, crypto, authority, signed_card):
        card = signed_card()
        model = card_to_raw_signed_model(card)
        bad = bytearray(model.signatures[0].signature)
        bad[0] ^= 0x01
        model.signatures[0] = replace(model.signatures[0], signature=bytes(bad))
        tampered = parse_raw_signed_model(crypto, model)

        verifier = CardVerifier(
            crypto, authority_public_key_base64=public_key_base64(crypto, authority)
        )
        assert verifier.verify_card(tampered) is False
        assert CardVerifier(
            crypto,
            verify_self_signature=False,
            authority_public_key_base64=public_key_base64(crypto, authority),
        ).verify_card(tampered) is True

    def test_whitelist_satisfied_by_any_member(self, crypto, authority, signed_card):
        backend = generate_key_pair()
        other = generate_key_pair()
        card = signed_card(("backend", backend))
        verifier = CardVerifier(
            crypto,
            authority_public_key_base64=public_key_base64(crypto, authority),
            whitelists=[
                [
                    VerifierCredentials("other", public_key_base64(crypto, other)),
                    VerifierCredentials("backend", public_key_base64(crypto, backend)),
                ]
            ],
        )
        assert verifier.verify_card(card) is True

    def test_whitelist_without_matching_signer(self, crypto, authority, signed_card):
        backend = generate_key_pair()
        verifier = CardVerifier(
            crypto,
            authority_public_key_base64=public_key_base64(crypto, authority),
            whitelists=[[VerifierCredentials("backend", public_key_base64(crypto, backend))]],
        )
        assert verifier.verify_card(signed_card()) is False

    def test_whitelist_with_wrong_key(self, crypto, authority, signed_card):
        card = signed_card(("backend", generate_key_pair()))
        verifier = CardVerifier(
            crypto,
            authority_public_key_base64=public_key_base64(crypto, authority),
            whitelists=[
                [VerifierCredentials("backend", public_key_base64(crypto, generate_key_pair()))]
            ],
        )
        assert verifier.verify_card(card) is False

    @pytest.mark.parametrize("bad_key", ["not base64!", "QUJD"])
    def test_malformed_whitelist_key_fails_on_construction(self, crypto, bad_key):
        with pytest.raises(KeycardError):
            CardVerifier(crypto, whitelists=[[VerifierCredentials("backend", bad_key)]])
