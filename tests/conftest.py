"""Shared fixtures for the keycard test suite."""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone

import pytest

from keycard.cards import ModelSigner, generate_raw_signed_model, parse_raw_signed_model
from keycard.crypto import Ed25519AccessTokenSigner, Ed25519CardCrypto, generate_key_pair
from keycard.jwt import Jwt, JwtBody, JwtHeader
from keycard.types import Card


@pytest.fixture
def crypto() -> Ed25519CardCrypto:
    return Ed25519CardCrypto()


@pytest.fixture
def token_signer() -> Ed25519AccessTokenSigner:
    return Ed25519AccessTokenSigner()


@pytest.fixture
def make_card(crypto):
    """Build a self-signed card, optionally superseding another."""

    def _make(identity: str = "alice", previous_card_id: str | None = None) -> Card:
        keys = generate_key_pair()
        model = generate_raw_signed_model(
            crypto,
            identity=identity,
            public_key=keys.public_key,
            previous_card_id=previous_card_id,
        )
        ModelSigner(crypto).sign(model, keys.private_key)
        return parse_raw_signed_model(crypto, model)

    return _make


def bare_card(card_id: str, previous_card_id: str | None = None) -> Card:
    """A card with an arbitrary id, for linking tests that need cycles."""
    return Card(
        id=card_id,
        identity="alice",
        public_key=None,
        content_snapshot=b"{}",
        version="5.0",
        created_at=datetime.now(tz=timezone.utc),
        previous_card_id=previous_card_id,
    )


def stub_jwt(expires_in: int = 60, identity: str = "alice") -> Jwt:
    """An unsigned-by-anyone token with a controllable expiry."""
    now = int(time.time())
    return Jwt(
        JwtHeader(alg="stub", kid="stub", typ="stub", cty="stub"),
        JwtBody(iss="virgil-app", sub=f"identity-{identity}", iat=now, exp=now + expires_in),
        os.urandom(16),
    )
