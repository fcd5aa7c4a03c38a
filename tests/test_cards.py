"""Tests for card ids, parsing, signing and linking."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from keycard.cards import (
    CARD_VERSION,
    ModelSigner,
    card_to_raw_signed_model,
    generate_card_id,
    generate_raw_signed_model,
    linked_card_list,
    parse_raw_signed_model,
    raw_signed_model_from_json,
    raw_signed_model_from_string,
    raw_signed_model_to_json,
    raw_signed_model_to_string,
)
from keycard.crypto import generate_key_pair
from keycard.snapshot import encode_base64, parse_snapshot, take_snapshot
from keycard.types import (
    CardVerificationError,
    ParseError,
    RawSignedModel,
    ValidationError,
)

from .conftest import bare_card


class TestCardId:
    """generate_card_id."""

    def test_known_snapshot(self, crypto):
        snapshot = take_snapshot(
            {"identity": "alice", "public_key": "QUJD", "created_at": 1000, "version": "5.0"}
        )
        assert generate_card_id(crypto, snapshot) == (
            "a2bb51bdfbc59f89f5a8d1b30217bd5ee45688415491c2c110f5c9583ab38608"
        )

    def test_deterministic(self, crypto):
        assert generate_card_id(crypto, b"abc") == generate_card_id(crypto, b"abc")
        assert generate_card_id(crypto, b"abc") != generate_card_id(crypto, b"abd")

    def test_is_64_hex_chars(self, crypto):
        card_id = generate_card_id(crypto, b"{}")
        assert len(card_id) == 64
        int(card_id, 16)


class TestGenerateAndParse:
    """generate_raw_signed_model / parse_raw_signed_model."""

    def test_content_fields(self, crypto):
        keys = generate_key_pair()
        created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        model = generate_raw_signed_model(
            crypto,
            identity="alice",
            public_key=keys.public_key,
            previous_card_id="ab" * 32,
            created_at=created,
        )
        content = parse_snapshot(model.content_snapshot)
        assert list(content) == [
            "identity", "previous_card_id", "created_at", "version", "public_key",
        ]
        assert content["created_at"] == int(created.timestamp())
        assert content["version"] == CARD_VERSION
        assert model.signatures == []

    def test_previous_card_id_omitted_when_absent(self, crypto):
        model = generate_raw_signed_model(
            crypto, identity="alice", public_key=generate_key_pair().public_key
        )
        assert "previous_card_id" not in parse_snapshot(model.content_snapshot)

    def test_empty_identity_rejected(self, crypto):
        with pytest.raises(ValidationError):
            generate_raw_signed_model(
                crypto, identity="", public_key=generate_key_pair().public_key
            )

    def test_parse_populates_card(self, crypto):
        keys = generate_key_pair()
        model = generate_raw_signed_model(crypto, identity="bob", public_key=keys.public_key)
        ModelSigner(crypto).sign(model, keys.private_key, extra_fields={"device": "phone"})

        card = parse_raw_signed_model(crypto, model, is_outdated=True)

        assert card.identity == "bob"
        assert card.id == generate_card_id(crypto, model.content_snapshot)
        assert card.version == CARD_VERSION
        assert card.is_outdated is True
        assert card.previous_card_id is None
        assert crypto.export_public_key(card.public_key) == crypto.export_public_key(
            keys.public_key
        )
        assert card.signatures[0].signer == "self"
        assert card.signatures[0].extra_fields == {"device": "phone"}

    def test_invalid_signature_snapshot_yields_empty_extra_fields(self, make_card, crypto):
        model = card_to_raw_signed_model(make_card())
        model.signatures[0] = replace(model.signatures[0], snapshot=b"not json")
        card = parse_raw_signed_model(crypto, model)
        assert card.signatures[0].extra_fields == {}

    def test_non_object_content_rejected(self, crypto):
        with pytest.raises(ParseError):
            parse_raw_signed_model(crypto, RawSignedModel(content_snapshot=b"[1]", signatures=[]))

    def test_missing_field_rejected(self, crypto):
        snapshot = take_snapshot({"identity": "alice", "version": "5.0"})
        model = RawSignedModel(content_snapshot=snapshot, signatures=[])
        with pytest.raises(ParseError):
            parse_raw_signed_model(crypto, model)

    @pytest.mark.parametrize(
        "override",
        [
            {"created_at": "yesterday"},
            {"created_at": 10**20},
            {"created_at": True},
            {"created_at": 1.5},
            {"public_key": 123},
            {"public_key": "not base64!"},
            {"identity": ["alice"]},
            {"version": 5},
            {"previous_card_id": 42},
        ],
    )
    def test_wrongly_typed_field_rejected(self, crypto, override):
        content = {
            "identity": "alice",
            "created_at": 1000,
            "version": "5.0",
            "public_key": encode_base64(
                crypto.export_public_key(generate_key_pair().public_key)
            ),
        }
        content.update(override)
        model = RawSignedModel(content_snapshot=take_snapshot(content), signatures=[])
        with pytest.raises(ParseError):
            parse_raw_signed_model(crypto, model)

    @pytest.mark.parametrize("signature", [123, None, ["AAAA"]])
    def test_wrongly_typed_signature_rejected(self, signature):
        raw = {
            "content_snapshot": "e30=",
            "signatures": [{"signer": "self", "signature": signature}],
        }
        with pytest.raises(ParseError):
            raw_signed_model_from_json(raw)

    def test_export_keeps_snapshot(self, make_card):
        card = make_card()
        model = card_to_raw_signed_model(card)
        assert model.content_snapshot is card.content_snapshot
        assert [s.signature for s in model.signatures] == [
            s.signature for s in card.signatures
        ]


class TestModelSigner:
    """ModelSigner.sign."""

    def test_signature_covers_extra_fields(self, crypto):
        keys = generate_key_pair()
        model = generate_raw_signed_model(crypto, identity="alice", public_key=keys.public_key)
        ModelSigner(crypto).sign(model, keys.private_key, extra_fields={"a": "b"})

        signature = model.signatures[0]
        assert signature.snapshot == b'{"a":"b"}'
        assert crypto.verify_signature(
            model.content_snapshot + signature.snapshot, signature.signature, keys.public_key
        )
        assert not crypto.verify_signature(
            model.content_snapshot, signature.signature, keys.public_key
        )

    def test_duplicate_signer_rejected(self, crypto):
        keys = generate_key_pair()
        model = generate_raw_signed_model(crypto, identity="alice", public_key=keys.public_key)
        signer = ModelSigner(crypto)
        signer.sign(model, keys.private_key)
        with pytest.raises(ValidationError):
            signer.sign(model, keys.private_key)

    def test_custom_signer_name(self, crypto):
        keys = generate_key_pair()
        model = generate_raw_signed_model(crypto, identity="alice", public_key=keys.public_key)
        ModelSigner(crypto).sign(model, keys.private_key)
        ModelSigner(crypto).sign(model, generate_key_pair().private_key, signer="backend")
        assert [s.signer for s in model.signatures] == ["self", "backend"]


class TestLinkedCardList:
    """linked_card_list."""

    def test_chain_returns_head(self, make_card):
        first = make_card()
        second = make_card(previous_card_id=first.id)
        third = make_card(previous_card_id=second.id)

        result = linked_card_list([first, third, second])

        assert result == [third]
        assert third.is_outdated is False
        assert third.previous_card is second
        assert second.previous_card is first
        assert second.is_outdated is True
        assert first.is_outdated is True
        assert first.previous_card is None

    def test_unrelated_cards_unchanged(self, make_card):
        cards = [make_card("alice"), make_card("bob")]
        result = linked_card_list(cards)
        assert result == cards
        assert all(not card.is_outdated and card.previous_card is None for card in result)

    def test_missing_predecessor_is_ignored(self):
        card = bare_card("a", previous_card_id="not-in-input")
        assert linked_card_list([card]) == [card]
        assert card.previous_card is None
        assert card.is_outdated is False

    def test_empty(self):
        assert linked_card_list([]) == []

    def test_cycle_raises(self):
        cards = [bare_card("a", "b"), bare_card("b", "c"), bare_card("c", "a")]
        with pytest.raises(CardVerificationError):
            linked_card_list(cards)
        # Nothing was mutated before the cycle was found.
        assert all(not card.is_outdated and card.previous_card is None for card in cards)

    def test_self_reference_raises(self):
        with pytest.raises(CardVerificationError):
            linked_card_list([bare_card("a", "a")])


class TestWireFormat:
    """JSON and string forms of a raw signed model."""

    def test_json_shape(self, make_card):
        model = card_to_raw_signed_model(make_card())
        doc = raw_signed_model_to_json(model)
        assert set(doc) == {"content_snapshot", "signatures"}
        assert doc["signatures"][0]["signer"] == "self"
        assert "snapshot" not in doc["signatures"][0]

    def test_string_preserves_card_id(self, make_card, crypto):
        card = make_card()
        encoded = raw_signed_model_to_string(card_to_raw_signed_model(card))
        restored = parse_raw_signed_model(crypto, raw_signed_model_from_string(encoded))
        assert restored.id == card.id
        assert restored.signatures[0].signature == card.signatures[0].signature

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            [],
            {"signatures": []},
            {"content_snapshot": "e30=", "signatures": [{"signer": "self"}]},
        ],
    )
    def test_from_json_rejects_bad_shapes(self, raw):
        with pytest.raises(ParseError):
            raw_signed_model_from_json(raw)

    def test_from_string_rejects_empty(self):
        with pytest.raises(ValidationError):
            raw_signed_model_from_string("")
