# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Card construction, parsing, signing and supersession linking.

A card travels as a :class:`~types.RawSignedModel`: the content snapshot (the
compact JSON of ``identity``, ``previous_card_id``, ``created_at``,
``version`` and ``public_key``) plus a list of detached signatures over it.
This module converts between that wire shape and :class:`~types.Card`,
computes card ids, and links cards that supersede one another.

Signature checking is not done here; see :mod:`verifier`.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from .crypto import CardCrypto
from .snapshot import (
    decode_base64,
    encode_base64,
    parse_snapshot,
    take_snapshot,
    try_parse_extra_fields,
)
from .types import (
    Card,
    CardSignature,
    CardVerificationError,
    ExtraData,
    ParseError,
    RawSignature,
    RawSignedModel,
    ValidationError,
)

CARD_VERSION = "5.0"

# Card ids are the first 32 bytes of the SHA-512 of the content snapshot.
CARD_ID_BYTE_LENGTH = 32

SELF_SIGNER = "self"
AUTHORITY_SIGNER = "virgil"


def generate_card_id(crypto: CardCrypto, snapshot: bytes) -> str:
    """Return the hex card id for a content *snapshot*.

    The same function mints ids for new cards and re-derives the id of a
    received card, so a card's claimed id can always be checked against its
    content.
    """
    fingerprint = crypto.generate_sha512(snapshot)
    if len(fingerprint) < CARD_ID_BYTE_LENGTH * 2:
        raise ValidationError(
            f"generate_card_id: digest must be at least 512 bits, got {len(fingerprint) * 8}"
        )
    return fingerprint[:CARD_ID_BYTE_LENGTH].hex()


def generate_raw_signed_model(
    crypto: CardCrypto,
    *,
    identity: str,
    public_key: Any,
    previous_card_id: str | None = None,
    created_at: datetime | None = None,
) -> RawSignedModel:
    """Build an unsigned :class:`~types.RawSignedModel` for a new card.

    Signatures are attached afterwards with :class:`ModelSigner`.
    """
    if not identity:
        raise ValidationError("generate_raw_signed_model: identity must not be empty")
    if public_key is None:
        raise ValidationError("generate_raw_signed_model: public_key is required")

    now = created_at or datetime.now(tz=timezone.utc)

    # Field order is part of the signed bytes; do not reorder.
    details: dict[str, Any] = {"identity": identity}
    if previous_card_id is not None:
        details["previous_card_id"] = previous_card_id
    details["created_at"] = int(now.timestamp())
    details["version"] = CARD_VERSION
    details["public_key"] = encode_base64(crypto.export_public_key(public_key))

    return RawSignedModel(content_snapshot=take_snapshot(details), signatures=[])


def parse_raw_signed_model(
    crypto: CardCrypto, model: RawSignedModel, is_outdated: bool = False
) -> Card:
    """Decode a :class:`~types.RawSignedModel` into a :class:`~types.Card`.

    The content snapshot is parsed strictly; a signature snapshot that fails
    to parse only yields empty ``extra_fields``.

    Raises
    ------
    ParseError
        If the content snapshot is not a JSON object with the card fields.
    """
    content = parse_snapshot(model.content_snapshot)
    if not isinstance(content, dict):
        raise ParseError(
            f"parse_raw_signed_model: expected JSON object, got {type(content).__name__}"
        )
    missing = {"identity", "public_key", "created_at", "version"} - content.keys()
    if missing:
        raise ParseError(
            f"parse_raw_signed_model: missing required fields: {sorted(missing)}"
        )

    for name in ("identity", "version", "public_key"):
        if not isinstance(content[name], str):
            raise ParseError(f"parse_raw_signed_model: {name!r} must be a string")
    previous_card_id = content.get("previous_card_id")
    if previous_card_id is not None and not isinstance(previous_card_id, str):
        raise ParseError("parse_raw_signed_model: 'previous_card_id' must be a string")

    public_key = crypto.import_public_key(decode_base64(content["public_key"]))

    return Card(
        id=generate_card_id(crypto, model.content_snapshot),
        identity=content["identity"],
        public_key=public_key,
        content_snapshot=model.content_snapshot,
        version=content["version"],
        created_at=_parse_created_at(content["created_at"]),
        signatures=[_to_card_signature(raw) for raw in model.signatures],
        previous_card_id=previous_card_id,
        is_outdated=is_outdated,
    )


def card_to_raw_signed_model(card: Card) -> RawSignedModel:
    """Return the wire form of *card*, reusing its exact content snapshot."""
    return RawSignedModel(
        content_snapshot=card.content_snapshot,
        signatures=[
            RawSignature(signer=s.signer, signature=s.signature, snapshot=s.snapshot)
            for s in card.signatures
        ],
    )


def linked_card_list(cards: Iterable[Card]) -> list[Card]:
    """Link superseded cards to their successors and return the head cards.

    For every card whose ``previous_card_id`` names another card in *cards*,
    the older card is marked outdated and attached as ``previous_card`` of
    the newer one. Only cards that are not superseded within the input are
    returned; older cards stay reachable through ``previous_card``.

    Raises
    ------
    CardVerificationError
        If the ``previous_card_id`` references form a cycle.
    """
    index: dict[str, Card] = {card.id: card for card in cards}

    # Read-only pass: resolve every link before anything is mutated.
    links = [
        (card, index[card.previous_card_id])
        for card in index.values()
        if card.previous_card_id is not None and card.previous_card_id in index
    ]
    _check_acyclic(index)

    superseded: set[str] = set()
    for newer, older in links:
        older.is_outdated = True
        newer.previous_card = older
        superseded.add(older.id)

    return [card for card_id, card in index.items() if card_id not in superseded]


# ------------------------------------------------------------------
# RawSignedModel wire format
# ------------------------------------------------------------------


def raw_signed_model_to_json(model: RawSignedModel) -> dict[str, Any]:
    """Return the JSON-serializable form used by the card service."""
    signatures = []
    for raw in model.signatures:
        entry = {"signer": raw.signer, "signature": encode_base64(raw.signature)}
        if raw.snapshot:
            entry["snapshot"] = encode_base64(raw.snapshot)
        signatures.append(entry)
    return {
        "content_snapshot": encode_base64(model.content_snapshot),
        "signatures": signatures,
    }


def raw_signed_model_from_json(raw: object) -> RawSignedModel:
    """Parse the card service JSON form into a :class:`~types.RawSignedModel`.

    Raises
    ------
    ParseError
        If *raw* is not shaped like a raw signed model.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("content_snapshot"), str):
        raise ParseError(
            "raw_signed_model_from_json: expected an object with a "
            '"content_snapshot" string'
        )

    signatures: list[RawSignature] = []
    for item in raw.get("signatures") or []:
        if not isinstance(item, dict) or "signer" not in item or "signature" not in item:
            raise ParseError(
                "raw_signed_model_from_json: each signature needs signer and signature"
            )
        snapshot = item.get("snapshot")
        signatures.append(
            RawSignature(
                signer=str(item["signer"]),
                signature=decode_base64(item["signature"]),
                snapshot=decode_base64(snapshot) if snapshot else None,
            )
        )

    return RawSignedModel(
        content_snapshot=decode_base64(raw["content_snapshot"]),
        signatures=signatures,
    )


def raw_signed_model_to_string(model: RawSignedModel) -> str:
    """Serialize *model* to base64 of its JSON form."""
    doc = json.dumps(raw_signed_model_to_json(model), separators=(",", ":"))
    return encode_base64(doc.encode("utf-8"))


def raw_signed_model_from_string(encoded: str) -> RawSignedModel:
    """Inverse of :func:`raw_signed_model_to_string`."""
    if not encoded:
        raise ValidationError("raw_signed_model_from_string: string must not be empty")
    return raw_signed_model_from_json(parse_snapshot(decode_base64(encoded)))


# ------------------------------------------------------------------
# Signing
# ------------------------------------------------------------------


class ModelSigner:
    """Appends signatures to a :class:`~types.RawSignedModel`.

    The signed bytes are the content snapshot followed by the snapshot of the
    extra fields, when any are given, so the extra fields are covered by the
    same signature.
    """

    def __init__(self, crypto: CardCrypto) -> None:
        self._crypto = crypto

    def sign(
        self,
        model: RawSignedModel,
        signer_private_key: Any,
        *,
        signer: str = SELF_SIGNER,
        extra_fields: ExtraData | None = None,
    ) -> None:
        """Sign *model* in place as *signer*.

        Raises
        ------
        ValidationError
            If the model or key is missing, or *signer* already signed it.
        """
        if model is None:
            raise ValidationError("ModelSigner.sign: model is required")
        if signer_private_key is None:
            raise ValidationError("ModelSigner.sign: signer_private_key is required")
        signer = signer or SELF_SIGNER
        if any(existing.signer == signer for existing in model.signatures):
            raise ValidationError(
                f"ModelSigner.sign: the model already has a {signer!r} signature"
            )

        extra_snapshot = take_snapshot(extra_fields) if extra_fields is not None else None
        signed = model.content_snapshot + (extra_snapshot or b"")
        signature = self._crypto.generate_signature(signed, signer_private_key)

        model.signatures.append(
            RawSignature(signer=signer, signature=signature, snapshot=extra_snapshot)
        )


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _to_card_signature(raw: RawSignature) -> CardSignature:
    return CardSignature(
        signer=raw.signer,
        signature=raw.signature,
        snapshot=raw.snapshot,
        extra_fields=try_parse_extra_fields(raw.snapshot),
    )


def _parse_created_at(value: object) -> datetime:
    # bool is an int subclass but never a valid timestamp.
    if not isinstance(value, int) or isinstance(value, bool):
        raise ParseError("parse_raw_signed_model: 'created_at' must be an integer")
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ParseError(
            f"parse_raw_signed_model: 'created_at' out of range: {value}"
        ) from exc


def _check_acyclic(index: dict[str, Card]) -> None:
    """Raise if following ``previous_card_id`` inside *index* ever loops."""
    cleared: set[str] = set()
    for start in index:
        path: set[str] = set()
        card_id: str | None = start
        while card_id is not None and card_id in index and card_id not in cleared:
            if card_id in path:
                raise CardVerificationError(
                    f"card supersession cycle detected at card {card_id}"
                )
            path.add(card_id)
            card_id = index[card_id].previous_card_id
        cleared |= path
