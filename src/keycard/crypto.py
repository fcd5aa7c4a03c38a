# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Cryptographic capability interfaces and an Ed25519 backend.

The SDK core never touches key material directly. It calls through three
capability protocols:

``CardCrypto``
    Signing, verification, SHA-512 fingerprints and public key import/export
    for cards.
``AccessTokenSigner``
    Signing and verifying the ``header.payload`` bytes of access tokens.
``PrivateKeyExporter``
    Converting private keys to and from bytes for persistent storage.

Any object that satisfies these protocols can be plugged in. The
:class:`Ed25519CardCrypto`, :class:`Ed25519AccessTokenSigner` and
:class:`Ed25519PrivateKeyExporter` classes implement them on top of the
``cryptography`` package, with keys exchanged as DER (SubjectPublicKeyInfo
for public keys, PKCS#8 for private keys).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .types import ValidationError

# Algorithm name written into the ``alg`` header of generated tokens.
ED25519_ALGORITHM = "VEDS512"


@runtime_checkable
class CardCrypto(Protocol):
    """Operations the card model needs from a crypto backend."""

    def generate_signature(self, data: bytes, private_key: Any) -> bytes: ...

    def verify_signature(self, data: bytes, signature: bytes, public_key: Any) -> bool: ...

    def generate_sha512(self, data: bytes) -> bytes: ...

    def import_public_key(self, public_key_bytes: bytes) -> Any: ...

    def export_public_key(self, public_key: Any) -> bytes: ...


@runtime_checkable
class AccessTokenSigner(Protocol):
    """Signs and verifies access token bytes."""

    def get_algorithm(self) -> str: ...

    def generate_token_signature(self, token_bytes: bytes, private_key: Any) -> bytes: ...

    def verify_token_signature(
        self, token_bytes: bytes, signature: bytes, public_key: Any
    ) -> bool: ...


@runtime_checkable
class PrivateKeyExporter(Protocol):
    """Moves private keys to and from their byte representation."""

    def export_private_key(self, private_key: Any) -> bytes: ...

    def import_private_key(self, private_key_bytes: bytes) -> Any: ...


@dataclass(frozen=True)
class KeyPair:
    private_key: Ed25519PrivateKey
    public_key: Ed25519PublicKey


def generate_key_pair() -> KeyPair:
    """Generate a fresh Ed25519 key pair."""
    private_key = Ed25519PrivateKey.generate()
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


class Ed25519CardCrypto:
    """:class:`CardCrypto` backed by Ed25519 and SHA-512."""

    def generate_keys(self) -> KeyPair:
        return generate_key_pair()

    def generate_signature(self, data: bytes, private_key: Ed25519PrivateKey) -> bytes:
        _require_private_key(private_key)
        return private_key.sign(data)

    def verify_signature(
        self, data: bytes, signature: bytes, public_key: Ed25519PublicKey
    ) -> bool:
        return _verify(data, signature, public_key)

    def generate_sha512(self, data: bytes) -> bytes:
        return hashlib.sha512(data).digest()

    def import_public_key(self, public_key_bytes: bytes) -> Ed25519PublicKey:
        return _load_public_key(public_key_bytes)

    def export_public_key(self, public_key: Ed25519PublicKey) -> bytes:
        return _dump_public_key(public_key)


class Ed25519AccessTokenSigner:
    """:class:`AccessTokenSigner` backed by Ed25519."""

    def get_algorithm(self) -> str:
        return ED25519_ALGORITHM

    def generate_token_signature(
        self, token_bytes: bytes, private_key: Ed25519PrivateKey
    ) -> bytes:
        _require_private_key(private_key)
        return private_key.sign(token_bytes)

    def verify_token_signature(
        self, token_bytes: bytes, signature: bytes, public_key: Ed25519PublicKey
    ) -> bool:
        return _verify(token_bytes, signature, public_key)


class Ed25519PrivateKeyExporter:
    """:class:`PrivateKeyExporter` using unencrypted PKCS#8 DER."""

    def export_private_key(self, private_key: Ed25519PrivateKey) -> bytes:
        _require_private_key(private_key)
        return private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def import_private_key(self, private_key_bytes: bytes) -> Ed25519PrivateKey:
        try:
            key = serialization.load_der_private_key(private_key_bytes, password=None)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise ValidationError(f"import_private_key: invalid key data: {exc}") from exc
        if not isinstance(key, Ed25519PrivateKey):
            raise ValidationError(
                f"import_private_key: expected an Ed25519 key, got {type(key).__name__}"
            )
        return key


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _require_private_key(private_key: object) -> None:
    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValidationError(
            f"expected an Ed25519 private key, got {type(private_key).__name__}"
        )


def _verify(data: bytes, signature: bytes, public_key: Ed25519PublicKey) -> bool:
    if not isinstance(public_key, Ed25519PublicKey):
        raise ValidationError(
            f"expected an Ed25519 public key, got {type(public_key).__name__}"
        )
    try:
        public_key.verify(signature, data)
        return True
    except InvalidSignature:
        return False


def _load_public_key(public_key_bytes: bytes) -> Ed25519PublicKey:
    # Raw 32-byte keys are accepted alongside DER.
    try:
        if len(public_key_bytes) == 32:
            return Ed25519PublicKey.from_public_bytes(public_key_bytes)
        key = serialization.load_der_public_key(public_key_bytes)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValidationError(f"import_public_key: invalid key data: {exc}") from exc
    if not isinstance(key, Ed25519PublicKey):
        raise ValidationError(
            f"import_public_key: expected an Ed25519 key, got {type(key).__name__}"
        )
    return key


def _dump_public_key(public_key: Ed25519PublicKey) -> bytes:
    if not isinstance(public_key, Ed25519PublicKey):
        raise ValidationError(
            f"export_public_key: expected an Ed25519 public key, "
            f"got {type(public_key).__name__}"
        )
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
