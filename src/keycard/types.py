# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Shared value types and the error set for the keycard Python SDK."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

# Extra signed metadata attached to a card signature or a token.
ExtraData = Mapping[str, Any]

KeyMeta = Mapping[str, str]


@dataclass(frozen=True)
class RawSignature:
    """A single signature as carried by a :class:`RawSignedModel`."""

    signer: str
    # Raw signature bytes.
    signature: bytes
    # UTF-8 JSON of the extra fields covered by this signature.
    snapshot: bytes | None = None


@dataclass
class RawSignedModel:
    """Wire representation of a card: content snapshot plus its signatures.

    The JSON / string forms live in :mod:`cards`; this is the in-memory shape
    with binary fields kept as bytes.
    """

    content_snapshot: bytes
    signatures: list[RawSignature] = field(default_factory=list)


@dataclass(frozen=True)
class CardSignature:
    """A verified-or-not signature attached to a :class:`Card`."""

    signer: str
    signature: bytes
    snapshot: bytes | None = None
    extra_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Card:
    """Identity record binding a public key to an identity string.

    Two cards are the same entity iff their ``id`` values match.
    ``previous_card`` and ``is_outdated`` are only ever set by
    :func:`cards.linked_card_list`.
    """

    id: str
    identity: str
    public_key: Any
    content_snapshot: bytes
    version: str
    created_at: datetime
    signatures: list[CardSignature] = field(default_factory=list)
    previous_card_id: str | None = None
    previous_card: Card | None = None
    is_outdated: bool = False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(frozen=True)
class NewCardParams:
    """Parameters for building and self-signing a new card."""

    private_key: Any
    public_key: Any
    identity: str | None = None
    previous_card_id: str | None = None
    extra_fields: ExtraData | None = None


@dataclass(frozen=True)
class TokenContext:
    """Describes the operation an access token is requested for."""

    operation: str
    identity: str | None = None
    # Asks caching providers to skip their cache.
    force_reload: bool = False


@dataclass(frozen=True)
class KeyEntry:
    """A named value persisted by :class:`storage.KeyEntryStorage`."""

    name: str
    value: bytes
    creation_date: datetime
    modification_date: datetime
    meta: dict[str, str] | None = None


@dataclass(frozen=True)
class PrivateKeyEntry:
    """A private key loaded from :class:`storage.PrivateKeyStorage`."""

    private_key: Any
    meta: dict[str, str] | None = None


@dataclass(frozen=True)
class VerifierCredentials:
    """A signer id and the base64 public key that must verify its signature."""

    signer: str
    public_key_base64: str


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class KeycardError(Exception):
    """Common base of every error raised by this package.

    ``code`` discriminates the error kind and defaults to the class name.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.message = message
        self.code = code or type(self).__name__
        super().__init__(message)


class ValidationError(KeycardError, ValueError):
    """Raised synchronously for bad constructor or call arguments."""


class MalformedTokenError(KeycardError):
    """Raised when a token string cannot be parsed into a :class:`jwt.Jwt`."""


class ParseError(KeycardError):
    """Raised when snapshot bytes are not valid UTF-8 JSON."""


class PrivateKeyExistsError(KeycardError):
    """Raised when storing a private key under a name that is already taken."""


class CardVerificationError(KeycardError):
    """Raised when a card received from the network or imported fails checks."""


class KeyEntryExistsError(KeycardError):
    """Raised by :class:`storage.KeyEntryStorage` on a duplicate entry name."""


class KeyEntryDoesNotExistError(KeycardError):
    """Raised when updating a key entry that was never saved."""


class InvalidKeyEntryError(KeycardError):
    """Raised when a persisted key entry cannot be decoded."""


class StorageEntryExistsError(KeycardError):
    """Raised by storage adapters when ``store`` hits an existing key."""


class HttpError(KeycardError):
    """Raised when the card service returns a non-2xx response."""

    def __init__(
        self,
        status_code: int,
        endpoint: str,
        message: str,
        *,
        error_code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.error_code = error_code
        super().__init__(f"HttpError [{status_code}] {endpoint}: {message}")
        # Keep the server's message unadorned for callers.
        self.message = message
