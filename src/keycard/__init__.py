# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""keycard: client SDK for a public-key card service.

Quickstart
----------
>>> import asyncio
>>> from keycard import (
...     CachingJwtProvider, CardManager, CardVerifier, Ed25519CardCrypto, NewCardParams,
... )
>>> crypto = Ed25519CardCrypto()
>>> manager = CardManager(
...     crypto,
...     CardVerifier(crypto),
...     access_token_provider=CachingJwtProvider(fetch_token_from_backend),
... )
>>> keys = crypto.generate_keys()
>>> card = asyncio.run(manager.publish_card(
...     NewCardParams(private_key=keys.private_key, public_key=keys.public_key)
... ))
>>> cards = asyncio.run(manager.search_cards("alice@example.com"))
>>> asyncio.run(manager.aclose())

Private keys are kept locally with :class:`PrivateKeyStorage`:

>>> storage = PrivateKeyStorage(Ed25519PrivateKeyExporter())
>>> asyncio.run(storage.store("alice", keys.private_key, {"device": "laptop"}))
"""

from .cards import (
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
from .client import CardClient, CardResult, Connection
from .crypto import (
    AccessTokenSigner,
    CardCrypto,
    Ed25519AccessTokenSigner,
    Ed25519CardCrypto,
    Ed25519PrivateKeyExporter,
    PrivateKeyExporter,
)
from .jwt import Jwt, JwtBody, JwtGenerator, JwtHeader, JwtVerifier
from .manager import CardManager
from .providers import (
    CachingJwtProvider,
    CallbackJwtProvider,
    ConstAccessTokenProvider,
    GeneratorJwtProvider,
)
from .snapshot import parse_snapshot, take_snapshot
from .storage import (
    FileSystemStorageAdapter,
    KeyEntryStorage,
    MemoryStorageAdapter,
    PrivateKeyStorage,
)
from .types import (
    Card,
    CardSignature,
    CardVerificationError,
    HttpError,
    InvalidKeyEntryError,
    KeycardError,
    KeyEntry,
    KeyEntryDoesNotExistError,
    KeyEntryExistsError,
    MalformedTokenError,
    NewCardParams,
    ParseError,
    PrivateKeyEntry,
    PrivateKeyExistsError,
    RawSignature,
    RawSignedModel,
    StorageEntryExistsError,
    TokenContext,
    ValidationError,
    VerifierCredentials,
)
from .verifier import CardVerifier

__all__ = [
    # Primary entry points
    "CardManager",
    "CardVerifier",
    "PrivateKeyStorage",
    # Core types
    "Card",
    "CardSignature",
    "RawSignature",
    "RawSignedModel",
    "NewCardParams",
    "TokenContext",
    "KeyEntry",
    "PrivateKeyEntry",
    "VerifierCredentials",
    # Card utilities
    "ModelSigner",
    "generate_card_id",
    "generate_raw_signed_model",
    "parse_raw_signed_model",
    "card_to_raw_signed_model",
    "linked_card_list",
    "raw_signed_model_to_json",
    "raw_signed_model_from_json",
    "raw_signed_model_to_string",
    "raw_signed_model_from_string",
    "take_snapshot",
    "parse_snapshot",
    # Tokens
    "Jwt",
    "JwtHeader",
    "JwtBody",
    "JwtGenerator",
    "JwtVerifier",
    "ConstAccessTokenProvider",
    "CallbackJwtProvider",
    "CachingJwtProvider",
    "GeneratorJwtProvider",
    # Crypto capabilities
    "CardCrypto",
    "AccessTokenSigner",
    "PrivateKeyExporter",
    "Ed25519CardCrypto",
    "Ed25519AccessTokenSigner",
    "Ed25519PrivateKeyExporter",
    # Network and storage collaborators
    "Connection",
    "CardClient",
    "CardResult",
    "KeyEntryStorage",
    "MemoryStorageAdapter",
    "FileSystemStorageAdapter",
    # Exceptions
    "KeycardError",
    "ValidationError",
    "MalformedTokenError",
    "ParseError",
    "PrivateKeyExistsError",
    "CardVerificationError",
    "HttpError",
    "KeyEntryExistsError",
    "KeyEntryDoesNotExistError",
    "InvalidKeyEntryError",
    "StorageEntryExistsError",
]
