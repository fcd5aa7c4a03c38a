# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Card manager: create, publish, fetch, import and export cards.

The manager ties the pieces together: it asks the access token provider for
a token, builds and self-signs new cards, talks to the service through
:class:`~client.CardClient`, and checks every card it hands back with the
configured verifier. A card that fails any check raises
:class:`~types.CardVerificationError`; nothing unverified is returned.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Sequence, TypeVar, Union

import structlog

from .cards import (
    SELF_SIGNER,
    ModelSigner,
    card_to_raw_signed_model,
    generate_raw_signed_model,
    linked_card_list,
    parse_raw_signed_model,
    raw_signed_model_from_json,
    raw_signed_model_from_string,
    raw_signed_model_to_json,
    raw_signed_model_to_string,
)
from .client import CardClient
from .crypto import CardCrypto
from .jwt import Jwt
from .providers import AccessTokenProvider
from .snapshot import parse_snapshot
from .types import (
    Card,
    CardVerificationError,
    HttpError,
    NewCardParams,
    RawSignedModel,
    TokenContext,
    ValidationError,
)
from .verifier import CardVerifierProtocol

logger = structlog.get_logger(__name__)

# Service error code for an expired access token.
ACCESS_TOKEN_EXPIRED = "20304"

T = TypeVar("T")

SignCallback = Callable[[RawSignedModel], Union[RawSignedModel, Awaitable[RawSignedModel]]]


class CardManager:
    """High-level card operations.

    Parameters
    ----------
    crypto:
        Crypto backend for card ids, keys and signatures.
    card_verifier:
        Checks every card received from the service or imported. Pass
        ``None`` to skip verification.
    access_token_provider:
        Source of access tokens. Required for any network operation.
    client:
        Card service client. Defaults to a :class:`~client.CardClient` for
        the public service.
    sign_callback:
        Called with the raw model right before publishing, e.g. to add a
        signature from the application backend.
    retry_on_unauthorized:
        When ``True``, a 401 "access token expired" response triggers one
        retry with a freshly requested token.
    """

    def __init__(
        self,
        crypto: CardCrypto,
        card_verifier: CardVerifierProtocol | None,
        *,
        access_token_provider: AccessTokenProvider | None = None,
        client: CardClient | None = None,
        sign_callback: SignCallback | None = None,
        retry_on_unauthorized: bool = False,
    ) -> None:
        if crypto is None:
            raise ValidationError("CardManager: crypto is required")
        self.crypto = crypto
        self.card_verifier = card_verifier
        self.access_token_provider = access_token_provider
        self._owns_client = client is None
        self.client = client if client is not None else CardClient()
        self.model_signer = ModelSigner(crypto)
        self.sign_callback = sign_callback
        self.retry_on_unauthorized = retry_on_unauthorized

    async def __aenter__(self) -> "CardManager":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the card client if this manager created it."""
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Card creation and publishing
    # ------------------------------------------------------------------

    def generate_raw_card(self, params: NewCardParams) -> RawSignedModel:
        """Build a self-signed raw card without publishing it."""
        _validate_card_params(params, require_identity=True)
        model = generate_raw_signed_model(
            self.crypto,
            identity=params.identity or "",
            public_key=params.public_key,
            previous_card_id=params.previous_card_id,
        )
        self.model_signer.sign(
            model,
            params.private_key,
            signer=SELF_SIGNER,
            extra_fields=params.extra_fields,
        )
        return model

    async def publish_card(self, params: NewCardParams) -> Card:
        """Generate a card for the token's identity and publish it."""
        _validate_card_params(params)
        context = TokenContext(operation="publish", identity=params.identity)
        token = await self._get_token(context)
        raw_card = self.generate_raw_card(
            NewCardParams(
                private_key=params.private_key,
                public_key=params.public_key,
                identity=token.identity(),
                previous_card_id=params.previous_card_id,
                extra_fields=params.extra_fields,
            )
        )
        return await self._publish_raw_signed_model(raw_card, context, token)

    async def publish_raw_card(self, raw_card: RawSignedModel) -> Card:
        """Publish a card generated earlier with :meth:`generate_raw_card`."""
        if raw_card is None or not raw_card.content_snapshot:
            raise ValidationError("publish_raw_card: raw_card should not be empty")
        details = parse_snapshot(raw_card.content_snapshot)
        identity = details.get("identity") if isinstance(details, dict) else None
        context = TokenContext(operation="publish", identity=identity)
        token = await self._get_token(context)
        return await self._publish_raw_signed_model(raw_card, context, token)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_card(self, card_id: str) -> Card:
        """Fetch and verify the card with *card_id*."""
        context = TokenContext(operation="get")
        token = await self._get_token(context)
        result = await self._try_do(
            context, token, lambda t: self.client.get_card(card_id, str(t))
        )

        card = parse_raw_signed_model(self.crypto, result.raw_model, result.is_outdated)
        if card.id != card_id:
            logger.warning("card_id_mismatch", requested=card_id, received=card.id)
            raise CardVerificationError("received invalid card: id does not match")

        self._validate_cards([card])
        return card

    async def search_cards(self, identities: str | Sequence[str]) -> list[Card]:
        """Fetch, verify and link all cards for one or more identities.

        Returns the head cards; superseded cards hang off
        :attr:`~types.Card.previous_card`.
        """
        if not identities:
            raise ValidationError("search_cards: identities are required")
        identity_list = [identities] if isinstance(identities, str) else list(identities)

        context = TokenContext(operation="search")
        token = await self._get_token(context)
        raw_cards = await self._try_do(
            context, token, lambda t: self.client.search_cards(identity_list, str(t))
        )

        cards = [parse_raw_signed_model(self.crypto, raw) for raw in raw_cards]
        requested = set(identity_list)
        if any(card.identity not in requested for card in cards):
            raise CardVerificationError("received invalid cards: unexpected identity")

        self._validate_cards(cards)
        logger.info("cards_found", identities=len(identity_list), cards=len(cards))
        return linked_card_list(cards)

    async def revoke_card(self, card_id: str) -> None:
        """Revoke the card with *card_id* on the service."""
        context = TokenContext(operation="revoke")
        token = await self._get_token(context)
        await self._try_do(context, token, lambda t: self.client.revoke_card(card_id, str(t)))
        logger.info("card_revoked", card_id=card_id)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_card(self, raw_card: RawSignedModel) -> Card:
        card = parse_raw_signed_model(self.crypto, raw_card)
        self._validate_cards([card])
        return card

    def import_card_from_string(self, encoded: str) -> Card:
        if not encoded:
            raise ValidationError("import_card_from_string: string should not be empty")
        return self.import_card(raw_signed_model_from_string(encoded))

    def import_card_from_json(self, raw: dict[str, Any]) -> Card:
        if not raw:
            raise ValidationError("import_card_from_json: json should not be empty")
        return self.import_card(raw_signed_model_from_json(raw))

    def export_card(self, card: Card) -> RawSignedModel:
        return card_to_raw_signed_model(card)

    def export_card_as_string(self, card: Card) -> str:
        return raw_signed_model_to_string(self.export_card(card))

    def export_card_as_json(self, card: Card) -> dict[str, Any]:
        return raw_signed_model_to_json(self.export_card(card))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_token(self, context: TokenContext) -> Jwt:
        if self.access_token_provider is None:
            raise ValidationError(
                "CardManager: set access_token_provider to be able to make requests"
            )
        return await self.access_token_provider.get_token(context)

    async def _publish_raw_signed_model(
        self, raw_card: RawSignedModel, context: TokenContext, token: Jwt
    ) -> Card:
        if self.sign_callback is not None:
            signed = self.sign_callback(raw_card)
            raw_card = await signed if inspect.isawaitable(signed) else signed

        published = await self._try_do(
            context, token, lambda t: self.client.publish_card(raw_card, str(t))
        )
        if published.content_snapshot != raw_card.content_snapshot:
            raise CardVerificationError("received invalid card: content was altered")

        card = parse_raw_signed_model(self.crypto, published)
        self._validate_cards([card])
        logger.info("card_published", card_id=card.id, identity=card.identity)
        return card

    async def _try_do(
        self,
        context: TokenContext,
        token: Jwt,
        func: Callable[[Jwt], Awaitable[T]],
    ) -> T:
        try:
            return await func(token)
        except HttpError as exc:
            if not (
                self.retry_on_unauthorized
                and exc.status_code == 401
                and exc.error_code == ACCESS_TOKEN_EXPIRED
            ):
                raise
            logger.info("access_token_expired_retrying", operation=context.operation)

        fresh = await self._get_token(
            TokenContext(
                operation=context.operation,
                identity=context.identity,
                force_reload=True,
            )
        )
        return await func(fresh)

    def _validate_cards(self, cards: Sequence[Card]) -> None:
        if self.card_verifier is None:
            return
        for card in cards:
            if not self.card_verifier.verify_card(card):
                logger.warning("card_verification_failed", card_id=card.id)
                raise CardVerificationError("validation errors have been detected")


def _validate_card_params(params: NewCardParams, *, require_identity: bool = False) -> None:
    if params is None:
        raise ValidationError("card parameters must be provided")
    if params.private_key is None:
        raise ValidationError("card's private key is required")
    if params.public_key is None:
        raise ValidationError("card's public key is required")
    if require_identity and not params.identity:
        raise ValidationError("card's identity is required")
