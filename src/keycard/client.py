# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""HTTP plumbing for the card service.

:class:`Connection` is the network collaborator: it sends authenticated
``GET``/``POST`` requests and hands back the raw :class:`httpx.Response`.
:class:`CardClient` maps the card endpoints onto it and turns non-2xx
responses into :class:`~types.HttpError`. Neither class verifies cards; see
:mod:`manager` for that.
"""

from __future__ import annotations

import json
import platform
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx
import structlog

from .cards import raw_signed_model_from_json, raw_signed_model_to_json
from .types import HttpError, RawSignedModel, ValidationError

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.virgilsecurity.com"

PUBLISH_ENDPOINT = "/card/v5"
SEARCH_ENDPOINT = "/card/v5/actions/search"

# Response header set to "true" when the requested card has been superseded.
SUPERSEDED_HEADER = "X-Virgil-Is-Superseeded"

_SDK_VERSION = "5.0.0"


class ConnectionProtocol(Protocol):
    async def get(self, endpoint: str, access_token: str) -> httpx.Response: ...

    async def post(
        self, endpoint: str, access_token: str, data: Any = None
    ) -> httpx.Response: ...


class Connection:
    """Authenticated HTTP connection to the card service.

    Parameters
    ----------
    base_url:
        Root URL of the service. A trailing slash is stripped automatically.
    timeout:
        Per-request timeout in seconds. Defaults to 10.
    http_client:
        Optional pre-configured :class:`httpx.AsyncClient`, e.g. one built on
        an :class:`httpx.MockTransport` for tests.
    product, version:
        Reported in the ``Virgil-Agent`` header.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        product: str = "sdk",
        version: str = _SDK_VERSION,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owned_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.agent = f"{product};python;{platform.system().lower() or 'other'};{version}"

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if it was created internally."""
        if self._owned_client:
            await self._http.aclose()

    async def get(self, endpoint: str, access_token: str) -> httpx.Response:
        return await self._send("GET", endpoint, access_token)

    async def post(self, endpoint: str, access_token: str, data: Any = None) -> httpx.Response:
        body = json.dumps(data if data is not None else {}).encode("utf-8")
        return await self._send("POST", endpoint, access_token, body)

    async def _send(
        self, method: str, endpoint: str, access_token: str, body: bytes | None = None
    ) -> httpx.Response:
        url = f"{self._base_url}{endpoint}"
        headers = {
            "Authorization": f"Virgil {access_token}",
            "Virgil-Agent": self.agent,
            "Accept": "application/json",
        }
        if body is not None:
            headers["Content-Type"] = "application/json"
        response = await self._http.request(method, url, content=body, headers=headers)
        logger.debug("http_request", method=method, endpoint=endpoint, status=response.status_code)
        return response


@dataclass(frozen=True)
class CardResult:
    """A fetched card plus whether the service reports it as superseded."""

    raw_model: RawSignedModel
    is_outdated: bool


class CardClient:
    """Card service endpoints over a :class:`Connection`.

    Parameters
    ----------
    connection:
        Either a ready connection object, or a base URL string from which a
        :class:`Connection` is built. Defaults to :data:`DEFAULT_API_URL`.
    """

    def __init__(self, connection: ConnectionProtocol | str | None = None) -> None:
        self._owned_connection: Connection | None = None
        if connection is None or isinstance(connection, str):
            self._owned_connection = Connection(connection or DEFAULT_API_URL)
            self._connection: ConnectionProtocol = self._owned_connection
        else:
            self._connection = connection

    async def __aenter__(self) -> "CardClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the connection if this client created it."""
        if self._owned_connection is not None:
            await self._owned_connection.aclose()

    async def publish_card(self, model: RawSignedModel, access_token: str) -> RawSignedModel:
        """Publish *model* and return the stored model, including the
        service's own signature.

        Raises
        ------
        HttpError
            On non-2xx responses.
        """
        if model is None:
            raise ValidationError("publish_card: model should not be empty")
        _require_token(access_token)

        response = await self._connection.post(
            PUBLISH_ENDPOINT, access_token, raw_signed_model_to_json(model)
        )
        _raise_for_status(response, PUBLISH_ENDPOINT)
        return raw_signed_model_from_json(response.json())

    async def search_cards(
        self, identities: Sequence[str], access_token: str
    ) -> list[RawSignedModel]:
        """Return every card published for any of *identities*."""
        if not identities:
            raise ValidationError("search_cards: identities should not be empty")
        _require_token(access_token)

        response = await self._connection.post(
            SEARCH_ENDPOINT, access_token, {"identities": list(identities)}
        )
        _raise_for_status(response, SEARCH_ENDPOINT)

        cards_json = response.json()
        if cards_json is None:
            return []
        return [raw_signed_model_from_json(item) for item in cards_json]

    async def get_card(self, card_id: str, access_token: str) -> CardResult:
        """Fetch a single card by id."""
        if not card_id:
            raise ValidationError("get_card: card_id should not be empty")
        _require_token(access_token)

        endpoint = f"/card/v5/{card_id}"
        response = await self._connection.get(endpoint, access_token)
        _raise_for_status(response, endpoint)

        is_outdated = response.headers.get(SUPERSEDED_HEADER) == "true"
        return CardResult(
            raw_model=raw_signed_model_from_json(response.json()),
            is_outdated=is_outdated,
        )

    async def revoke_card(self, card_id: str, access_token: str) -> None:
        """Revoke the card with the given id."""
        if not card_id:
            raise ValidationError("revoke_card: card_id should not be empty")
        _require_token(access_token)

        endpoint = f"/card/v5/actions/revoke/{card_id}"
        response = await self._connection.post(endpoint, access_token)
        _raise_for_status(response, endpoint)


# ------------------------------------------------------------------
# Module-level helpers
# ------------------------------------------------------------------


def _require_token(access_token: str) -> None:
    if not access_token:
        raise ValidationError("access_token should not be empty")


def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
    if response.is_success:
        return
    message = response.reason_phrase or "unknown error"
    error_code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if isinstance(body.get("message"), str):
            message = body["message"]
        if body.get("code") is not None:
            error_code = str(body["code"])
    raise HttpError(
        status_code=response.status_code,
        endpoint=endpoint,
        message=message,
        error_code=error_code,
    )
