"""Tests for the HTTP connection and card client."""

import json

import httpx
import pytest

from keycard.cards import card_to_raw_signed_model, raw_signed_model_to_json
from keycard.client import SUPERSEDED_HEADER, CardClient, Connection
from keycard.types import HttpError, ValidationError

BASE_URL = "https://cards.test"


def make_client(handler) -> CardClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CardClient(Connection(BASE_URL + "/", http_client=http))


class TestConnection:

    @pytest.mark.asyncio
    async def test_headers(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with Connection(BASE_URL, http_client=http, product="app", version="1.2") as conn:
            await conn.post("/echo", "tok", {"a": 1})

        request = seen["request"]
        assert str(request.url) == BASE_URL + "/echo"
        assert request.headers["Authorization"] == "Virgil tok"
        assert request.headers["Virgil-Agent"].startswith("app;python;")
        assert request.headers["Virgil-Agent"].endswith(";1.2")
        assert json.loads(request.content) == {"a": 1}
        await http.aclose()


class TestCardClient:

    @pytest.mark.asyncio
    async def test_publish(self, make_card):
        model = card_to_raw_signed_model(make_card())

        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/card/v5"
            return httpx.Response(200, json=json.loads(request.content))

        published = await make_client(handler).publish_card(model, "tok")

        assert published.content_snapshot == model.content_snapshot
        assert [s.signer for s in published.signatures] == ["self"]

    @pytest.mark.asyncio
    async def test_error_body_becomes_http_error(self, make_card):
        model = card_to_raw_signed_model(make_card())

        def handler(request):
            return httpx.Response(401, json={"code": 20304, "message": "token expired"})

        with pytest.raises(HttpError) as info:
            await make_client(handler).publish_card(model, "tok")

        assert info.value.status_code == 401
        assert info.value.error_code == "20304"
        assert info.value.message == "token expired"
        assert info.value.endpoint == "/card/v5"

    @pytest.mark.asyncio
    async def test_error_without_json_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(HttpError) as info:
            await make_client(handler).get_card("abc", "tok")

        assert info.value.status_code == 502
        assert info.value.error_code is None
        assert info.value.message == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_search(self, make_card):
        card = make_card("alice")
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            assert request.url.path == "/card/v5/actions/search"
            raw = raw_signed_model_to_json(card_to_raw_signed_model(card))
            return httpx.Response(200, json=[raw])

        results = await make_client(handler).search_cards(["alice", "bob"], "tok")

        assert captured["body"] == {"identities": ["alice", "bob"]}
        assert [r.content_snapshot for r in results] == [card.content_snapshot]

    @pytest.mark.asyncio
    async def test_search_null_body(self):
        client = make_client(lambda request: httpx.Response(200, content=b"null"))
        assert await client.search_cards(["alice"], "tok") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header, expected", [("true", True), ("false", False), (None, False)])
    async def test_get_card_superseded_header(self, make_card, header, expected):
        card = make_card()

        def handler(request):
            assert request.method == "GET"
            assert request.url.path == f"/card/v5/{card.id}"
            headers = {SUPERSEDED_HEADER: header} if header else {}
            return httpx.Response(
                200,
                json=raw_signed_model_to_json(card_to_raw_signed_model(card)),
                headers=headers,
            )

        result = await make_client(handler).get_card(card.id, "tok")

        assert result.is_outdated is expected
        assert result.raw_model.content_snapshot == card.content_snapshot

    @pytest.mark.asyncio
    async def test_revoke(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        await make_client(handler).revoke_card("abc", "tok")
        assert seen == [("POST", "/card/v5/actions/revoke/abc")]

    @pytest.mark.asyncio
    async def test_argument_checks(self, make_card):
        client = make_client(lambda request: pytest.fail("no request expected"))
        with pytest.raises(ValidationError):
            await client.search_cards([], "tok")
        with pytest.raises(ValidationError):
            await client.get_card("", "tok")
        with pytest.raises(ValidationError):
            await client.publish_card(card_to_raw_signed_model(make_card()), "")


class TestClientLifecycle:

    @pytest.mark.asyncio
    async def test_default_connection_is_closed(self):
        async with CardClient() as client:
            http = client._owned_connection._http
            assert http.is_closed is False
        assert http.is_closed is True

    @pytest.mark.asyncio
    async def test_base_url_connection_is_closed(self):
        client = CardClient(BASE_URL)
        await client.aclose()
        assert client._owned_connection._http.is_closed is True

    @pytest.mark.asyncio
    async def test_injected_connection_left_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with CardClient(Connection(BASE_URL, http_client=http)):
            pass
        assert http.is_closed is False
        await http.aclose()
