"""
Tests for the Mailchimp OAuth connector against a mocked HTTP transport.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.errors import MetadataFetchFailedError, TokenExchangeFailedError
from connectors.mailchimp import MailchimpConnector

_METADATA = {
    "dc": "us1",
    "role": "owner",
    "accountname": "Acme Inc",
    "user_id": 4242,
    "login": {"login_id": 1, "login_name": "acme", "login_email": "owner@acme.test"},
    "api_endpoint": "https://us1.api.mailchimp.com",
}


def _connector(handler) -> MailchimpConnector:
    return MailchimpConnector(
        client_id="cid",
        client_secret="csecret",
        redirect_uri="https://app.test/callback",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestAuthUrl:
    def test_embeds_state_and_client(self):
        url = _connector(lambda r: httpx.Response(200)).get_auth_url("abc")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "login.mailchimp.com"
        assert parsed.path == "/oauth2/authorize"
        assert params["state"] == ["abc"]
        assert params["client_id"] == ["cid"]
        assert params["redirect_uri"] == ["https://app.test/callback"]
        assert params["response_type"] == ["code"]

    def test_is_configured(self):
        assert _connector(lambda r: httpx.Response(200)).is_configured()
        assert not MailchimpConnector(client_id="", client_secret="", redirect_uri="").is_configured()


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_posts_form_and_returns_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "T", "expires_in": 0, "scope": None})

        token = await _connector(handler).exchange_code("goodcode")

        assert token.access_token == "T"
        assert seen["method"] == "POST"
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["goodcode"]
        assert seen["form"]["client_secret"] == ["csecret"]

    @pytest.mark.asyncio
    async def test_http_error(self):
        connector = _connector(lambda r: httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(TokenExchangeFailedError):
            await connector.exchange_code("badcode")

    @pytest.mark.asyncio
    async def test_timeout_is_a_transport_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TokenExchangeFailedError):
            await _connector(handler).exchange_code("code")

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        with pytest.raises(TokenExchangeFailedError):
            await _connector(lambda r: httpx.Response(200, json={})).exchange_code("code")


class TestFetchMetadata:
    @pytest.mark.asyncio
    async def test_maps_account_fields(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "OAuth T"
            return httpx.Response(200, json=_METADATA)

        meta = await _connector(handler).fetch_metadata("T")

        assert meta.server_prefix == "us1"
        assert meta.account_id == "4242"
        assert meta.email == "owner@acme.test"
        assert meta.username == "acme"
        assert meta.extra["account_name"] == "Acme Inc"

    @pytest.mark.asyncio
    async def test_missing_dc(self):
        with pytest.raises(MetadataFetchFailedError):
            await _connector(lambda r: httpx.Response(200, json={"role": "owner"})).fetch_metadata("T")

    @pytest.mark.asyncio
    async def test_http_error(self):
        with pytest.raises(MetadataFetchFailedError):
            await _connector(lambda r: httpx.Response(500, text="boom")).fetch_metadata("T")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(MetadataFetchFailedError):
            await _connector(handler).fetch_metadata("T")
