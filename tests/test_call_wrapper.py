"""
Tests for the upstream call wrapper: envelopes, rate limits, auth failures.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from pydantic import ValidationError

from connectors.call_wrapper import CallEnvelope, UpstreamCallWrapper
from connectors.client import MailchimpClient
from connectors.errors import ErrorCode
from connectors.validator import Invalid

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class Upstream:
    """Programmable Mailchimp API: one response for every request."""

    def __init__(self):
        self.response = httpx.Response(200, json={"lists": [], "total_items": 0})
        self.requests = []
        self.clients = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    def client_factory(self, token: str, prefix: str) -> MailchimpClient:
        client = MailchimpClient(token, prefix, transport=httpx.MockTransport(self.handler))
        self.clients.append(client)
        return client


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def wrapper(validator, connection_store, upstream, clock):
    return UpstreamCallWrapper(
        validator, connection_store, client_factory=upstream.client_factory, now=clock
    )


@pytest_asyncio.fixture
async def connected(connection_store):
    return await connection_store.upsert("u1", "tok", "us1", {"dc": "us1"})


class TestEnvelope:
    def test_success_cannot_carry_error(self):
        with pytest.raises(ValidationError):
            CallEnvelope(success=True, data=1, error="boom", error_code=ErrorCode.UPSTREAM_GENERIC_ERROR)

    def test_failure_needs_code(self):
        with pytest.raises(ValidationError):
            CallEnvelope(success=False, error="boom")

    def test_success_needs_data(self):
        with pytest.raises(ValidationError):
            CallEnvelope(success=True)

    def test_failure_cannot_carry_data(self):
        with pytest.raises(ValidationError):
            CallEnvelope(success=False, data={}, error="boom", error_code=ErrorCode.NOT_CONNECTED)

    def test_fail_uses_user_message(self):
        envelope = CallEnvelope.fail(ErrorCode.NOT_CONNECTED)

        assert envelope.success is False
        assert "reconnect" in envelope.error


class TestCall:
    @pytest.mark.asyncio
    async def test_not_connected_skips_operation(self, wrapper, upstream):
        invoked = []

        async def operation(client):
            invoked.append(client)

        envelope = await wrapper.call("u1", operation)

        assert envelope.success is False
        assert envelope.error_code is ErrorCode.NOT_CONNECTED
        assert envelope.status_code == 401
        assert invoked == []
        assert upstream.clients == []

    @pytest.mark.asyncio
    async def test_success_returns_data_and_rate_limit(self, wrapper, upstream, connected):
        upstream.response = httpx.Response(
            200,
            json={"lists": [{"id": "abc"}], "total_items": 1},
            headers={
                "X-RateLimit-Remaining": "9",
                "X-RateLimit-Limit": "10",
                "X-RateLimit-Reset": "1714564800",
            },
        )

        envelope = await wrapper.call("u1", lambda client: client.get_lists())

        assert envelope.success is True
        assert envelope.data["total_items"] == 1
        assert envelope.error is None
        assert envelope.rate_limit.remaining == 9
        assert str(upstream.requests[0].url).startswith("https://us1.api.mailchimp.com/3.0/lists")
        assert upstream.requests[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_no_content_success_reports_empty_data(self, wrapper, upstream, connected):
        upstream.response = httpx.Response(204)

        envelope = await wrapper.call("u1", lambda client: client.delete("/lists/abc"))

        assert envelope.success is True
        assert envelope.data == {}
        assert envelope.error is None

    @pytest.mark.asyncio
    async def test_operation_returning_nothing(self, wrapper, connected):
        async def operation(client):
            await client.get_lists()

        envelope = await wrapper.call("u1", operation)

        assert envelope.success is True
        assert envelope.data == {}

    @pytest.mark.asyncio
    async def test_client_is_closed_after_call(self, wrapper, upstream, connected):
        await wrapper.call("u1", lambda client: client.get_lists())

        assert upstream.clients[0]._http.is_closed

    @pytest.mark.asyncio
    async def test_rate_limited(self, wrapper, upstream, connected):
        upstream.response = httpx.Response(
            429, json={"title": "Too Many Requests"}, headers={"Retry-After": "30"}
        )

        envelope = await wrapper.call("u1", lambda client: client.get_lists())

        assert envelope.success is False
        assert envelope.error_code is ErrorCode.UPSTREAM_RATE_LIMITED
        assert envelope.status_code == 429
        assert envelope.rate_limit.remaining == 0
        assert envelope.rate_limit.reset_time == NOW + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_auth_error_deactivates_connection(
        self, wrapper, upstream, connected, connection_store, validator
    ):
        upstream.response = httpx.Response(401, json={"detail": "API Key Invalid"})

        envelope = await wrapper.call("u1", lambda client: client.get_lists())

        assert envelope.error_code is ErrorCode.UPSTREAM_AUTH_ERROR
        assert envelope.status_code == 401
        assert envelope.error == "API Key Invalid"
        assert (await connection_store.get("u1")).is_active is False
        assert await validator.validate("u1") == Invalid(ErrorCode.INACTIVE)

    @pytest.mark.asyncio
    async def test_api_error_keeps_status(self, wrapper, upstream, connected, connection_store):
        upstream.response = httpx.Response(404, json={"detail": "Not found"})

        envelope = await wrapper.call("u1", lambda client: client.get("/lists/missing"))

        assert envelope.error_code is ErrorCode.UPSTREAM_GENERIC_ERROR
        assert envelope.status_code == 404
        assert (await connection_store.get("u1")).is_active is True

    @pytest.mark.asyncio
    async def test_network_error(self, validator, connection_store, connected, clock):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        wrapper = UpstreamCallWrapper(
            validator,
            connection_store,
            client_factory=lambda t, p: MailchimpClient(t, p, transport=httpx.MockTransport(handler)),
            now=clock,
        )

        envelope = await wrapper.call("u1", lambda client: client.get_lists())

        assert envelope.error_code is ErrorCode.UPSTREAM_NETWORK_ERROR
        assert envelope.status_code == 503

    @pytest.mark.asyncio
    async def test_operation_that_cannot_parse_payload(self, wrapper, connected):
        async def operation(client):
            data = await client.get_lists()
            return data["lists"][0]["stats"]["member_count"]

        envelope = await wrapper.call("u1", operation)

        assert envelope.success is False
        assert envelope.error_code is ErrorCode.UPSTREAM_GENERIC_ERROR
        assert envelope.status_code == 502


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_updates_last_validated(
        self, wrapper, upstream, connected, connection_store, clock
    ):
        upstream.response = httpx.Response(200, json={"health_status": "Everything's Chimpy!"})
        clock.advance(hours=1)

        envelope = await wrapper.health_check("u1")

        assert envelope.success is True
        assert envelope.data == {"status": "healthy", "timestamp": clock().isoformat()}
        assert upstream.requests[0].url.path == "/3.0/ping"
        assert (await connection_store.get("u1")).last_validated_at == clock()

    @pytest.mark.asyncio
    async def test_not_connected(self, wrapper):
        envelope = await wrapper.health_check("nobody")

        assert envelope.error_code is ErrorCode.NOT_CONNECTED
