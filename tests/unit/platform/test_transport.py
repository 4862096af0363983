"""Tests for GraphTransport."""

import httpx
import pytest

from m365crawler.core.exceptions import (
    AccessDeniedException,
    ExternalServiceError,
    NotFoundException,
    RateLimitedException,
    ServiceUnavailableException,
)
from m365crawler.platform.entities._base import RequestDescriptor
from m365crawler.platform.transport import GraphTransport

BASE_URL = "https://graph.example.com/v1.0"


def make_transport(handler, token="token-1"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GraphTransport(token, base_url=BASE_URL + "/", client=client)


class TestGraphTransport:
    """Tests for request building and status mapping."""

    @pytest.mark.asyncio
    async def test_call_builds_url_headers_and_params(self):
        """Test paths are joined to the base url and the bearer token is sent."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": []})

        transport = make_transport(handler)

        body = await transport.call(
            RequestDescriptor(path="/users", params={"$select": "id"}, headers={"X-A": "b"})
        )

        assert body == {"value": []}
        request = seen[0]
        assert request.url.path == "/v1.0/users"
        assert request.url.params["$select"] == "id"
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.headers["X-A"] == "b"

    @pytest.mark.asyncio
    async def test_absolute_url_is_used_verbatim(self):
        """Test cursors are requested as given."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        transport = make_transport(handler)

        await transport.call(RequestDescriptor(url="https://graph.example.com/v1.0/x?skip=2"))

        assert seen == ["https://graph.example.com/v1.0/x?skip=2"]

    @pytest.mark.asyncio
    async def test_token_provider_is_awaited(self):
        """Test a callable token is resolved per request."""

        async def provider():
            return "fresh"

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer fresh"
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler, token=provider)

        assert await transport.call(RequestDescriptor(path="me")) == {"ok": True}

    @pytest.mark.asyncio
    async def test_empty_body_is_an_empty_dict(self):
        """Test responses without content decode to {}."""
        transport = make_transport(lambda request: httpx.Response(204))

        assert await transport.call(RequestDescriptor(path="me")) == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [
            (404, NotFoundException),
            (401, AccessDeniedException),
            (403, AccessDeniedException),
            (429, RateLimitedException),
            (503, ServiceUnavailableException),
            (500, ExternalServiceError),
        ],
    )
    async def test_status_mapping(self, status, error):
        """Test HTTP errors map onto the crawler exceptions."""
        transport = make_transport(lambda request: httpx.Response(status, json={"error": {}}))

        with pytest.raises(error):
            await transport.call(RequestDescriptor(path="users/u1"))

    @pytest.mark.asyncio
    async def test_retry_after_is_carried(self):
        """Test throttling errors keep the Retry-After header."""
        transport = make_transport(
            lambda request: httpx.Response(429, headers={"Retry-After": "7"})
        )

        with pytest.raises(RateLimitedException) as exc_info:
            await transport.call(RequestDescriptor(path="users/u1"))

        assert exc_info.value.retry_after == "7"

    @pytest.mark.asyncio
    async def test_download_returns_bytes(self):
        """Test downloads return the raw body."""
        transport = make_transport(lambda request: httpx.Response(200, content=b"\x00\x01"))

        assert await transport.download(RequestDescriptor(path="drives/d/items/i/content")) == (
            b"\x00\x01"
        )

    @pytest.mark.asyncio
    async def test_close_leaves_caller_client_open(self):
        """Test a client passed in by the caller is not closed."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        transport = GraphTransport("t", base_url=BASE_URL, client=client)

        await transport.close()

        assert not client.is_closed
        await client.aclose()
