"""
Unit Tests for ProviderHTTPClient

These tests run the shared request handler against a local aiohttp server:
- HTTP status mapping onto the ProviderError taxonomy
- Timeouts and transport failures as NetworkError
- Undecodable bodies as ParseError
- JSON and text bodies, query parameters and default headers

Run with:
    pytest tests/unit/test_http_client.py -v
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from core.errors import AuthError, NetworkError, NotFoundError, ParseError, RateLimitedError
from providers.http_client import USER_AGENT, ProviderHTTPClient


class LocalClient(ProviderHTTPClient):
    PROVIDER_ID = "local"


def _status(code, body=""):
    async def handler(request):
        return web.Response(status=code, text=body)

    return handler


async def _echo(request):
    return web.json_response({"query": dict(request.query), "agent": request.headers.get("User-Agent")})


async def _slow(request):
    await asyncio.sleep(1)
    return web.json_response({})


@pytest_asyncio.fixture
async def server():
    """Serve canned responses on a local port"""
    app = web.Application()
    app.router.add_get("/unauthorized", _status(401))
    app.router.add_get("/forbidden", _status(403))
    app.router.add_get("/missing", _status(404))
    app.router.add_get("/limited", _status(429))
    app.router.add_get("/broken", _status(502, "upstream unavailable"))
    app.router.add_get("/garbage", _status(200, "<html>not json</html>"))
    app.router.add_get("/csv", _status(200, "Date,Close\n2024-05-01,170.0\n"))
    app.router.add_get("/echo", _echo)
    app.router.add_get("/slow", _slow)

    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def api_client(server):
    """Create a client pointed at the local server"""
    async with LocalClient(timeout=5, base_url=str(server.make_url(""))) as client:
        yield client


# ============================================
# Tests for Status Mapping
# ============================================

class TestStatusMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/unauthorized", "/forbidden"])
    async def test_auth_failures(self, api_client, path):
        with pytest.raises(AuthError) as exc_info:
            await api_client._get(path)
        assert exc_info.value.provider == "local"

    @pytest.mark.asyncio
    async def test_404_is_not_found(self, api_client):
        with pytest.raises(NotFoundError):
            await api_client._get("/missing")

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, api_client):
        with pytest.raises(RateLimitedError):
            await api_client._get("/limited")

    @pytest.mark.asyncio
    async def test_other_status_is_network_error(self, api_client):
        with pytest.raises(NetworkError) as exc_info:
            await api_client._get("/broken")
        assert "HTTP 502" in str(exc_info.value)
        assert "upstream unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unknown_route_is_not_found(self, api_client):
        with pytest.raises(NotFoundError):
            await api_client._get("/nowhere")


# ============================================
# Tests for Transport Failures
# ============================================

class TestTransportFailures:

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, server):
        async with LocalClient(timeout=0.1, base_url=str(server.make_url(""))) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client._get("/slow")
        assert "Timeout" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_refused_connection_is_network_error(self, server):
        base_url = str(server.make_url(""))
        await server.close()

        async with LocalClient(timeout=5, base_url=base_url) as client:
            with pytest.raises(NetworkError):
                await client._get("/echo")

    @pytest.mark.asyncio
    async def test_get_without_session(self):
        with pytest.raises(RuntimeError):
            await LocalClient(base_url="http://127.0.0.1")._get("/echo")


# ============================================
# Tests for Response Bodies
# ============================================

class TestBodies:

    @pytest.mark.asyncio
    async def test_undecodable_json_is_parse_error(self, api_client):
        with pytest.raises(ParseError):
            await api_client._get("/garbage")

    @pytest.mark.asyncio
    async def test_text_body(self, api_client):
        body = await api_client._get("/csv", expect="text")
        assert body.splitlines()[0] == "Date,Close"

    @pytest.mark.asyncio
    async def test_json_body_with_params_and_user_agent(self, api_client):
        data = await api_client._get("/echo", {"symbol": "AAPL", "range": "5d"})
        assert data == {"query": {"symbol": "AAPL", "range": "5d"}, "agent": USER_AGENT}

    @pytest.mark.asyncio
    async def test_base_url_override(self, server):
        async with LocalClient(timeout=5, base_url="http://127.0.0.1:1") as client:
            data = await client._get("/echo", base_url=str(server.make_url("")))
        assert data["agent"] == USER_AGENT
