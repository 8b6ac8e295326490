"""
Unit Tests for UpstreamClient

These tests verify that the UpstreamClient:
- Classifies HTTP error statuses into ExchangeError / ServiceError kinds
- Extracts upstream messages from error bodies
- Paces requests through its rate limiter
- Refuses to run without an open session
- Classifies failures returned by a live local server

Run with:
    pytest tests/unit/test_upstream_client.py -v
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from gateway_core import errors
from gateway_core.rate_limiter import RateLimiter
from services.upstream_client import UpstreamClient, extract_upstream_message


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def service_client():
    return UpstreamClient("marketCap", "https://api.example.com/", upstream_type="service")


@pytest.fixture
def exchange_client():
    return UpstreamClient("binance", "https://api.binance.com", upstream_type="exchange")


@pytest_asyncio.fixture
async def upstream_server():
    """Local aiohttp server standing in for an upstream API"""

    async def ok(request):
        return web.json_response({"rates": {"EUR": 0.9}, "base": request.query.get("base")})

    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response({})

    async def limited(request):
        return web.json_response({"msg": "Too many requests"}, status=429)

    async def broken(request):
        return web.Response(status=500, text="Internal Server Error")

    async def html(request):
        return web.Response(text="<html>maintenance</html>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/ok", ok)
    app.router.add_get("/slow", slow)
    app.router.add_get("/limited", limited)
    app.router.add_get("/broken", broken)
    app.router.add_get("/html", html)

    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def server_client(upstream_server):
    """Exchange client talking to the local server"""
    base_url = f"http://{upstream_server.host}:{upstream_server.port}"
    async with UpstreamClient("binance", base_url, upstream_type="exchange", timeout=0.2) as client:
        yield client


@pytest_asyncio.fixture
async def open_client():
    """Client with an open aiohttp session"""
    async with UpstreamClient("fxConverter", "https://api.example.com") as client:
        yield client


# ============================================
# Tests for Classification
# ============================================

class TestClassifyStatus:
    """Tests for classify_status"""

    @pytest.mark.parametrize("status,kind", [
        (401, "ServiceError.Forbidden.InvalidAuthentication"),
        (403, "ServiceError.Forbidden.PermissionDenied"),
        (418, "ServiceError.NetworkError.DDosProtection"),
        (429, "ServiceError.NetworkError.DDosProtection"),
        (408, "ServiceError.NetworkError.RequestTimeout"),
        (504, "ServiceError.NetworkError.RequestTimeout"),
        (400, "ServiceError.InvalidRequest.UnknownError"),
        (404, "ServiceError.InvalidRequest.UnknownError"),
        (500, "ServiceError.NetworkError.UnknownError"),
        (502, "ServiceError.NetworkError.UnknownError"),
    ])
    def test_service_status_mapping(self, service_client, status, kind):
        assert service_client.classify_status(status).kind == kind

    def test_exchange_root(self, exchange_client):
        err = exchange_client.classify_status(429, "Too Many Requests")
        assert err.kind == "ExchangeError.NetworkError.DDosProtection"
        assert err.data["exchange"] == "binance"
        assert errors.status_of(err) == 429

    def test_status_attached_to_data(self, service_client):
        err = service_client.classify_status(500, "Internal Server Error")
        assert err.data["error"] == {"statusCode": 500, "statusMessage": "Internal Server Error"}
        assert err.data["service"] == "marketCap"

    def test_upstream_message_used(self, exchange_client):
        err = exchange_client.classify_status(400, "Bad Request", '{"code": -1121, "msg": "Invalid symbol."}')
        assert err.message == "Invalid symbol."

    def test_default_message_without_body(self, exchange_client):
        err = exchange_client.classify_status(400, "Bad Request", "<html>oops</html>")
        assert err.message == "An error occurred on exchange 'binance'"

    def test_classified_errors_are_remote(self, service_client):
        assert errors.to_envelope(service_client.classify_status(503))["origin"] == "remote"


class TestExtractUpstreamMessage:

    @pytest.mark.parametrize("body,message", [
        ('{"msg": "Invalid symbol."}', "Invalid symbol."),
        ({"message": "Rate limit exceeded"}, "Rate limit exceeded"),
        ({"error": "Not found"}, "Not found"),
        ({"error": {"code": 1}}, None),
        ("not json", None),
        ([1, 2], None),
        (None, None),
    ])
    def test_extract(self, body, message):
        assert extract_upstream_message(body) == message


# ============================================
# Tests for Requests
# ============================================

class TestGetJson:

    def test_invalid_upstream_type(self):
        with pytest.raises(ValueError):
            UpstreamClient("x", "https://example.com", upstream_type="broker")

    def test_base_url_trailing_slash_removed(self, service_client):
        assert service_client.base_url == "https://api.example.com"

    @pytest.mark.asyncio
    async def test_get_without_session_raises(self, service_client):
        with pytest.raises(RuntimeError):
            await service_client.get_json("/coins")

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, open_client):
        assert open_client.session is not None
        assert not open_client.session.closed
        await open_client.close()
        assert open_client.session is None

    @pytest.mark.asyncio
    async def test_get_json_goes_through_limiter(self, open_client, monkeypatch):
        limiter = RateLimiter.from_rate(1000, 1, name="fxConverter")
        open_client.limiter = limiter
        calls = []

        async def mock_get(path, params=None):
            calls.append((path, params))
            return {"rates": {"EUR": 0.9}}

        monkeypatch.setattr(open_client, "_get", mock_get)

        result = await open_client.get_json("/latest", {"base": "USD"})

        assert result == {"rates": {"EUR": 0.9}}
        assert calls == [("/latest", {"base": "USD"})]
        assert limiter.scheduled == 1
        assert limiter.dispatched == 1

    @pytest.mark.asyncio
    async def test_get_json_propagates_classified_errors(self, open_client, monkeypatch):
        async def mock_get(path, params=None):
            raise open_client.error("NetworkError.RequestTimeout")

        monkeypatch.setattr(open_client, "_get", mock_get)

        with pytest.raises(errors.ExtError) as exc_info:
            await open_client.get_json("/latest")
        assert exc_info.value.kind == "ServiceError.NetworkError.RequestTimeout"


class TestRequestsAgainstServer:
    """Tests running the real request path against a local aiohttp server"""

    @pytest.mark.asyncio
    async def test_json_response(self, server_client):
        result = await server_client.get_json("/ok", {"base": "USD"})
        assert result == {"rates": {"EUR": 0.9}, "base": "USD"}

    @pytest.mark.asyncio
    async def test_timeout(self, server_client):
        with pytest.raises(errors.ExtError) as exc_info:
            await server_client.get_json("/slow")
        assert exc_info.value.kind == "ExchangeError.NetworkError.RequestTimeout"
        assert exc_info.value.data == {"exchange": "binance"}
        assert errors.status_of(exc_info.value) == 504

    @pytest.mark.asyncio
    async def test_rate_limited(self, server_client):
        with pytest.raises(errors.ExtError) as exc_info:
            await server_client.get_json("/limited")
        err = exc_info.value
        assert err.kind == "ExchangeError.NetworkError.DDosProtection"
        assert err.message == "Too many requests"
        assert err.data["error"]["statusCode"] == 429

    @pytest.mark.asyncio
    async def test_server_error(self, server_client):
        with pytest.raises(errors.ExtError) as exc_info:
            await server_client.get_json("/broken")
        err = exc_info.value
        assert err.kind == "ExchangeError.NetworkError.UnknownError"
        assert err.data["error"] == {"statusCode": 500, "statusMessage": "Internal Server Error"}

    @pytest.mark.asyncio
    async def test_unknown_path_is_invalid_request(self, server_client):
        with pytest.raises(errors.ExtError) as exc_info:
            await server_client.get_json("/missing")
        assert exc_info.value.kind == "ExchangeError.InvalidRequest.UnknownError"
        assert exc_info.value.data["error"]["statusCode"] == 404

    @pytest.mark.asyncio
    async def test_undecodable_json(self, server_client):
        with pytest.raises(errors.ExtError) as exc_info:
            await server_client.get_json("/html")
        assert exc_info.value.kind == "ExchangeError.NetworkError.UnknownError"
        assert "Invalid JSON" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_refused(self, upstream_server):
        base_url = f"http://{upstream_server.host}:{upstream_server.port}"
        await upstream_server.close()

        async with UpstreamClient("marketCap", base_url, timeout=1) as client:
            with pytest.raises(errors.ExtError) as exc_info:
                await client.get_json("/ok")
        assert exc_info.value.kind == "ServiceError.NetworkError.UnknownError"
        assert exc_info.value.data["service"] == "marketCap"
        assert "error" in exc_info.value.data
