"""
Unit Tests for the HTTP Boundary

These tests call the FastAPI application through TestClient and verify
that every failure is rendered as an error envelope with the registered
HTTP status.

Run with:
    pytest tests/unit/test_app.py -v
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app, manager
from gateway_core import errors
from services.base import UpstreamService


class StaticService(UpstreamService):
    id = "fxConverter"
    name = "Fx Converter"
    features = {"rates": True}

    def __init__(self, healthy=True):
        super().__init__()
        self.healthy = healthy

    async def fetch_data(self):
        if not self.healthy:
            raise errors.upstream_error("service", self.id, "NetworkError.UnknownError")
        return {"EUR": 0.9}


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def registered_service():
    service = StaticService()
    manager.register(service)
    yield service
    manager.services.pop(service.id, None)


class TestSystemEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health_healthy(self, client, registered_service):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "services": {"fxConverter": True}}

    def test_health_degraded(self, client, registered_service):
        registered_service.healthy = False
        registered_service.cache.clear()
        response = client.get("/health")
        assert response.json() == {"status": "degraded", "services": {"fxConverter": False}}


class TestServiceEndpoints:

    def test_list_services(self, client, registered_service):
        response = client.get("/services")
        assert response.status_code == 200
        assert response.json()[0]["id"] == "fxConverter"
        assert response.json()[0]["features"] == {"rates": True}

    def test_unknown_service_envelope(self, client):
        response = client.get("/services/nope")
        assert response.status_code == 400
        body = response.json()
        assert body["origin"] == "gateway"
        assert body["extError"]["kind"] == "GatewayError.InvalidRequest.Unsupported.UnsupportedService"
        assert body["extError"]["data"] == {"service": "nope"}
        assert body["route"] == {"method": "GET", "path": "/services/nope"}


class TestErrorEndpoints:

    def test_list_errors(self, client):
        response = client.get("/errors")
        assert response.status_code == 200
        kinds = {item["kind"]: item["http_status"] for item in response.json()}
        assert kinds["GatewayError.InvalidRequest.ConflictingParameters"] == 409
        assert len(kinds) == len(errors.types())

    def test_error_types(self, client):
        assert client.get("/errors/types").json() == errors.types()

    def test_error_status(self, client):
        response = client.get("/errors/status", params={"kind": "ExchangeError.NetworkError.DDosProtection"})
        assert response.json() == {
            "kind": "ExchangeError.NetworkError.DDosProtection",
            "http_status": 429,
            "registered": True
        }

    def test_unknown_kind_status(self, client):
        response = client.get("/errors/status", params={"kind": "Nope.Nothing"})
        assert response.json()["http_status"] == 503
        assert response.json()["registered"] is False

    def test_missing_parameter_envelope(self, client):
        response = client.get("/errors/status")
        assert response.status_code == 400
        body = response.json()
        assert body["origin"] == "gateway"
        assert body["error"] == "Parameter 'kind' is missing"
        assert body["extError"] == {
            "kind": "GatewayError.InvalidRequest.MissingParameters",
            "message": "Parameter 'kind' is missing",
            "data": {"parameters": ["kind"]}
        }


class TestErrorBoundary:

    def test_unknown_route(self, client):
        response = client.get("/does/not/exist")
        assert response.status_code == 404
        assert response.json()["extError"]["kind"] == "GatewayError.UnknownRoute"

    def test_remote_error_status_and_origin(self, client):
        @app.get("/_test/remote")
        async def remote():
            raise errors.upstream_error("exchange", "binance", "NetworkError.RequestTimeout")

        response = client.get("/_test/remote")
        assert response.status_code == 504
        assert response.json()["origin"] == "remote"
        assert response.json()["extError"]["data"] == {"exchange": "binance"}

    def test_unexpected_exception_becomes_internal_error(self, client):
        @app.get("/_test/crash")
        async def crash():
            raise ZeroDivisionError("hidden")

        response = client.get("/_test/crash")
        assert response.status_code == 500
        body = response.json()
        assert body["extError"]["kind"] == "GatewayError.InternalError"
        assert "hidden" not in body["error"]

    def test_invalid_parameter(self, client):
        @app.get("/_test/limit")
        async def limited(limit: int):
            return {"limit": limit}

        response = client.get("/_test/limit", params={"limit": "abc"})
        assert response.status_code == 400
        body = response.json()
        assert body["extError"]["kind"] == "GatewayError.InvalidRequest.InvalidParameter"
        assert body["extError"]["data"] == {"parameterName": "limit", "parameterValue": "abc"}
