"""
Unit Tests for UpstreamService and ServiceManager

These tests use in-memory services (no network) to verify that:
- get_data() goes through the service cache
- Feature checks raise UnsupportedServiceFeature
- The manager registers, looks up and health-checks services
- One failing service never affects the others

Run with:
    pytest tests/unit/test_services.py -v
"""

import pytest

from gateway_core import errors
from gateway_core.cache import TTLSingleFlightCache
from gateway_core.schemas import ServiceInfo
from services.base import UpstreamService
from services.manager import ServiceManager


# ============================================
# Test Services
# ============================================

class DummyService(UpstreamService):
    """Service serving a counter instead of upstream data"""

    id = "dummy"
    name = "Dummy"
    features = {"tickers": True, "orderBooks": False}
    refresh_period = 60
    rate_limit = (10, 1)
    demo = True

    def __init__(self, service_id="dummy", fail=False, **kwargs):
        self.id = service_id
        super().__init__(**kwargs)
        self.fail = fail
        self.fetches = 0
        self.initialized = False

    async def fetch_data(self):
        self.fetches += 1
        if self.fail:
            raise errors.upstream_error("service", self.id, "NetworkError.UnknownError")
        return {"fetch": self.fetches}

    async def initialize(self):
        if self.fail:
            raise errors.upstream_error("service", self.id, "NetworkError.RequestTimeout")
        self.initialized = True


class ExpiringService(DummyService):
    """Dataset is stale as soon as it is fetched"""

    refresh_period = 0


class StrictService(ExpiringService):
    serve_stale_on_error = False


# ============================================
# Tests for UpstreamService
# ============================================

class TestUpstreamService:

    @pytest.mark.asyncio
    async def test_get_data_is_cached(self, fake_clock):
        service = DummyService(cache=TTLSingleFlightCache(name="dummy", clock=fake_clock))

        assert await service.get_data() == {"fetch": 1}
        assert await service.get_data() == {"fetch": 1}
        assert service.fetches == 1

        fake_clock.advance(61)
        assert await service.get_data() == {"fetch": 2}

    @pytest.mark.asyncio
    async def test_force_refresh(self):
        service = DummyService()
        await service.get_data()
        assert await service.get_data(force_refresh=True) == {"fetch": 2}

    @pytest.mark.asyncio
    async def test_stale_dataset_served_when_refresh_fails(self):
        service = ExpiringService()
        assert await service.get_data() == {"fetch": 1}

        service.fail = True
        assert await service.get_data() == {"fetch": 1}
        assert service.fetches == 2
        assert service.cache.peek(service.DATA_KEY).value == {"fetch": 1}

    @pytest.mark.asyncio
    async def test_refresh_failure_without_dataset_raises(self):
        service = ExpiringService(fail=True)
        with pytest.raises(errors.ExtError) as exc_info:
            await service.get_data()
        assert exc_info.value.kind == "ServiceError.NetworkError.UnknownError"

    @pytest.mark.asyncio
    async def test_stale_serving_can_be_disabled(self):
        service = StrictService()
        await service.get_data()

        service.fail = True
        with pytest.raises(errors.ExtError):
            await service.get_data()

    def test_limiter_built_from_rate_limit(self):
        service = DummyService()
        assert service.limiter.min_interval_ms == 100
        assert service.limiter.name == "dummy"

    def test_features(self):
        service = DummyService()
        assert service.supports("tickers")
        assert not service.supports("orderBooks")
        assert not service.supports("klines")

        service.require_feature("tickers")
        with pytest.raises(errors.ExtError) as exc_info:
            service.require_feature("orderBooks")
        assert exc_info.value.kind == "GatewayError.InvalidRequest.Unsupported.UnsupportedServiceFeature"
        assert exc_info.value.data == {"service": "dummy", "feature": "orderBooks"}

    def test_info(self):
        info = DummyService().info()
        assert isinstance(info, ServiceInfo)
        assert info.id == "dummy"
        assert info.upstream_type == "service"
        assert info.features == {"tickers": True, "orderBooks": False}
        assert info.demo is True

    @pytest.mark.asyncio
    async def test_health_check_never_raises(self):
        assert await DummyService().health_check() is True
        assert await DummyService(fail=True).health_check() is False

    @pytest.mark.asyncio
    async def test_shutdown_without_client(self):
        service = DummyService()
        await service.shutdown()
        assert service.client is None


# ============================================
# Tests for ServiceManager
# ============================================

class TestServiceManager:

    def test_register_and_get(self):
        manager = ServiceManager()
        service = DummyService("marketCap")
        manager.register(service)

        assert manager.get_service("marketCap") is service
        assert manager.has_service("marketCap")
        assert manager.list_services() == ["marketCap"]
        assert len(manager) == 1

    def test_duplicate_registration(self):
        manager = ServiceManager()
        manager.register(DummyService("marketCap"))
        with pytest.raises(errors.ExtError) as exc_info:
            manager.register(DummyService("marketCap"))
        assert exc_info.value.kind == "GatewayError.InvalidRequest.ObjectAlreadyExists"

    def test_unknown_service(self):
        manager = ServiceManager()
        with pytest.raises(errors.ExtError) as exc_info:
            manager.get_service("nope")
        assert exc_info.value.kind == "GatewayError.InvalidRequest.Unsupported.UnsupportedService"
        assert errors.status_of(exc_info.value) == 400

    def test_services_with_feature(self):
        manager = ServiceManager()
        manager.register(DummyService("a"))
        manager.register(DummyService("b"))
        assert manager.get_services_with_feature("tickers") == ["a", "b"]
        assert manager.get_services_with_feature("orderBooks") == []

    @pytest.mark.asyncio
    async def test_health_check_all_isolates_failures(self):
        manager = ServiceManager()
        manager.register(DummyService("marketCap"))
        manager.register(DummyService("fxConverter", fail=True))
        manager.register(DummyService("binance"))

        health = await manager.health_check_all()
        assert health == {"marketCap": True, "fxConverter": False, "binance": True}

    @pytest.mark.asyncio
    async def test_initialize_all_isolates_failures(self):
        manager = ServiceManager()
        ok = DummyService("marketCap")
        manager.register(ok)
        manager.register(DummyService("fxConverter", fail=True))

        results = await manager.initialize_all()
        assert results == {"marketCap": True, "fxConverter": False}
        assert ok.initialized

        assert await manager.shutdown_all() == {"marketCap": True, "fxConverter": True}
