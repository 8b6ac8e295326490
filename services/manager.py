"""
Service Manager - Central Registry for Upstream Services

Keeps track of every UpstreamService the gateway exposes, and runs
lifecycle operations and health checks across all of them through the
fan-out aggregator, so one unreachable upstream never blocks or hides the
others.

Example Usage:
    manager = ServiceManager()
    manager.register(MarketCap())
    manager.register(FxRates())
    await manager.initialize_all()

    service = manager.get_service("marketCap")
    data = await service.get_data()

    health = await manager.health_check_all()
    # {"marketCap": True, "fxConverter": False}
"""

from typing import Dict, List, Optional

from gateway_core import errors
from gateway_core.config import settings
from gateway_core.fanout import FanOutAggregator, FanOutTask
from gateway_core.logging import logger
from services.base import UpstreamService


class ServiceManager:
    """
    Registry of upstream services.

    Attributes:
        services: Dictionary mapping service ids to service instances
        aggregator: FanOutAggregator used for lifecycle and health operations
    """

    def __init__(self, aggregator: Optional[FanOutAggregator] = None):
        self.services: Dict[str, UpstreamService] = {}
        self.aggregator = aggregator or FanOutAggregator(log_failures=settings.log_fanout_failures)

    # ============================================
    # Registration & Retrieval
    # ============================================

    def register(self, service: UpstreamService) -> None:
        """
        Raises:
            ExtError: GatewayError.InvalidRequest.ObjectAlreadyExists if the id is taken
        """
        if service.id in self.services:
            raise errors.create(
                "GatewayError.InvalidRequest.ObjectAlreadyExists",
                f"Service '{service.id}' is already registered",
                {"service": service.id}
            )
        self.services[service.id] = service
        logger.info(f"Registered service '{service.id}' ({service.name})")

    def get_service(self, service_id: str) -> UpstreamService:
        """
        Get a service by id.

        Raises:
            ExtError: GatewayError.InvalidRequest.Unsupported.UnsupportedService
        """
        if service_id not in self.services:
            available = ", ".join(self.services.keys()) or "none"
            logger.error(f"Service '{service_id}' not found. Available: {available}")
            raise errors.unsupported_service(service_id)
        return self.services[service_id]

    def has_service(self, service_id: str) -> bool:
        return service_id in self.services

    def list_services(self) -> List[str]:
        return list(self.services.keys())

    def get_services_with_feature(self, feature: str) -> List[str]:
        return [service_id for service_id, service in self.services.items() if service.supports(feature)]

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> Dict[str, bool]:
        """
        Initialize every service concurrently.

        A failing service is logged and reported as False; the others are
        still initialized.
        """
        logger.info("Initializing all services...")
        results = await self._run_all("initialize")
        logger.info(f"Services initialized: {sum(results.values())}/{len(results)}")
        return results

    async def shutdown_all(self) -> Dict[str, bool]:
        logger.info("Shutting down all services...")
        results = await self._run_all("shutdown")
        logger.info("All services shut down")
        return results

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Check every service concurrently.

        Returns:
            Dict[str, bool]: service id -> healthy (a raising check counts as unhealthy)
        """
        tasks = [
            FanOutTask(service.health_check, {"service": service_id, "operation": "health_check"})
            for service_id, service in self.services.items()
        ]
        outcomes = await self.aggregator.all(tasks)
        return {
            outcome.context["service"]: bool(outcome.success and outcome.value)
            for outcome in outcomes
        }

    async def _run_all(self, operation: str) -> Dict[str, bool]:
        tasks = [
            FanOutTask(getattr(service, operation), {"service": service_id, "operation": operation})
            for service_id, service in self.services.items()
        ]
        outcomes = await self.aggregator.all(tasks)
        return {outcome.context["service"]: outcome.success for outcome in outcomes}

    def __repr__(self) -> str:
        return f"<ServiceManager(services={list(self.services.keys())})>"

    def __len__(self) -> int:
        return len(self.services)
