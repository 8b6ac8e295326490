"""
Upstream Service - Base Class for Upstream Data Clients

Every upstream data client (market cap feed, FX rates, per-exchange market
data) derives from UpstreamService. The base class wires the core primitives
together the same way for every consumer:

    caller -> get_data() -> TTLSingleFlightCache -> fetch_data()
                                                      -> UpstreamClient.get_json()
                                                           -> RateLimiter.schedule()

Subclasses only implement fetch_data() and, when needed, override the
lifecycle hooks.

Example:
    class FxRates(UpstreamService):
        id = "fxConverter"
        name = "Fx Converter"
        base_url = "https://api.exchangerate.host"
        refresh_period = 12 * 3600

        async def fetch_data(self):
            payload = await self.client.get_json("/latest", {"base": "USD"})
            return payload.get("rates", {})

    rates = await FxRates().get_data()
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from gateway_core import errors
from gateway_core.cache import TTLSingleFlightCache
from gateway_core.config import settings
from gateway_core.logging import get_logger
from gateway_core.rate_limiter import RateLimiter
from gateway_core.schemas import ServiceInfo
from services.upstream_client import UpstreamClient


class UpstreamService(ABC):
    """
    Abstract base class for upstream-facing services.

    Class Attributes:
        id: Unique identifier (e.g. "marketCap")
        name: Display name (e.g. "Market Cap")
        upstream_type: "exchange" or "service" (selects ExchangeError / ServiceError)
        base_url: Upstream base URL (None if the service does not use HTTP)
        features: Feature flags (feature name -> supported)
        refresh_period: TTL in seconds of the cached dataset (None = settings.cache_ttl)
        rate_limit: (count, delay) used to build the default limiter
                    (None = settings.rate_limit_count / settings.rate_limit_delay)
        demo: True when the service serves generated data
        serve_stale_on_error: Serve the previous dataset when a refresh fails
                              (the error is raised only if nothing was ever fetched)

    Instance Attributes:
        cache: TTLSingleFlightCache owned by this service
        limiter: RateLimiter pacing requests to this upstream
        client: UpstreamClient (available between initialize() and shutdown())
    """

    id: str
    name: str
    upstream_type: str = "service"
    base_url: Optional[str] = None
    features: Dict[str, bool] = {}
    refresh_period: Optional[float] = None
    rate_limit: Optional[tuple] = None
    demo: bool = False
    serve_stale_on_error: bool = True

    DATA_KEY = "data"

    def __init__(self, limiter: Optional[RateLimiter] = None, cache: Optional[TTLSingleFlightCache] = None):
        if self.rate_limit is not None:
            count, delay = self.rate_limit
        else:
            count, delay = settings.rate_limit_count, settings.rate_limit_delay
        self.limiter = limiter or self.get_rate_limiter(count, delay)
        self.cache = cache or TTLSingleFlightCache(name=self.id, serve_stale_on_error=self.serve_stale_on_error)
        self.client: Optional[UpstreamClient] = None
        self.logger = get_logger(__name__)

    # ============================================
    # Data Access
    # ============================================

    @abstractmethod
    async def fetch_data(self) -> Any:
        """
        Fetch the full dataset from the upstream.

        Implementations must raise classified errors (ExtError); the
        UpstreamClient already does so for transport failures.
        """
        ...

    async def get_data(self, force_refresh: bool = False) -> Any:
        """
        Return the cached dataset, refreshing it when stale.

        Concurrent callers share a single refresh.
        """
        ttl = self.refresh_period if self.refresh_period is not None else settings.cache_ttl
        return await self.cache.get_or_refresh(self.DATA_KEY, ttl, self.fetch_data, force_refresh)

    # ============================================
    # Helpers
    # ============================================

    def get_rate_limiter(self, count: int, delay: float = 1) -> RateLimiter:
        """
        Return a new rate limiter for this upstream.

        For a rate limit of 20/s use count=20, delay=1.
        For a rate limit of 1 request / 10s use count=1, delay=10.
        """
        return RateLimiter.from_rate(count, delay, name=self.id)

    def create_client(self, base_url: Optional[str] = None) -> UpstreamClient:
        return UpstreamClient(
            self.id,
            base_url or self.base_url,
            upstream_type=self.upstream_type,
            limiter=self.limiter
        )

    def supports(self, feature: str) -> bool:
        return self.features.get(feature, False)

    def require_feature(self, feature: str) -> None:
        """
        Raises:
            ExtError: GatewayError.InvalidRequest.Unsupported.UnsupportedServiceFeature
        """
        if not self.supports(feature):
            raise errors.unsupported_service_feature(self.id, feature)

    def info(self) -> ServiceInfo:
        return ServiceInfo(
            id=self.id,
            name=self.name,
            upstream_type=self.upstream_type,
            features=dict(self.features),
            demo=self.demo
        )

    # ============================================
    # Optional Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """Open the HTTP client when the service has a base_url. Idempotent."""
        if self.base_url and self.client is None:
            self.client = self.create_client()
            await self.client.open()

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None

    async def health_check(self) -> bool:
        """
        Default health: a usable dataset can be obtained.

        Returns False (never raises) when the upstream cannot be reached.
        """
        try:
            await self.get_data()
            return True
        except errors.ExtError as e:
            self.logger.warning(f"Health check failed for {self.id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id='{self.id}')>"
