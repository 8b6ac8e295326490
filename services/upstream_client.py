"""
Upstream REST Client

Async HTTP client shared by every upstream-facing service. It handles:
- one aiohttp session per client (async context manager)
- per-request timeout
- pacing through a RateLimiter
- classification of every failure into ExchangeError.* / ServiceError.*

Classification (root depends on upstream_type):
    asyncio.TimeoutError         -> NetworkError.RequestTimeout
    HTTP 401                     -> Forbidden.InvalidAuthentication
    HTTP 403                     -> Forbidden.PermissionDenied
    HTTP 418, 429                -> NetworkError.DDosProtection
    HTTP 408, 504                -> NetworkError.RequestTimeout
    other HTTP 4xx               -> InvalidRequest.UnknownError
    HTTP 5xx, aiohttp errors,
    undecodable JSON             -> NetworkError.UnknownError

Errors are not retried here: callers (usually a TTLSingleFlightCache) decide
what a failure means for them.

Usage:
    limiter = RateLimiter.from_rate(count=1, delay=2, name="fxConverter")
    async with UpstreamClient("fxConverter", "https://api.exchangerate.host", limiter=limiter) as client:
        rates = await client.get_json("/latest", {"base": "USD"})
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional

import aiohttp

from gateway_core import errors
from gateway_core.config import settings
from gateway_core.errors import ExtError
from gateway_core.logging import get_logger, log_api_request, log_api_response
from gateway_core.rate_limiter import RateLimiter

# keys tried, in order, to find a message in an upstream error body
MESSAGE_KEYS = ("message", "msg", "reason", "error")


def extract_upstream_message(body: Any) -> Optional[str]:
    """
    Extract a human message from an upstream error payload.

    Example:
        >>> extract_upstream_message('{"code": -1121, "msg": "Invalid symbol."}')
        'Invalid symbol.'
    """
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, dict):
        return None
    for key in MESSAGE_KEYS:
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class UpstreamClient:
    """
    Async JSON client for one upstream (exchange or service).

    Attributes:
        upstream_id: Identifier used in error data (e.g. "binance", "marketCap")
        upstream_type: "exchange" or "service"
        base_url: Base URL prepended to every path
        limiter: Optional RateLimiter every request is scheduled through
        timeout: Per-request timeout in seconds
        session: aiohttp ClientSession (created on enter)

    Example:
        >>> async with UpstreamClient("binance", "https://api.binance.com", upstream_type="exchange") as client:
        ...     ticker = await client.get_json("/api/v3/ticker/price", {"symbol": "BTCUSDT"})
    """

    def __init__(
        self,
        upstream_id: str,
        base_url: str,
        upstream_type: str = "service",
        limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        if upstream_type not in ("exchange", "service"):
            raise ValueError(f"Unknown upstream type '{upstream_type}' (expected 'exchange' or 'service')")
        self.upstream_id = upstream_id
        self.upstream_type = upstream_type
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.headers = {"Accept": "application/json"}
        if headers:
            self.headers.update(headers)
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    # ============================================
    # Session Management
    # ============================================

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug(f"{self.upstream_id} session created")

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
            self.logger.debug(f"{self.upstream_id} session closed")

    # ============================================
    # Classification
    # ============================================

    def error(self, suffix: str, message: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> ExtError:
        """Build an error of this client's family (ExchangeError or ServiceError)."""
        return errors.upstream_error(self.upstream_type, self.upstream_id, suffix, message, extra)

    def classify_status(self, status: int, reason: Optional[str] = None, body: Any = None) -> ExtError:
        """
        Map an HTTP error status to a classified error.

        Args:
            status: HTTP status code (>= 400)
            reason: HTTP reason phrase
            body: Response body (used to find an upstream message)
        """
        extra = {"error": {"statusCode": status, "statusMessage": reason}}
        message = extract_upstream_message(body)

        if status == 401:
            suffix = "Forbidden.InvalidAuthentication"
        elif status == 403:
            suffix = "Forbidden.PermissionDenied"
        elif status in (418, 429):
            suffix = "NetworkError.DDosProtection"
        elif status in (408, 504):
            suffix = "NetworkError.RequestTimeout"
        elif 400 <= status < 500:
            suffix = "InvalidRequest.UnknownError"
        else:
            suffix = "NetworkError.UnknownError"
        return self.error(suffix, message, extra)

    # ============================================
    # HTTP Requests
    # ============================================

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document, paced by the limiter if one is configured.

        Args:
            path: Path appended to base_url (e.g. "/latest")
            params: Optional query parameters

        Returns:
            Decoded JSON

        Raises:
            ExtError: Classified upstream failure
            RuntimeError: If the session was not opened
        """
        if self.limiter is not None:
            return await self.limiter.schedule(self._get, path, params)
        return await self._get(path, params)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.session is None:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{self.base_url}{path}"
        log_api_request(self.upstream_id, path, params)
        started = time.monotonic()

        try:
            async with self.session.get(
                url,
                params=params,
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                log_api_response(self.upstream_id, path, resp.status, time.monotonic() - started)

                if resp.status >= 400:
                    body = await resp.text()
                    self.logger.error(f"HTTP {resp.status} on {self.upstream_id} {path}: {body[:200]}")
                    raise self.classify_status(resp.status, resp.reason, body)

                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise self.error(
                        "NetworkError.UnknownError",
                        f"Invalid JSON received from {self.upstream_type} '{self.upstream_id}'"
                    ) from e

        except asyncio.TimeoutError as e:
            self.logger.error(f"Timeout on {self.upstream_id} {path} after {self.timeout}s")
            raise self.error("NetworkError.RequestTimeout") from e

        except aiohttp.ClientError as e:
            self.logger.error(f"Request failed on {self.upstream_id} {path}: {e}")
            raise self.error("NetworkError.UnknownError", extra={"error": str(e)}) from e

    def __repr__(self) -> str:
        return f"<UpstreamClient(upstream_id={self.upstream_id!r}, base_url={self.base_url!r})>"
