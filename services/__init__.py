"""
Services Package

Upstream-facing layer built on gateway_core:
- UpstreamClient: aiohttp JSON client classifying failures into ExchangeError/ServiceError
- UpstreamService: Base class combining client, rate limiter and cache
- ServiceManager: Registry running lifecycle and health checks through the fan-out aggregator
"""
