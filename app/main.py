"""
FastAPI Application - Upstream Gateway API

Exposes the gateway's registered upstream services, their aggregated
health and the error catalogue clients use to interpret error envelopes.

Every error response uses the same envelope:
    {"origin": "gateway"|"remote", "error": "...", "route": {...},
     "extError": {"kind": "...", "message": "...", "data": {...}}}

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from app.error_handlers import install_error_handlers
from gateway_core import errors
from gateway_core.config import settings, validate_configuration
from gateway_core.logging import logger
from gateway_core.schemas import ErrorEnvelope, ErrorKindInfo, HealthReport, ServiceInfo
from services.manager import ServiceManager


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("=== Application Starting ===")
    validate_configuration()
    await manager.initialize_all()
    logger.info("=== Started Successfully ===")

    yield

    logger.info("=== Shutting Down ===")
    await manager.shutdown_all()
    logger.info("=== Shutdown Complete ===")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="Upstream Gateway API",
    description=(
        "Gateway in front of exchanges and third-party market data services.\n\n"
        "## REST Endpoints\n"
        "- `GET /services` - Registered upstream services\n"
        "- `GET /services/{service_id}` - One service\n"
        "- `GET /health` - Aggregated health of all services\n"
        "- `GET /errors` - Error catalogue (kind, HTTP status, description)\n"
        "- `GET /errors/types` - Registered error kinds\n"
        "- `GET /errors/status?kind=...` - HTTP status of a kind\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    responses={400: {"model": ErrorEnvelope}, 500: {"model": ErrorEnvelope}}
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

install_error_handlers(app)

manager = ServiceManager()  # Global service registry


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root():
    """API information and registered services."""
    return {
        "name": "Upstream Gateway API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "services": manager.list_services()
    }


@app.get("/health", response_model=HealthReport, tags=["System"])
async def health_check():
    """Health check - every service is checked concurrently."""
    health = await manager.health_check_all()
    return HealthReport(
        status="healthy" if all(health.values()) else "degraded",
        services=health
    )


# ============================================
# Services
# ============================================

@app.get("/services", response_model=List[ServiceInfo], tags=["Services"])
async def list_services():
    """List all registered services and their features."""
    return [manager.get_service(service_id).info() for service_id in manager.list_services()]


@app.get("/services/{service_id}", response_model=ServiceInfo, tags=["Services"])
async def get_service(service_id: str):
    """
    Describe one service.

    Unknown ids produce GatewayError.InvalidRequest.Unsupported.UnsupportedService.
    """
    return manager.get_service(service_id).info()


# ============================================
# Error Catalogue
# ============================================

@app.get("/errors", response_model=List[ErrorKindInfo], tags=["Errors"])
async def list_errors():
    """Every registered error kind with its HTTP status and description."""
    return errors.list_kinds()


@app.get("/errors/types", response_model=List[str], tags=["Errors"])
async def list_error_types():
    return errors.types()


@app.get("/errors/status", tags=["Errors"])
async def get_error_status(kind: str = Query(..., description="Dotted error kind")):
    """
    HTTP status of a kind.

    Unregistered kinds report 503 with registered=false.
    """
    return {
        "kind": kind,
        "http_status": errors.status_of(kind),
        "registered": kind in errors.registry
    }
