"""
Boundary Schemas

Pydantic models describing what the gateway sends to HTTP clients:
the error envelope, the error catalogue and service descriptions.

Models:
    - ExtErrorModel: {kind, message, data} triple of a classified error
    - ErrorRoute: Method and path of the request that failed
    - ErrorEnvelope: Body of every error response
    - ErrorKindInfo: One entry of the error catalogue
    - ServiceInfo: Public description of a registered upstream service
    - HealthReport: Aggregated health of all services
"""

from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================
# Error Envelope
# ============================================

class ExtErrorModel(BaseModel):
    """
    Classified error as exposed to clients.

    Attributes:
        kind: Dotted taxonomy path
        message: Human readable message
        data: Structured diagnostic context
    """

    kind: str = Field(
        ...,
        description="Dotted error kind",
        examples=["ExchangeError.NetworkError.RequestTimeout"]
    )

    message: str = Field(..., description="Human readable message")

    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structured context",
        examples=[{"exchange": "binance"}]
    )


class ErrorRoute(BaseModel):
    method: str
    path: str


class ErrorEnvelope(BaseModel):
    """
    Body of every error response.

    Attributes:
        origin: "gateway" for locally detected errors, "remote" for upstream ones
        error: Human readable message (same as extError.message)
        extError: The classified error
        route: Request that failed (optional)
    """

    model_config = ConfigDict(populate_by_name=True)

    origin: Literal["gateway", "remote"]
    error: str
    ext_error: ExtErrorModel = Field(..., alias="extError")
    route: Optional[ErrorRoute] = None


# ============================================
# Catalogue & Services
# ============================================

class ErrorKindInfo(BaseModel):
    """One registered error kind."""

    kind: str
    http_status: int = Field(..., ge=100, le=599)
    description: str


class ServiceInfo(BaseModel):
    """
    Public description of an upstream service.

    Attributes:
        id: Service identifier (e.g. "marketCap")
        name: Display name (e.g. "Market Cap")
        upstream_type: "exchange" or "service"
        features: Feature flags (feature name -> enabled)
        demo: True if the service serves generated data
    """

    id: str
    name: str
    upstream_type: Literal["exchange", "service"] = "service"
    features: Dict[str, bool] = Field(default_factory=dict)
    demo: bool = False

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure identifier is not blank"""
        if not v.strip():
            raise ValueError("service id cannot be empty")
        return v


class HealthReport(BaseModel):
    status: Literal["healthy", "degraded"]
    services: Dict[str, bool] = Field(default_factory=dict)
