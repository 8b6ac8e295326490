"""
HTTP Error Boundary

Every failure leaving the API is rendered as the same JSON envelope:

    {
        "origin": "gateway" | "remote",
        "error": "<human message>",
        "route": {"method": "GET", "path": "/services/foo"},
        "extError": {"kind": "...", "message": "...", "data": {...}}
    }

with the HTTP status taken from the error registry. Request validation
failures are translated into GatewayError.InvalidRequest.* first, and
unknown exceptions into GatewayError.InternalError, so clients only ever
see classified errors.
"""

from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway_core import errors
from gateway_core.errors import ExtError
from gateway_core.logging import get_logger

logger = get_logger(__name__)


def _route(request: Request) -> Dict[str, str]:
    return {"method": request.method, "path": request.url.path}


def error_response(request: Request, error: BaseException) -> JSONResponse:
    """Render any exception as an error envelope response."""
    ext = errors.as_ext_error(error)
    return JSONResponse(
        status_code=errors.status_of(ext),
        content=errors.to_envelope(ext, route=_route(request))
    )


def validation_error_to_ext_error(exc: RequestValidationError) -> ExtError:
    """
    Translate a FastAPI/pydantic validation error into the taxonomy.

    Only the first reported problem is used:
        - "missing"   -> GatewayError.InvalidRequest.MissingParameters
        - anything else with a named location -> InvalidParameter
        - otherwise   -> GatewayError.InvalidRequest.UnknownError
    """
    details = exc.errors()
    if not details:
        return errors.create("GatewayError.InvalidRequest.UnknownError")

    detail = details[0]
    loc = [part for part in detail.get("loc", ()) if part not in ("query", "path", "body", "header", "cookie")]
    name = str(loc[-1]) if loc else None

    if name is None:
        return errors.create("GatewayError.InvalidRequest.UnknownError", detail.get("msg"))
    if detail.get("type") == "missing":
        return errors.missing_parameters(name)

    value: Any = detail.get("input", "")
    return errors.invalid_parameter(name, value, f"Parameter '{name}' is invalid: {detail.get('msg')}")


async def ext_error_handler(request: Request, exc: ExtError) -> JSONResponse:
    if errors.status_of(exc) >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.debug(f"{request.method} {request.url.path} rejected: {exc}")
    return error_response(request, exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(request, validation_error_to_ext_error(exc))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        error = errors.create("GatewayError.UnknownRoute")
    elif exc.status_code in (401, 403):
        error = errors.create("GatewayError.Forbidden")
    else:
        error = errors.create("GatewayError.InvalidRequest.UnknownError", str(exc.detail))
    return error_response(request, error)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Exception ({request.method} {request.url.path})", exc_info=exc)
    return error_response(request, errors.internal_error())


def install_error_handlers(app: FastAPI) -> None:
    """Register every boundary handler on the application."""
    app.add_exception_handler(ExtError, ext_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
