"""
Error Taxonomy - Classified Failures for the Gateway

Every failure that can reach a caller of the gateway is classified into a
*kind*: a dotted path such as ``ExchangeError.NetworkError.RequestTimeout``.
Each kind is registered exactly once with an HTTP status and a description,
and optionally a default message template.

Design:
    - There is a single raisable class, ExtError. The kind is data, not a
      subclass, so "is this error part of family X" is a prefix test on the
      kind string (see ErrorRegistry.is_member).
    - Errors are immutable once constructed: kind, message and data are
      read-only properties.
    - Classification happens where the failure is detected (usually the
      upstream client). Cache, rate limiter and fan-out propagate ExtError
      instances untouched.

Families:
    GatewayError   - detected locally (bad input, unsupported feature, internal fault)
    ExchangeError  - detected while talking to an exchange
    ServiceError   - detected while talking to any other upstream service

Usage:
    from gateway_core import errors

    err = errors.create(
        "GatewayError.InvalidRequest.MissingParameters",
        data={"parameters": ["pair"]}
    )
    str(err)                          # "GatewayError.InvalidRequest.MissingParameters: Parameter 'pair' is missing"
    errors.status_of(err)             # 400
    errors.is_member(err, "GatewayError.InvalidRequest")  # True
    errors.to_envelope(err)           # {"origin": "gateway", "error": ..., "extError": {...}}
"""

import copy
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union

from gateway_core.logging import get_logger

logger = get_logger(__name__)

MessageTemplate = Union[str, Callable[[Dict[str, Any]], str], None]

# Status returned for kinds nobody registered
UNKNOWN_KIND_STATUS = 503

ORIGIN_GATEWAY = "gateway"
ORIGIN_REMOTE = "remote"


@dataclass(frozen=True)
class ErrorKind:
    """
    A registered error kind.

    Attributes:
        kind: Dotted taxonomy path (e.g. "ServiceError.NetworkError.DDosProtection")
        http_status: Status used when the error reaches the HTTP boundary
        description: Human description of when this kind is used
        default_message: Template used when an error is created without a message.
                         Either a str.format string over the error data, or a
                         callable receiving the data dict.
    """

    kind: str
    http_status: int
    description: str
    default_message: MessageTemplate = None

    @property
    def family(self) -> List[str]:
        return self.kind.split(".")

    def render_message(self, data: Dict[str, Any]) -> str:
        template = self.default_message
        if template is None:
            return self.description
        if callable(template):
            return template(data)
        try:
            return template.format(**data)
        except (KeyError, IndexError):
            # template refers to data the caller did not provide
            return self.description


class ExtError(Exception):
    """
    A classified, immutable gateway error.

    Instances are normally built through ErrorRegistry.create() (or the
    module-level create() helper) so that the kind is guaranteed to be
    registered.

    Attributes:
        kind: Dotted taxonomy path
        message: Human readable message
        data: Structured diagnostic context (e.g. {"exchange": "binance", "pair": "USDT-BTC"})
    """

    def __init__(self, kind: str, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self._kind = kind
        self._message = message
        self._data = copy.deepcopy(dict(data)) if data else {}

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def data(self) -> Dict[str, Any]:
        """Copy of the error data."""
        return copy.deepcopy(self._data)

    @property
    def family(self) -> List[str]:
        return self._kind.split(".")

    def to_dict(self) -> Dict[str, Any]:
        """Return the {kind, message, data} triple exposed to clients."""
        return {"kind": self._kind, "message": self._message, "data": copy.deepcopy(self._data)}

    def __str__(self) -> str:
        return f"{self._kind}: {self._message}"

    def __repr__(self) -> str:
        return f"<ExtError(kind={self._kind!r}, message={self._message!r}, data={self._data!r})>"


def _kind_of(error_or_kind: Union[ExtError, str]) -> Optional[str]:
    if isinstance(error_or_kind, ExtError):
        return error_or_kind.kind
    if isinstance(error_or_kind, str):
        return error_or_kind
    return None


class ErrorRegistry:
    """
    Closed, centrally registered set of error kinds.

    Kinds are registered at process start; once the registry is frozen,
    no kind can be added. Lookups never fail: an unknown kind maps to
    UNKNOWN_KIND_STATUS.

    Example:
        >>> registry = ErrorRegistry()
        >>> registry.register("GatewayError.InternalError", 500, "Internal fault", "An error occurred")
        >>> err = registry.create("GatewayError.InternalError")
        >>> registry.status_of(err)
        500
        >>> registry.status_of("Nope.Nothing")
        503
    """

    # Roots whose errors were detected while talking to an upstream
    REMOTE_ROOTS = ("ExchangeError", "ServiceError")

    def __init__(self):
        self._kinds: Dict[str, ErrorKind] = {}
        self._frozen = False

    # ============================================
    # Registration
    # ============================================

    def register(
        self,
        kind: str,
        http_status: int,
        description: str,
        default_message: MessageTemplate = None
    ) -> ErrorKind:
        """
        Register a new error kind.

        Args:
            kind: Dotted taxonomy path (at least "Root.Leaf")
            http_status: HTTP status for this kind
            description: Human description
            default_message: Optional message template (str.format string or callable)

        Returns:
            ErrorKind: The registered kind

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the kind is malformed or already registered
        """
        if self._frozen:
            raise RuntimeError(f"Cannot register '{kind}': error registry is frozen")
        segments = kind.split(".") if isinstance(kind, str) else []
        if len(segments) < 2 or not all(segments):
            raise ValueError(f"Invalid error kind '{kind}': expected a dotted path such as 'Root.Leaf'")
        if kind in self._kinds:
            raise ValueError(f"Error kind '{kind}' is already registered")

        entry = ErrorKind(
            kind=kind,
            http_status=int(http_status),
            description=description,
            default_message=default_message
        )
        self._kinds[kind] = entry
        return entry

    def freeze(self) -> None:
        """Prevent any further registration."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ============================================
    # Construction
    # ============================================

    def get(self, kind: str) -> ErrorKind:
        """
        Raises:
            KeyError: If the kind is not registered
        """
        try:
            return self._kinds[kind]
        except KeyError:
            raise KeyError(f"Error kind '{kind}' is not registered") from None

    def create(
        self,
        kind: str,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> ExtError:
        """
        Build an error of a registered kind.

        Args:
            kind: Registered dotted kind
            message: Explicit message (default template used if None or empty)
            data: Structured context attached verbatim

        Returns:
            ExtError: The new error (not raised)

        Raises:
            KeyError: If the kind is not registered

        Example:
            >>> err = registry.create("ExchangeError.NetworkError.DDosProtection", data={"exchange": "binance"})
            >>> err.message
            "Request to exchange 'binance' was refused by DDoS protection"
        """
        entry = self.get(kind)
        data = dict(data) if data else {}
        if not message:
            message = entry.render_message(data)
        return ExtError(kind, message, data)

    # ============================================
    # Classification
    # ============================================

    @staticmethod
    def family_of(error_or_kind: Union[ExtError, str]) -> List[str]:
        """
        Return the dotted path segments of a kind.

        Example:
            >>> ErrorRegistry.family_of("ExchangeError.NetworkError.RequestTimeout")
            ['ExchangeError', 'NetworkError', 'RequestTimeout']
        """
        kind = _kind_of(error_or_kind)
        if not kind:
            return []
        return kind.split(".")

    @staticmethod
    def is_member(error_or_kind: Any, family: str) -> bool:
        """
        Check whether an error (or kind) belongs to a family.

        A kind belongs to a family when it equals the family or starts with
        the family followed by a dot. "ExchangeError.Net" is therefore not a
        family of "ExchangeError.NetworkError.RequestTimeout".
        """
        kind = _kind_of(error_or_kind)
        if not kind or not family:
            return False
        return kind == family or kind.startswith(family + ".")

    def status_of(self, error_or_kind: Any) -> int:
        """Registered HTTP status, or 503 for anything unregistered."""
        kind = _kind_of(error_or_kind)
        entry = self._kinds.get(kind) if kind else None
        if entry is None:
            return UNKNOWN_KIND_STATUS
        return entry.http_status

    def description_of(self, error_or_kind: Any) -> Optional[str]:
        kind = _kind_of(error_or_kind)
        entry = self._kinds.get(kind) if kind else None
        return entry.description if entry else None

    def origin_of(self, error: ExtError) -> str:
        """Return "remote" for upstream families, "gateway" otherwise."""
        for root in self.REMOTE_ROOTS:
            if self.is_member(error, root):
                return ORIGIN_REMOTE
        return ORIGIN_GATEWAY

    # ============================================
    # Boundary helpers
    # ============================================

    def as_ext_error(self, exc: BaseException) -> ExtError:
        """
        Return exc if already classified, otherwise wrap it into
        GatewayError.InternalError.
        """
        if isinstance(exc, ExtError):
            return exc
        return self.create("GatewayError.InternalError")

    def to_envelope(self, error: BaseException, route: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Render an error as the JSON envelope sent to clients.

        Args:
            error: Any exception (unclassified ones become GatewayError.InternalError)
            route: Optional {"method": ..., "path": ...} of the failed request

        Returns:
            {"origin": "gateway"|"remote", "error": message, "extError": {kind, message, data}}
            plus "route" when provided
        """
        ext = self.as_ext_error(error)
        envelope = {
            "origin": self.origin_of(ext),
            "error": ext.message,
            "extError": ext.to_dict()
        }
        if route is not None:
            envelope["route"] = route
        return envelope

    # ============================================
    # Introspection
    # ============================================

    def types(self) -> List[str]:
        """Sorted list of all registered kinds."""
        return sorted(self._kinds.keys())

    def list(self) -> List[Dict[str, Any]]:
        """All registered kinds with their status and description, sorted by kind."""
        return [
            {
                "kind": kind,
                "http_status": self._kinds[kind].http_status,
                "description": self._kinds[kind].description
            }
            for kind in self.types()
        ]

    def __contains__(self, kind: str) -> bool:
        return kind in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)

    def __repr__(self) -> str:
        return f"<ErrorRegistry(kinds={len(self._kinds)}, frozen={self._frozen})>"


# ============================================
# Default Message Templates
# ============================================

def _missing_parameters_message(data: Dict[str, Any]) -> str:
    parameters = data.get("parameters") or []
    if len(parameters) == 1:
        return f"Parameter '{parameters[0]}' is missing"
    return f"One parameter in ({','.join(str(p) for p in parameters)}) is missing"


def _conflicting_parameters_message(data: Dict[str, Any]) -> str:
    parameters = data.get("parameters") or []
    return f"Parameters ({','.join(str(p) for p in parameters)}) are exclusive"


# (kind, http status, description, default message)
DEFAULT_KINDS = [
    # -- Gateway errors
    ("GatewayError.InternalError", 500,
     "Error generated by gateway when an internal error occurs (ie: unexpected exception)",
     "An error occurred"),
    ("GatewayError.UnknownRoute", 404,
     "Error generated by gateway when an unknown route is requested",
     "Unknown route"),
    ("GatewayError.Forbidden", 403,
     "Error generated by gateway when user is not allowed to connect (ip filtering or invalid api key)",
     "Forbidden access"),
    ("GatewayError.InvalidRequest.UnknownError", 400,
     "Error generated by gateway when a request is invalid",
     "Invalid request"),
    ("GatewayError.InvalidRequest.MissingParameters", 400,
     "Error generated by gateway when parameters are missing",
     _missing_parameters_message),
    ("GatewayError.InvalidRequest.ConflictingParameters", 409,
     "Error generated by gateway when conflicting parameters exist",
     _conflicting_parameters_message),
    ("GatewayError.InvalidRequest.InvalidParameter", 400,
     "Error generated by gateway when client provides an invalid parameter for REST API",
     "Parameter '{parameterName}' is invalid"),
    ("GatewayError.InvalidRequest.ObjectNotFound", 404,
     "Error generated by gateway when a try to access a non existing object",
     "Object does not exist"),
    ("GatewayError.InvalidRequest.ObjectAlreadyExists", 409,
     "Error generated by gateway when a try create an object which already exists",
     "Object already exists"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedService", 400,
     "Error generated by gateway when client tries to use an unsupported service",
     "Service '{service}' is not supported"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedServiceFeature", 400,
     "Error generated by gateway when client tries to use an unsupported feature for a given service",
     "Feature '{feature}' is not supported by service '{service}'"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedExchange", 400,
     "Error generated by gateway when client tries to use an unsupported exchange",
     "Exchange '{exchange}' is not supported"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedExchangeFeature", 400,
     "Error generated by gateway when client tries to use an unsupported feature for a given exchange",
     "Feature '{feature}' is not supported by exchange '{exchange}'"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedExchangePair", 400,
     "Error generated by gateway when client tries to use an unsupported pair for a given exchange",
     "Pair '{pair}' is not supported by exchange '{exchange}'"),
    ("GatewayError.InvalidRequest.Unsupported.UnsupportedKlineInterval", 400,
     "Error generated by gateway when client tries to use an unsupported kline interval for a given exchange",
     "Klines interval '{interval}' is not supported by exchange '{exchange}'"),

    # -- Exchange errors
    ("ExchangeError.Forbidden.InvalidAuthentication", 403,
     "Used when auth credentials are refused by exchange",
     "Authentication was refused by exchange '{exchange}'"),
    ("ExchangeError.Forbidden.PermissionDenied", 403,
     "Used when exchange request is not allowed",
     "Request was denied by exchange '{exchange}'"),
    ("ExchangeError.InvalidRequest.UnknownError", 400,
     "Used when exchange API returns an error",
     "An error occurred on exchange '{exchange}'"),
    ("ExchangeError.InvalidRequest.OrderError.OrderNotFound", 404,
     "Used when an order was not found on the exchange",
     "Order '{orderNumber}' was not found on exchange '{exchange}'"),
    ("ExchangeError.InvalidRequest.OrderError.OrderNotOpen", 400,
     "Used when user tries to cancel an order which is already closed",
     "Order '{orderNumber}' is not open"),
    ("ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.InvalidQuantity", 400,
     "Used when the requested quantity does not match exchange filters",
     "Quantity '{quantity}' is not valid"),
    ("ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.InvalidRate", 400,
     "Used when the requested rate does not match exchange filters",
     "Rate '{rate}' is not valid"),
    ("ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.InvalidPrice", 400,
     "Used when the requested price (quantity * rate) does not match exchange filters",
     "Amount is not valid"),
    ("ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.InsufficientFunds", 400,
     "Used when the user has not enough funds to create an order",
     "Insufficient funds"),
    ("ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.UnknownError", 400,
     "Used when order was refused because of an unknown error",
     "Order definition is not valid"),
    ("ExchangeError.NetworkError.RequestTimeout", 504,
     "Used when a request to an exchange times out",
     "Request timed out when trying to contact exchange '{exchange}'"),
    ("ExchangeError.NetworkError.DDosProtection", 429,
     "Used when a request to an exchange was blocked by DDos protection",
     "Request to exchange '{exchange}' was refused by DDoS protection"),
    ("ExchangeError.NetworkError.UnknownError", 503,
     "Used when an unknown http error occurs when trying to contact exchange",
     "A network error occurred when trying to contact exchange '{exchange}'"),

    # -- Service errors
    ("ServiceError.Forbidden.InvalidAuthentication", 403,
     "Used when auth credentials are refused by service",
     "Authentication was refused by service '{service}'"),
    ("ServiceError.Forbidden.PermissionDenied", 403,
     "Used when service request is not allowed",
     "Request was denied by service '{service}'"),
    ("ServiceError.InvalidRequest.UnknownError", 400,
     "Used when service API returns an error",
     "An error occurred on service '{service}'"),
    ("ServiceError.NetworkError.RequestTimeout", 504,
     "Used when a request to a service times out",
     "Request timed out when trying to contact service '{service}'"),
    ("ServiceError.NetworkError.DDosProtection", 429,
     "Used when a request to a service was blocked by DDos protection",
     "Request to service '{service}' was refused by DDoS protection"),
    ("ServiceError.NetworkError.UnknownError", 503,
     "Used when an unknown http error occurs when trying to contact service",
     "A network error occurred when trying to contact service '{service}'"),
]


def build_default_registry() -> ErrorRegistry:
    """Create a registry holding the full default catalogue (not frozen)."""
    default = ErrorRegistry()
    for kind, http_status, description, template in DEFAULT_KINDS:
        default.register(kind, http_status, description, template)
    return default


# Process-wide registry: populated once, immutable afterwards
registry = build_default_registry()
registry.freeze()


# ============================================
# Module-level Shortcuts (default registry)
# ============================================

def create(kind: str, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> ExtError:
    return registry.create(kind, message, data)


def status_of(error_or_kind: Any) -> int:
    return registry.status_of(error_or_kind)


def family_of(error_or_kind: Union[ExtError, str]) -> List[str]:
    return registry.family_of(error_or_kind)


def is_member(error_or_kind: Any, family: str) -> bool:
    return registry.is_member(error_or_kind, family)


def as_ext_error(exc: BaseException) -> ExtError:
    return registry.as_ext_error(exc)


def to_envelope(error: BaseException, route: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return registry.to_envelope(error, route)


def types() -> List[str]:
    return registry.types()


def list_kinds() -> List[Dict[str, Any]]:
    return registry.list()


# ============================================
# Typed Constructors for Common Kinds
# ============================================

def internal_error(message: Optional[str] = None) -> ExtError:
    return create("GatewayError.InternalError", message)


def missing_parameters(parameters: Union[str, List[str]], message: Optional[str] = None) -> ExtError:
    """
    Example:
        >>> missing_parameters("pair").message
        "Parameter 'pair' is missing"
        >>> missing_parameters(["pair", "symbol"]).message
        'One parameter in (pair,symbol) is missing'
    """
    if isinstance(parameters, str):
        parameters = [parameters]
    return create("GatewayError.InvalidRequest.MissingParameters", message, {"parameters": list(parameters)})


def conflicting_parameters(parameters: List[str], message: Optional[str] = None) -> ExtError:
    return create("GatewayError.InvalidRequest.ConflictingParameters", message, {"parameters": list(parameters)})


def invalid_parameter(
    name: str,
    value: Any,
    message: Optional[str] = None,
    cannot_be_empty: bool = False
) -> ExtError:
    if not message and cannot_be_empty:
        message = f"Parameter '{name}' cannot be empty"
    return create(
        "GatewayError.InvalidRequest.InvalidParameter",
        message,
        {"parameterName": name, "parameterValue": value}
    )


def unsupported_service(service_id: str, message: Optional[str] = None) -> ExtError:
    return create("GatewayError.InvalidRequest.Unsupported.UnsupportedService", message, {"service": service_id})


def unsupported_service_feature(service_id: str, feature: str, message: Optional[str] = None) -> ExtError:
    return create(
        "GatewayError.InvalidRequest.Unsupported.UnsupportedServiceFeature",
        message,
        {"service": service_id, "feature": feature}
    )


def order_definition_error(
    leaf: str,
    exchange: str,
    pair: str,
    rate: Any,
    quantity: Any,
    message: Optional[str] = None
) -> ExtError:
    """
    Build one of the ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.* kinds.

    For InvalidPrice and InsufficientFunds, data also carries
    price = quantity * rate (computed with Decimal to avoid float drift).

    Args:
        leaf: Last segment of the kind (e.g. "InvalidPrice")
    """
    kind = f"ExchangeError.InvalidRequest.OrderError.InvalidOrderDefinition.{leaf}"
    data = {"exchange": exchange, "pair": pair, "quantity": quantity, "rate": rate}
    if leaf in ("InvalidPrice", "InsufficientFunds"):
        try:
            data["price"] = float(Decimal(str(quantity)) * Decimal(str(rate)))
        except (InvalidOperation, ValueError):
            logger.debug(f"Cannot compute price from quantity={quantity!r} and rate={rate!r}")
    return create(kind, message, data)


def upstream_error(
    upstream_type: str,
    upstream_id: str,
    suffix: str,
    message: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None
) -> ExtError:
    """
    Build an ExchangeError.* or ServiceError.* error.

    Args:
        upstream_type: "exchange" or "service"
        upstream_id: Identifier of the upstream (stored as data["exchange"] or data["service"])
        suffix: Kind below the root, e.g. "NetworkError.RequestTimeout"
        message: Optional explicit message
        extra: Optional extra data (e.g. {"error": {"statusCode": 500, "statusMessage": "..."}})

    Raises:
        ValueError: If upstream_type is neither "exchange" nor "service"
    """
    if upstream_type == "exchange":
        root = "ExchangeError"
    elif upstream_type == "service":
        root = "ServiceError"
    else:
        raise ValueError(f"Unknown upstream type '{upstream_type}' (expected 'exchange' or 'service')")
    data = {upstream_type: upstream_id}
    if extra:
        data.update(extra)
    return create(f"{root}.{suffix}", message, data)
