"""Tiny AnyIO HTTP router and client."""

from .config import Settings
from .errors import (
    ClientConfigurationError,
    HttpClientError,
    RequestTimeout,
    ResponseParseError,
    SwitchyardError,
    TransportError,
    UnsupportedPayloadError,
)
from .http import (
    ClientResponse,
    HttpClient,
    HttpResponse,
    HttpServer,
    IncomingRequest,
    Route,
    Router,
)

__all__ = [
    # Server side
    "Router",
    "Route",
    "HttpServer",
    "IncomingRequest",
    "HttpResponse",
    # Client side
    "HttpClient",
    "ClientResponse",
    # Configuration
    "Settings",
    # Errors
    "SwitchyardError",
    "HttpClientError",
    "ClientConfigurationError",
    "UnsupportedPayloadError",
    "TransportError",
    "RequestTimeout",
    "ResponseParseError",
]
