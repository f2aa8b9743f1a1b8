"""HTTP server, router and client built on AnyIO.

The router maps ``(method, path template)`` to handlers, the server feeds it
from TCP connections, and the client makes single outbound requests for
handlers that need to call other services.
"""

from .client import ClientResponse, HttpClient, ResponseStream, build_url
from .messages import Buffered, Empty, HttpResponse, IncomingRequest, Streamed
from .router import Route, Router
from .server import HttpServer, write_response

__all__ = [
    "Buffered",
    "ClientResponse",
    "Empty",
    "HttpClient",
    "HttpResponse",
    "HttpServer",
    "IncomingRequest",
    "ResponseStream",
    "Route",
    "Router",
    "Streamed",
    "build_url",
    "write_response",
]
