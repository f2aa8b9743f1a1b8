"""Exceptions raised by switchyard.

Server-side problems (no matching route, a handler returning something that
is not a response, a handler raising) never surface as exceptions: the router
turns them into 404/500 responses. Everything here is raised by the client.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .http.client import ClientResponse


class SwitchyardError(Exception):
    """Base class for all switchyard errors."""


class HttpClientError(SwitchyardError):
    """Raised when an outbound request cannot be completed."""


class ClientConfigurationError(HttpClientError, ValueError):
    """The request was misconfigured. Detected before any I/O."""


class UnsupportedPayloadError(HttpClientError, NotImplementedError):
    """The requested payload encoding is not implemented (multipart forms)."""


class TransportError(HttpClientError):
    """Connecting, writing or reading failed, or the peer spoke bad HTTP."""


class RequestTimeout(HttpClientError, TimeoutError):
    """The request did not complete within its configured timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"http request timed out after {timeout}s")
        self.timeout = timeout


class ResponseParseError(HttpClientError):
    """The response body could not be decoded.

    ``response`` is the buffered response as received, so the caller can
    look at the raw status code and body text.
    """

    def __init__(self, message: str, response: "ClientResponse"):
        super().__init__(message)
        self.response = response
