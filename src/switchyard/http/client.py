"""Outbound HTTP/1.1 requests over AnyIO sockets.

An ``HttpClient`` describes exactly one request. Build it with one of the
per-verb constructors and pick how the response body should come back:

    post = await HttpClient.get(f"{api}/posts/1", headers={ACCEPT: APPLICATION_JSON}).as_json()

    response = await HttpClient.get(url).as_stream()
    async with response.body:
        async for chunk in response.body:
            ...

Every mode goes through the same ``_fetch``: buffered modes drain the body
before returning, streaming modes return as soon as the response head is in.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass, replace
from typing import Any, Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

import anyio
from anyio.abc import AnyByteSendStream, ByteReceiveStream, ByteStream, TaskGroup
from anyio.streams.buffered import BufferedByteReceiveStream
from typing_extensions import override

from ..errors import (
    ClientConfigurationError,
    ResponseParseError,
    RequestTimeout,
    TransportError,
    UnsupportedPayloadError,
)
from .headers import APPLICATION_FORM_URLENCODED, APPLICATION_JSON
from .wire import (
    LAST_CHUNK,
    ChunkedReader,
    FixedLengthReader,
    HeaderMap,
    UntilCloseReader,
    charset,
    content_length,
    encode_chunk,
    encode_head,
    is_chunked,
    normalize_headers,
    parse_response_head,
    read_all,
    read_head,
)


logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}
_PAYLOAD_METHODS = frozenset({"PUT", "POST", "PATCH"})
_MAX_HEAD_BYTES = 64 * 1024


def build_url(url: str, query: Mapping[str, Any] | None) -> str:
    """Return ``url`` with ``query`` URL-encoded onto its query string."""
    if not query:
        return url
    parts = urlsplit(url)
    encoded = urlencode(query, doseq=True)
    return urlunsplit(parts._replace(query=f"{parts.query}&{encoded}" if parts.query else encoded))


@dataclass(frozen=True, slots=True)
class ClientResponse:
    """A response as seen by the caller.

    ``body`` is the decoded text, the parsed JSON value (``as_json``) or a
    live ``ResponseStream`` (``as_stream`` / ``pipe_to``).
    """

    status_code: int
    headers: HeaderMap
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class ResponseStream(ByteReceiveStream):
    """A response body still on the wire. Closing it closes the connection."""

    def __init__(self, reader: ByteReceiveStream, connection: ByteStream):
        self._reader = reader
        self._connection = connection

    @override
    async def receive(self, max_bytes: int = 65536) -> bytes:
        try:
            return await self._reader.receive(max_bytes)
        except (
            OSError,
            ValueError,
            anyio.BrokenResourceError,
            anyio.ClosedResourceError,
            anyio.IncompleteRead,
        ) as e:
            raise TransportError(f"response body failed: {e!r}") from e

    @override
    async def aclose(self) -> None:
        await self._reader.aclose()
        await self._connection.aclose()

    async def read(self) -> bytes:
        """Drain the rest of the body and close the connection."""
        async with self:
            return await read_all(self)


async def _pump(source: ResponseStream, sink: AnyByteSendStream) -> None:
    try:
        async with source:
            async for chunk in source:
                await sink.send(chunk)
    finally:
        await sink.aclose()


def _response_reader(
    source: BufferedByteReceiveStream, method: str, status: int, headers: HeaderMap
) -> ByteReceiveStream:
    if method == "HEAD" or 100 <= status < 200 or status in (204, 304):
        return FixedLengthReader(source, 0)
    if is_chunked(headers):
        return ChunkedReader(source)
    length = content_length(headers)
    if length is not None:
        return FixedLengthReader(source, length)
    return UntilCloseReader(source)


@dataclass(frozen=True, slots=True)
class HttpClient:
    """One outbound HTTP request.

    Attributes:
        url: Target URL; must start with ``http://`` or ``https://``
        method: HTTP verb
        body: Raw payload: bytes, str, an async iterable of bytes (sent chunked)
            or any other JSON-serialisable value
        headers: Request headers
        form: Mapping sent as ``application/x-www-form-urlencoded``
        multipart_form: Not supported; setting it fails the request
        query: Mapping URL-encoded onto the query string
        timeout: Seconds allowed for connect + send + response head (and the
            body too in buffered modes)
    """

    url: str
    method: str
    body: Any = None
    headers: Mapping[str, str] | None = None
    form: Mapping[str, Any] | None = None
    multipart_form: Mapping[str, Any] | None = None
    query: Mapping[str, Any] | None = None
    timeout: float | None = None

    # --- Request builders ---

    @classmethod
    def delete(cls, url: str, *, headers=None, query=None, timeout=None) -> "HttpClient":
        return cls(url, "DELETE", headers=headers, query=query, timeout=timeout)

    @classmethod
    def get(cls, url: str, *, headers=None, query=None, timeout=None) -> "HttpClient":
        return cls(url, "GET", headers=headers, query=query, timeout=timeout)

    @classmethod
    def patch(
        cls, url: str, *, body=None, form=None, multipart_form=None, headers=None, query=None, timeout=None
    ) -> "HttpClient":
        return cls(
            url, "PATCH", body=body, form=form, multipart_form=multipart_form,
            headers=headers, query=query, timeout=timeout,
        )

    @classmethod
    def post(
        cls, url: str, *, body=None, form=None, multipart_form=None, headers=None, query=None, timeout=None
    ) -> "HttpClient":
        return cls(
            url, "POST", body=body, form=form, multipart_form=multipart_form,
            headers=headers, query=query, timeout=timeout,
        )

    @classmethod
    def put(
        cls, url: str, *, body=None, form=None, multipart_form=None, headers=None, query=None, timeout=None
    ) -> "HttpClient":
        return cls(
            url, "PUT", body=body, form=form, multipart_form=multipart_form,
            headers=headers, query=query, timeout=timeout,
        )

    # --- Response modes ---

    async def as_empty(self) -> ClientResponse:
        """Execute the request; the caller doesn't expect a body."""
        return await self._fetch()

    async def as_text(self) -> ClientResponse:
        return await self._fetch()

    async def as_raw(self) -> ClientResponse:
        return await self._fetch()

    async def as_json(self) -> ClientResponse:
        """Execute the request and parse the body as JSON.

        Raises ResponseParseError, carrying the text response, if it isn't JSON.
        """
        response = await self._fetch()
        try:
            parsed = json.loads(response.body)
        except ValueError as e:
            raise ResponseParseError(f"Unable to parse response body as JSON: {e}", response) from e
        return replace(response, body=parsed)

    async def as_stream(self) -> ClientResponse:
        """Execute the request; ``body`` is a ResponseStream the caller must close."""
        return await self._fetch(stream=True)

    async def pipe_to(self, sink: AnyByteSendStream, *, task_group: TaskGroup) -> ClientResponse:
        """Execute the request and copy the body into ``sink`` in the background.

        Returns once the response head has arrived; the copy runs in
        ``task_group`` and closes ``sink`` when the body ends.
        """
        response = await self._fetch(stream=True)
        task_group.start_soon(_pump, response.body, sink)
        return response

    # --- Internals ---

    def _check(self) -> None:
        payloads = [p for p in (self.body, self.form, self.multipart_form) if p is not None]
        if len(payloads) > 1:
            raise ClientConfigurationError(
                "Only one payload type [body, form or multipart_form] may be populated per request"
            )
        if not self.url.lower().startswith(("http://", "https://")):
            raise ClientConfigurationError(
                f"Expected URL [{self.url}] to start with protocol 'http://' or 'https://'"
            )
        if self.multipart_form is not None:
            raise UnsupportedPayloadError("multipart_form is not supported")

    def _encode_payload(self, headers: HeaderMap) -> bytes | AsyncIterable[bytes] | None:
        if self.body is not None:
            match self.body:
                case bytes() | bytearray() | memoryview():
                    payload: bytes | AsyncIterable[bytes] | None = bytes(self.body)
                case str():
                    payload = self.body.encode("utf-8")
                case AsyncIterable():
                    payload = self.body
                case _:
                    payload = json.dumps(self.body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
                    headers.setdefault("content-type", APPLICATION_JSON)
        elif self.form is not None:
            payload = urlencode(self.form, doseq=True).encode("ascii")
            headers.setdefault("content-type", APPLICATION_FORM_URLENCODED)
        else:
            payload = None

        if isinstance(payload, bytes):
            headers["content-length"] = str(len(payload))
        elif payload is not None:
            if "content-length" not in headers:
                headers["transfer-encoding"] = "chunked"
        elif self.method.upper() in _PAYLOAD_METHODS:
            headers["content-length"] = "0"
        return payload

    async def _send(
        self, connection: ByteStream, head: bytes, payload: bytes | AsyncIterable[bytes] | None, chunked: bool
    ) -> None:
        if payload is None or isinstance(payload, bytes):
            await connection.send(head + (payload or b""))
            return

        await connection.send(head)
        async for chunk in payload:
            if not chunk:
                continue
            await connection.send(encode_chunk(bytes(chunk)) if chunked else bytes(chunk))
        if chunked:
            await connection.send(LAST_CHUNK)

    async def _fetch(self, *, stream: bool = False) -> ClientResponse:
        self._check()

        method = self.method.upper()
        url = build_url(self.url, self.query)
        parts = urlsplit(url)
        if not parts.hostname:
            raise ClientConfigurationError(f"URL [{url}] has no host")
        tls = parts.scheme == "https"
        try:
            port = parts.port or _DEFAULT_PORTS[parts.scheme]
        except ValueError as e:
            raise ClientConfigurationError(f"URL [{url}] has an invalid port") from e
        target = parts.path or "/"
        if parts.query:
            target = f"{target}?{parts.query}"

        headers = normalize_headers(self.headers)
        host = f"[{parts.hostname}]" if ":" in parts.hostname else parts.hostname
        headers.setdefault("host", host if parts.port is None else f"{host}:{parts.port}")
        payload = self._encode_payload(headers)
        headers["connection"] = "close"
        try:
            head = encode_head(f"{method} {target} HTTP/1.1", headers)
        except ValueError as e:
            raise ClientConfigurationError(f"Invalid request headers: {e}") from e

        logger.debug("%s %s", method, url)
        connection: ByteStream | None = None
        handed_off = False
        try:
            with anyio.fail_after(self.timeout):
                connection = await anyio.connect_tcp(parts.hostname, port, tls=tls)
                await self._send(connection, head, payload, headers.get("transfer-encoding") == "chunked")

                source = BufferedByteReceiveStream(connection)
                while True:
                    _, status, _, response_headers = parse_response_head(await read_head(source, _MAX_HEAD_BYTES))
                    # interim 1xx responses precede the real one
                    if not 100 <= status < 200 or status == 101:
                        break

                reader = _response_reader(source, method, status, response_headers)
                if stream:
                    handed_off = True
                    return ClientResponse(status, response_headers, ResponseStream(reader, connection))

                data = await read_all(reader)
        except TimeoutError as e:
            if self.timeout is None:
                # raised by the OS, not by fail_after
                raise TransportError(f"{method} {url} failed: {e!r}") from e
            raise RequestTimeout(self.timeout) from e
        except (
            OSError,
            ValueError,
            anyio.BrokenResourceError,
            anyio.ClosedResourceError,
            anyio.EndOfStream,
            anyio.IncompleteRead,
        ) as e:
            raise TransportError(f"{method} {url} failed: {e!r}") from e
        finally:
            if connection is not None and not handed_off:
                await anyio.aclose_forcefully(connection)

        logger.debug("%s %s -> %s (%d bytes)", method, url, status, len(data))
        return ClientResponse(status, response_headers, data.decode(charset(response_headers), errors="replace"))
