"""Tiny HTTP/1.1 server built on AnyIO.

Features:
- HTTP/1.1 request line + headers parsing
- Content-Length or chunked request bodies, exposed to handlers lazily
- One request per connection (Connection: close)
- Buffered responses (JSON-encoded when the content type says so) and
  streamed responses piped straight to the socket
- Fully AnyIO: each connection is handled in its own task of the listener's TaskGroup
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import anyio
from anyio.abc import AnyByteSendStream, ByteReceiveStream, SocketAttribute, SocketStream, TaskStatus
from anyio.streams.buffered import BufferedByteReceiveStream

from ..config import Settings
from .headers import APPLICATION_JSON
from .messages import Buffered, Empty, HttpResponse, Streamed
from .router import Router
from .wire import (
    ChunkedReader,
    FixedLengthReader,
    charset,
    content_length,
    encode_head,
    is_chunked,
    media_type,
    parse_request_head,
    read_head,
    status_line,
)


logger = logging.getLogger(__name__)


def encode_buffered(value: Any, headers: Mapping[str, str]) -> bytes:
    """Encode a buffered body for the wire.

    Raises TypeError if the value can't be written under the given content type.
    """
    if media_type(headers) == APPLICATION_JSON:
        # bytes are taken to be JSON already (e.g. proxied from upstream)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if isinstance(value, str):
        return value.encode(charset(headers))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot write {type(value).__name__} body as {media_type(headers) or 'untyped'} content")


async def _close_source(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


async def _pipe(stream: AnyByteSendStream, head: bytes, source: Any) -> None:
    try:
        await stream.send(head)
        async for chunk in source:
            if chunk:
                await stream.send(bytes(chunk))
    except (anyio.BrokenResourceError, anyio.ClosedResourceError):
        raise
    except Exception:
        # head already sent; the body just ends short
        logger.exception("response stream failed after headers were sent")
    finally:
        await _close_source(source)


async def write_response(stream: AnyByteSendStream, response: HttpResponse) -> None:
    """Serialise ``response`` onto ``stream``.

    A response whose head or buffered body can't be encoded is replaced by a
    500 ``unsupported response`` before anything reaches the wire.
    """
    headers = response.resolved_headers()
    headers.setdefault("connection", "close")

    body = b""
    try:
        match response.body:
            case Buffered(value=value):
                body = encode_buffered(value, headers)
                headers.setdefault("content-length", str(len(body)))
            case Empty():
                headers.setdefault("content-length", "0")
        head = encode_head(status_line(response.status_code), headers)
    except (TypeError, ValueError):
        logger.error("unsupported response", exc_info=True)
        if isinstance(response.body, Streamed):
            await _close_source(response.body.source)
        await write_response(stream, HttpResponse.text("unsupported response", status=500))
        return

    if isinstance(response.body, Streamed):
        await _pipe(stream, head, response.body.source)
    else:
        # anyio SocketStream uses send()/receive() (not send_all()).
        await stream.send(head + body)


def request_body(source: BufferedByteReceiveStream, headers: Mapping[str, str]) -> ByteReceiveStream | None:
    if is_chunked(headers):
        return ChunkedReader(source)
    length = content_length(headers)
    if length:
        return FixedLengthReader(source, length)
    return None


class HttpServer:
    """HTTP server feeding a Router.

    - ``await task_group.start(server.serve)`` binds the listener and returns the bound port
    - Accepts connections and handles each one in its own task
    - Hands every parsed request to ``Router.dispatch`` and writes the result back
    """

    def __init__(
        self,
        router: Router,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        max_header_bytes: int = 64 * 1024,
        max_body_bytes: int = 1 * 1024 * 1024,
    ):
        self._router = router
        self._host = host
        self._port = port
        self._max_header_bytes = max_header_bytes
        self._max_body_bytes = max_body_bytes
        self.port: int | None = None

    @classmethod
    def from_settings(cls, router: Router, settings: Settings | None = None) -> "HttpServer":
        settings = settings or Settings()
        return cls(
            router,
            host=settings.host,
            port=settings.port,
            max_header_bytes=settings.max_header_bytes,
            max_body_bytes=settings.max_body_bytes,
        )

    async def serve(self, *, task_status: TaskStatus[int] = anyio.TASK_STATUS_IGNORED) -> None:
        """Serve incoming connections until cancelled."""
        listener = await anyio.create_tcp_listener(local_host=self._host, local_port=self._port)
        self.port = listener.extra(SocketAttribute.local_port)
        logger.info("listening on http://%s:%s", self._host, self.port)

        async with listener:
            task_status.started(self.port)
            await listener.serve(self._handle_client)

    async def _handle_client(self, stream: SocketStream) -> None:
        peer = stream.extra(SocketAttribute.remote_address, None)
        async with stream:
            buffered = BufferedByteReceiveStream(stream)
            try:
                try:
                    header_block = await read_head(buffered, self._max_header_bytes)
                except anyio.IncompleteRead:
                    return

                method, target, version, headers = parse_request_head(header_block)
                length = content_length(headers)
                if length is not None and length > self._max_body_bytes:
                    await write_response(stream, HttpResponse.text("payload too large", status=413))
                    return

                body = request_body(buffered, headers)
                response = await self._router.dispatch(method, target, headers, body, version=version)
                await write_response(stream, response)
            except ValueError as e:
                logger.warning("bad request from %s: %s", peer, e)
                await write_response(stream, HttpResponse.text(f"bad request: {e}", status=400))
            except (anyio.BrokenResourceError, anyio.ClosedResourceError, anyio.EndOfStream) as e:
                logger.warning("connection from %s dropped: %r", peer, e)
            except Exception as e:  # pragma: no cover
                logger.exception("error serving %s", peer)
                await write_response(stream, HttpResponse.text(f"server error: {e!r}", status=500))
