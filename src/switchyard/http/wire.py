"""HTTP/1.1 wire helpers shared by the server and the client.

- Head parsing (request line / status line + headers)
- Status lines and head encoding
- Lazy body readers for Content-Length, chunked and close-delimited bodies

The body readers are AnyIO byte streams layered on top of a
``BufferedByteReceiveStream``; they never close the underlying connection,
whoever owns the socket does that.
"""

from __future__ import annotations

import codecs
from typing import Mapping

import anyio
from anyio.abc import ByteReceiveStream
from anyio.streams.buffered import BufferedByteReceiveStream
from typing_extensions import override


HeaderMap = dict[str, str]

HEAD_TERMINATOR = b"\r\n\r\n"
LAST_CHUNK = b"0\r\n\r\n"

_MAX_CHUNK_LINE = 1024

_STATUS_TEXT: dict[int, str] = {
    100: "Continue",
    200: "OK",
    201: "Created",
    202: "Accepted",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    304: "Not Modified",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    418: "I'm a teapot",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def reason_phrase(status: int) -> str:
    return _STATUS_TEXT.get(status, "Unknown")


def status_line(status: int) -> str:
    return f"HTTP/1.1 {status} {reason_phrase(status)}"


def normalize_headers(headers: Mapping[str, str] | None) -> HeaderMap:
    if not headers:
        return {}
    return {k.lower(): str(v) for k, v in headers.items()}


def encode_head(start_line: str, headers: Mapping[str, str]) -> bytes:
    """Encode a start line and headers as a latin-1 head.

    Raises ValueError for a line break inside a header, or text latin-1 can't hold.
    """
    for name, value in headers.items():
        if any(c in name or c in value for c in "\r\n"):
            raise ValueError(f"line break in header {name!r}")
    lines = [start_line, *(f"{k}: {v}" for k, v in headers.items())]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def media_type(headers: Mapping[str, str]) -> str:
    """Return the bare, lower-cased media type of the Content-Type header."""
    for name, value in headers.items():
        if name.lower() == "content-type":
            return value.split(";", 1)[0].strip().lower()
    return ""


def charset(headers: Mapping[str, str], default: str = "utf-8") -> str:
    for name, value in headers.items():
        if name.lower() != "content-type":
            continue
        for param in value.split(";")[1:]:
            key, _, val = param.partition("=")
            if key.strip().lower() == "charset" and val.strip():
                candidate = val.strip().strip('"')
                try:
                    codecs.lookup(candidate)
                except LookupError:
                    return default
                return candidate
    return default


def _split_head(block: bytes) -> tuple[str, HeaderMap]:
    try:
        head = block.decode("iso-8859-1")
    except UnicodeDecodeError as e:  # pragma: no cover
        raise ValueError(f"invalid header encoding: {e!r}") from e

    lines = head.split("\r\n")
    if not lines or not lines[0]:
        raise ValueError("missing start line")

    headers: HeaderMap = {}
    for line in lines[1:]:
        if line == "":
            break
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        k = k.strip().lower()
        v = v.strip()
        # Repeated fields fold into one comma-separated value.
        headers[k] = f"{headers[k]}, {v}" if k in headers else v
    return lines[0], headers


def parse_request_head(block: bytes) -> tuple[str, str, str, HeaderMap]:
    """Parse a request head into ``(method, target, version, headers)``."""
    line, headers = _split_head(block)
    parts = line.split(" ")
    if len(parts) != 3:
        raise ValueError("invalid request line")
    method, target, version = parts
    if not version.startswith("HTTP/"):
        raise ValueError(f"unsupported protocol {version!r}")
    return method, target, version, headers


def parse_response_head(block: bytes) -> tuple[str, int, str, HeaderMap]:
    """Parse a response head into ``(version, status, reason, headers)``."""
    line, headers = _split_head(block)
    parts = line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise ValueError(f"invalid status line {line!r}")
    try:
        status = int(parts[1])
    except ValueError:
        raise ValueError(f"invalid status code {parts[1]!r}") from None
    reason = parts[2] if len(parts) == 3 else ""
    return parts[0], status, reason, headers


async def _receive_until(source: BufferedByteReceiveStream, delimiter: bytes, max_bytes: int, error: str) -> bytes:
    # receive_until only enforces max_bytes while it is still waiting for data
    try:
        block = await source.receive_until(delimiter, max_bytes)
    except anyio.DelimiterNotFound:
        raise ValueError(error) from None
    if len(block) > max_bytes:
        raise ValueError(error)
    return block


async def read_head(source: BufferedByteReceiveStream, max_bytes: int) -> bytes:
    """Read up to the blank line that ends a head.

    Raises ``anyio.IncompleteRead`` if the peer closes first.
    """
    return await _receive_until(source, HEAD_TERMINATOR, max_bytes, "request too large")


def content_length(headers: Mapping[str, str]) -> int | None:
    raw = headers.get("content-length")
    if raw is None or raw == "":
        return None
    try:
        length = int(raw)
    except ValueError:
        raise ValueError(f"invalid content-length {raw!r}") from None
    if length < 0:
        raise ValueError(f"invalid content-length {raw!r}")
    return length


def is_chunked(headers: Mapping[str, str]) -> bool:
    return "chunked" in headers.get("transfer-encoding", "").lower()


def encode_chunk(data: bytes) -> bytes:
    return f"{len(data):x}\r\n".encode("ascii") + data + b"\r\n"


class FixedLengthReader(ByteReceiveStream):
    """Yields exactly ``length`` bytes from ``source``, then ends."""

    def __init__(self, source: BufferedByteReceiveStream, length: int):
        self._source = source
        self._remaining = length

    @property
    def remaining(self) -> int:
        return self._remaining

    @override
    async def receive(self, max_bytes: int = 65536) -> bytes:
        if self._remaining <= 0:
            raise anyio.EndOfStream
        try:
            chunk = await self._source.receive(min(max_bytes, self._remaining))
        except anyio.EndOfStream:
            raise anyio.IncompleteRead from None
        self._remaining -= len(chunk)
        return chunk

    @override
    async def aclose(self) -> None:
        self._remaining = 0


class ChunkedReader(ByteReceiveStream):
    """Decodes ``Transfer-Encoding: chunked`` framing. Trailers are discarded."""

    def __init__(self, source: BufferedByteReceiveStream):
        self._source = source
        self._chunk_left = 0
        self._done = False

    @override
    async def receive(self, max_bytes: int = 65536) -> bytes:
        if self._done:
            raise anyio.EndOfStream

        if self._chunk_left == 0:
            size_line = await _receive_until(self._source, b"\r\n", _MAX_CHUNK_LINE, "chunk line too long")
            try:
                size = int(size_line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise ValueError(f"invalid chunk size {size_line!r}") from None
            if size == 0:
                while await _receive_until(self._source, b"\r\n", _MAX_CHUNK_LINE, "chunk line too long"):
                    pass
                self._done = True
                raise anyio.EndOfStream
            self._chunk_left = size

        try:
            chunk = await self._source.receive(min(max_bytes, self._chunk_left))
        except anyio.EndOfStream:
            raise anyio.IncompleteRead from None
        self._chunk_left -= len(chunk)
        if self._chunk_left == 0:
            if await self._source.receive_exactly(2) != b"\r\n":
                raise ValueError("missing CRLF after chunk data")
        return chunk

    @override
    async def aclose(self) -> None:
        self._done = True


class UntilCloseReader(ByteReceiveStream):
    """Body delimited by the peer closing the connection."""

    def __init__(self, source: BufferedByteReceiveStream):
        self._source = source
        self._closed = False

    @override
    async def receive(self, max_bytes: int = 65536) -> bytes:
        if self._closed:
            raise anyio.EndOfStream
        return await self._source.receive(max_bytes)

    @override
    async def aclose(self) -> None:
        self._closed = True


async def read_all(stream: ByteReceiveStream) -> bytes:
    return b"".join([chunk async for chunk in stream])
