"""Request and response values exchanged between the router and handlers."""

from __future__ import annotations

import json
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import Any, Mapping

from anyio.abc import ByteReceiveStream

from .headers import APPLICATION_JSON, APPLICATION_OCTET_STREAM
from .wire import HeaderMap, charset, normalize_headers, read_all


@dataclass(frozen=True, slots=True)
class IncomingRequest:
    """What a handler sees of an inbound request.

    ``body`` is read lazily from the connection; ``read()`` drains it, so
    call it once.
    """

    method: str
    path: str
    target: str
    headers: HeaderMap = field(default_factory=dict)
    path_params: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    body: ByteReceiveStream | None = None
    version: str = "HTTP/1.1"

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    async def read(self) -> bytes:
        if self.body is None:
            return b""
        return await read_all(self.body)

    async def text(self) -> str:
        return (await self.read()).decode(charset(self.headers), errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.read())


@dataclass(frozen=True, slots=True)
class Empty:
    """No body at all."""


@dataclass(frozen=True, slots=True)
class Buffered:
    """A body held in memory; encoded according to the content type on write."""

    value: Any


@dataclass(frozen=True, slots=True)
class Streamed:
    """A lazily produced byte body, piped to the wire as it arrives."""

    source: AsyncIterable[bytes]


Body = Empty | Buffered | Streamed


def as_body(value: Any) -> Body:
    match value:
        case Empty() | Buffered() | Streamed():
            return value
        case None:
            return Empty()
        case AsyncIterable():
            return Streamed(value)
        case _:
            return Buffered(value)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """A handler's answer.

    ``body`` may be given as a plain value, ``None`` or any async iterable of
    bytes; it is normalised to ``Empty``, ``Buffered`` or ``Streamed``.
    Leaving ``status`` unset means 200, or 204 when there is no body.
    Leaving ``headers`` unset means a JSON content type for buffered bodies
    and ``application/octet-stream`` for streamed ones.
    """

    status: int | None = None
    headers: Mapping[str, str] | None = None
    body: Any = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", as_body(self.body))

    @property
    def status_code(self) -> int:
        if self.status is not None:
            return self.status
        return 204 if isinstance(self.body, Empty) else 200

    def resolved_headers(self) -> HeaderMap:
        if self.headers is None:
            match self.body:
                case Buffered():
                    return {"content-type": APPLICATION_JSON}
                case Streamed():
                    return {"content-type": APPLICATION_OCTET_STREAM}
                case _:
                    return {}
        headers = normalize_headers(self.headers)
        if isinstance(self.body, Streamed):
            headers.setdefault("content-type", APPLICATION_OCTET_STREAM)
        return headers

    @staticmethod
    def text(
        text: str,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        encoding: str = "utf-8",
    ) -> "HttpResponse":
        merged: dict[str, str] = {"content-type": f"text/plain; charset={encoding}"}
        merged.update(normalize_headers(headers))
        return HttpResponse(status=status, headers=merged, body=Buffered(text))

    @staticmethod
    def json(
        obj: Any,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> "HttpResponse":
        merged: dict[str, str] = {"content-type": "application/json; charset=utf-8"}
        merged.update(normalize_headers(headers))
        return HttpResponse(status=status, headers=merged, body=Buffered(obj))

    @staticmethod
    def stream(
        source: AsyncIterable[bytes],
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> "HttpResponse":
        return HttpResponse(status=status, headers=headers, body=Streamed(source))

    @staticmethod
    def empty(status: int = 204, headers: Mapping[str, str] | None = None) -> "HttpResponse":
        return HttpResponse(status=status, headers=headers, body=Empty())
