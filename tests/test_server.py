"""Tests for HttpServer over real TCP connections."""

from __future__ import annotations

import json

import anyio
import pytest

from switchyard.http.messages import HttpResponse, IncomingRequest
from switchyard.http.router import Router
from switchyard.http.server import HttpServer
from switchyard.http.wire import parse_response_head


async def exchange(port: int, data: bytes) -> tuple[int, dict[str, str], bytes]:
    """Send raw bytes, read until the server closes, split the response."""
    async with await anyio.connect_tcp("127.0.0.1", port) as conn:
        await conn.send(data)
        chunks = []
        while True:
            try:
                chunks.append(await conn.receive())
            except anyio.EndOfStream:
                break
    head, _, body = b"".join(chunks).partition(b"\r\n\r\n")
    _, status, _, headers = parse_response_head(head)
    return status, headers, body


async def echo(req: IncomingRequest) -> HttpResponse:
    return HttpResponse(
        headers={"content-type": req.header("content-type", "application/octet-stream")},
        body=await req.read(),
    )


def make_router() -> Router:
    router = Router()
    router.register_route("GET", "/posts/{id}", lambda req: HttpResponse(body={"id": req.path_params["id"]}))
    router.register_route("POST", "/echo", echo)
    return router


@pytest.mark.anyio
async def test_get_routes_and_closes_connection():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        status, headers, body = await exchange(port, b"GET /posts/42 HTTP/1.1\r\nHost: x\r\n\r\n")
        assert status == 200
        assert headers["connection"] == "close"
        assert json.loads(body) == {"id": "42"}

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_unknown_route_is_404():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        status, headers, body = await exchange(port, b"GET /nothing HTTP/1.1\r\n\r\n")
        assert status == 404
        assert headers["content-length"] == "0"
        assert body == b""

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_content_length_body_reaches_handler():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        request = (
            b"POST /echo HTTP/1.1\r\n"
            b"Content-Type: text/plain\r\n"
            b"Content-Length: 11\r\n"
            b"\r\n"
            b"hello there"
        )
        status, headers, body = await exchange(port, request)
        assert status == 200
        assert headers["content-type"] == "text/plain"
        assert body == b"hello there"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_chunked_body_reaches_handler():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        request = (
            b"POST /echo HTTP/1.1\r\n"
            b"Content-Type: text/plain\r\n"
            b"Transfer-Encoding: chunked\r\n"
            b"\r\n"
            b"5\r\nhello\r\n6\r\n there\r\n0\r\n\r\n"
        )
        status, _, body = await exchange(port, request)
        assert status == 200
        assert body == b"hello there"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_oversized_body_is_413():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router(), max_body_bytes=8).serve)

        status, _, body = await exchange(port, b"POST /echo HTTP/1.1\r\nContent-Length: 9\r\n\r\n")
        assert status == 413
        assert body == b"payload too large"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "request_bytes",
    [
        b"NONSENSE\r\n\r\n",
        b"GET / FTP/1.0\r\n\r\n",
        b"POST /echo HTTP/1.1\r\nContent-Length: lots\r\n\r\n",
    ],
)
async def test_malformed_request_is_400(request_bytes):
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        status, _, body = await exchange(port, request_bytes)
        assert status == 400
        assert body.startswith(b"bad request:")

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_oversized_head_is_400():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router(), max_header_bytes=128).serve)

        status, _, _ = await exchange(port, b"GET /posts/1 HTTP/1.1\r\nX-Pad: " + b"a" * 4000 + b"\r\n\r\n")
        assert status == 400

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_handler_header_outside_latin1_is_500_not_400():
    router = Router({("GET", "/title"): lambda req: HttpResponse.text("hi", headers={"X-Title": "\u65e5\u672c"})})

    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(router).serve)

        status, _, body = await exchange(port, b"GET /title HTTP/1.1\r\n\r\n")
        assert status == 500
        assert body == b"unsupported response"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_request_version_reaches_handler():
    router = Router({("GET", "/version"): lambda req: HttpResponse.text(req.version)})

    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(router).serve)

        _, _, body = await exchange(port, b"GET /version HTTP/1.0\r\n\r\n")
        assert body == b"HTTP/1.0"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_peer_closing_early_does_not_stop_server():
    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(make_router()).serve)

        async with await anyio.connect_tcp("127.0.0.1", port) as conn:
            await conn.send(b"GET /po")

        status, _, _ = await exchange(port, b"GET /posts/1 HTTP/1.1\r\n\r\n")
        assert status == 200

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_slow_handler_does_not_block_other_connections():
    released = anyio.Event()

    async def wait(_req):
        await released.wait()
        return HttpResponse.text("waited")

    async def release(_req):
        released.set()
        return HttpResponse.text("released")

    router = Router({("GET", "/wait"): wait, ("GET", "/release"): release})
    results: dict[str, bytes] = {}

    async def fetch(path: str) -> None:
        _, _, body = await exchange(port, f"GET {path} HTTP/1.1\r\n\r\n".encode())
        results[path] = body

    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(router).serve)

        with anyio.fail_after(5):
            async with anyio.create_task_group() as clients:
                clients.start_soon(fetch, "/wait")
                await anyio.sleep(0.05)
                clients.start_soon(fetch, "/release")

        assert results == {"/wait": b"waited", "/release": b"released"}

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_streamed_response_over_socket():
    async def numbers(_req):
        async def produce():
            for i in range(3):
                await anyio.sleep(0.01)
                yield f"{i}\n".encode()

        return HttpResponse.stream(produce(), headers={"Content-Type": "text/plain"})

    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(Router({("GET", "/numbers"): numbers})).serve)

        status, headers, body = await exchange(port, b"GET /numbers HTTP/1.1\r\n\r\n")
        assert status == 200
        assert headers["content-type"] == "text/plain"
        assert "content-length" not in headers
        assert body == b"0\n1\n2\n"

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_serve_reports_bound_port():
    server = HttpServer(make_router())
    assert server.port is None

    async with anyio.create_task_group() as tg:
        port = await tg.start(server.serve)
        assert port == server.port
        assert port > 0

        tg.cancel_scope.cancel()
