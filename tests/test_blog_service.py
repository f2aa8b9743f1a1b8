"""Tests for the example blog service: canned and proxied posts."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import anyio
import pytest

from switchyard import HttpClient, HttpResponse, HttpServer, Router, Settings


def load_example():
    path = Path(__file__).parent.parent / "examples" / "blog_service.py"
    spec = importlib.util.spec_from_file_location("blog_service", path)
    module = importlib.util.module_from_spec(spec)
    # dataclasses resolve string annotations through sys.modules
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


blog_service = load_example()


@pytest.mark.anyio
async def test_lists_canned_posts():
    router = blog_service.build_router(Settings(_env_file=None))

    async with anyio.create_task_group() as tg:
        port = await tg.start(HttpServer(router).serve)

        response = await HttpClient.get(f"http://127.0.0.1:{port}/posts").as_json()
        assert response.status_code == 200
        assert [p["id"] for p in response.body["posts"]] == [1, 3]

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_proxies_single_post_from_upstream():
    upstream = Router()
    upstream.register_route(
        "GET", "/posts/{id}", lambda req: HttpResponse(body={"id": int(req.path_params["id"]), "title": "t"})
    )

    async with anyio.create_task_group() as tg:
        upstream_port = await tg.start(HttpServer(upstream).serve)
        settings = Settings(_env_file=None, posts_api_url=f"http://127.0.0.1:{upstream_port}/")
        port = await tg.start(HttpServer(blog_service.build_router(settings)).serve)

        response = await HttpClient.get(f"http://127.0.0.1:{port}/posts/5").as_json()
        assert response.status_code == 200
        assert response.body == {"id": 5, "title": "t"}

        tg.cancel_scope.cancel()


@pytest.mark.anyio
async def test_upstream_failure_is_418():
    async with anyio.create_task_group() as tg:
        upstream = Router({("GET", "/posts/{id}"): lambda req: HttpResponse.text("nope")})
        upstream_port = await tg.start(HttpServer(upstream).serve)
        settings = Settings(_env_file=None, posts_api_url=f"http://127.0.0.1:{upstream_port}")
        port = await tg.start(HttpServer(blog_service.build_router(settings)).serve)

        response = await HttpClient.get(f"http://127.0.0.1:{port}/posts/1").as_text()
        assert response.status_code == 418
        assert "unable to get post" in response.body

        tg.cancel_scope.cancel()
