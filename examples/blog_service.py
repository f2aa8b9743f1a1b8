"""
Blog Service Example

A read-only blog API served by switchyard:

- GET /posts       returns a couple of canned posts
- GET /posts/{id}  fetches one post from a remote JSON API and passes it on

Run:
  uv run python examples/blog_service.py

Then try:
  curl -i http://127.0.0.1:8080/posts
  curl -i http://127.0.0.1:8080/posts/1

Settings come from SWITCHYARD_* environment variables (see switchyard.config).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import anyio

from switchyard import HttpClient, HttpClientError, HttpResponse, HttpServer, IncomingRequest, Router, Settings
from switchyard.http.headers import ACCEPT, APPLICATION_JSON


logger = logging.getLogger("switchyard.examples.blog")


@dataclass(frozen=True, slots=True)
class Post:
    id: int
    title: str
    body: str
    user_id: int


def build_router(settings: Settings) -> Router:
    router = Router()

    @router.route("GET", "/posts")
    async def get_posts(_req: IncomingRequest) -> HttpResponse:
        posts = [
            Post(1, "Hello", "World", 2),
            Post(3, "Test", "Post", 4),
        ]
        return HttpResponse(body={"posts": [asdict(p) for p in posts]})

    @router.route("GET", "/posts/{id}")
    async def get_post_by_id(req: IncomingRequest) -> HttpResponse:
        url = f"{settings.posts_api_url.rstrip('/')}/posts/{req.path_params['id']}"
        try:
            post = await HttpClient.get(url, headers={ACCEPT: APPLICATION_JSON}, timeout=10).as_json()
        except HttpClientError:
            logger.warning("upstream lookup failed: %s", url, exc_info=True)
            return HttpResponse.text(
                "something bad happened - unable to get post from upstream API", status=418
            )
        return HttpResponse(status=post.status_code, body=post.body)

    return router


async def main() -> None:
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    server = HttpServer.from_settings(build_router(settings), settings)
    async with anyio.create_task_group() as tg:
        port = await tg.start(server.serve)

        print(f"Listening on http://{settings.host}:{port}")
        print("Press Ctrl-C to stop.")


if __name__ == "__main__":
    anyio.run(main)
