"""Path-template routing.

Templates are slash-separated; a segment wrapped in braces (``/posts/{id}``)
is a variable that matches any single path segment. Routes are tried in
registration order and the first match wins.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import parse_qsl

from anyio.abc import ByteReceiveStream

from .messages import HttpResponse, IncomingRequest
from .wire import normalize_headers


logger = logging.getLogger(__name__)

Handler = Callable[[IncomingRequest], "HttpResponse | None | Awaitable[HttpResponse | None]"]


@dataclass(frozen=True, slots=True)
class Segment:
    value: str
    variable: bool = False

    def matches(self, part: str) -> bool:
        return self.variable or self.value.lower() == part.lower()


def parse_template(template: str) -> tuple[Segment, ...]:
    segments = []
    for part in template.split("/"):
        if len(part) >= 2 and part.startswith("{") and part.endswith("}"):
            segments.append(Segment(part[1:-1], variable=True))
        else:
            segments.append(Segment(part))
    return tuple(segments)


@dataclass(frozen=True, slots=True, eq=False)
class Route:
    """A registered ``(method, template, handler)`` triple.

    Compared by identity, so two registrations of the same template are
    distinct routes.
    """

    method: str
    template: str
    handler: Handler
    segments: tuple[Segment, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "segments", parse_template(self.template))

    def match(self, method: str, parts: list[str]) -> dict[str, str] | None:
        """Return the captured path variables, or None if this route doesn't apply."""
        if method.upper() != self.method.upper():
            return None
        if len(parts) != len(self.segments):
            return None

        params: dict[str, str] = {}
        for segment, part in zip(self.segments, parts):
            if not segment.matches(part):
                return None
            if segment.variable:
                params[segment.value] = part
        return params


class Router:
    """Dispatches requests to handlers by ``(method, path template)``.

    Handlers take an ``IncomingRequest`` and return an ``HttpResponse`` or
    ``None``, either directly or from a coroutine. Whatever happens inside
    the handler, ``dispatch`` always produces a response:

      - no matching route      -> 404, empty body
      - handler returned None  -> 204, empty body
      - not an HttpResponse    -> 500 "unsupported response"
      - handler raised         -> 500 "internal server error"
    """

    def __init__(self, routes: Mapping[tuple[str, str], Handler] | None = None):
        self._routes: list[Route] = []
        for (method, template), handler in (routes or {}).items():
            self.register_route(method, template, handler)

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def register_route(self, method: str, template: str, handler: Handler) -> Route:
        route = Route(method=method, template=template, handler=handler)
        self._routes.append(route)
        logger.debug("registered %s %s -> %s", method.upper(), template, getattr(handler, "__name__", handler))
        return route

    def route(self, method: str, template: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register_route``."""

        def decorator(handler: Handler) -> Handler:
            self.register_route(method, template, handler)
            return handler

        return decorator

    def remove_route(self, route: Route) -> None:
        for i, registered in enumerate(self._routes):
            if registered is route:
                del self._routes[i]
                return
        raise ValueError(f"route {route.method} {route.template} is not registered")

    def match(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        parts = path.split("/")
        for route in self._routes:
            params = route.match(method, parts)
            if params is not None:
                return route, params
        return None

    async def dispatch(
        self,
        method: str,
        target: str,
        headers: Mapping[str, str] | None = None,
        body: ByteReceiveStream | None = None,
        *,
        version: str = "HTTP/1.1",
    ) -> HttpResponse:
        path, _, query = target.partition("?")

        found = self.match(method, path)
        if found is None:
            logger.debug("no route for %s %s", method, path)
            return HttpResponse(status=404)
        route, path_params = found

        request = IncomingRequest(
            method=method.upper(),
            path=path,
            target=target,
            headers=normalize_headers(headers),
            path_params=path_params,
            query_params=dict(parse_qsl(query, keep_blank_values=True)),
            body=body,
            version=version,
        )

        try:
            result: Any = route.handler(request)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception("handler for %s %s failed", route.method.upper(), route.template)
            return HttpResponse.text("internal server error", status=500)

        match result:
            case None:
                return HttpResponse(status=204)
            case HttpResponse():
                logger.debug("%s %s -> %s", request.method, path, result.status_code)
                return result
            case _:
                logger.error(
                    "handler for %s %s returned %s, expected HttpResponse or None",
                    route.method.upper(),
                    route.template,
                    type(result).__name__,
                )
                return HttpResponse.text("unsupported response", status=500)
