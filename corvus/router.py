"""
Router - Sub-routers with ordered route tables.

Route paths are static segments or ``{name}`` parameters, matched
case-insensitively. Routes are matched in registration order (first
registered wins), and a router is mounted on the HTTP engine as one layer
that strips its mount path before matching.
"""

from __future__ import annotations

import inspect
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from .http import Handler, LayerStack, Middleware, RequestCtx
from .request import Request
from .response import Response, to_response

ErrorCallback = Callable[[BaseException, Request, RequestCtx], Any]

_PARAM_RE = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def normalize_path(path: str) -> str:
    """Collapse duplicate slashes and drop a trailing slash ("" -> "/")."""
    path = re.sub(r"/{2,}", "/", "/" + path.strip("/"))
    return path


def join_paths(*parts: str) -> str:
    return normalize_path("/".join(part for part in parts if part))


def compile_path(path: str) -> Tuple[Pattern[str], List[str]]:
    """Compile a route path into an anchored regex plus its parameter names."""
    names: List[str] = []
    pieces: List[str] = []
    for segment in normalize_path(path).strip("/").split("/"):
        if not segment:
            continue
        match = _PARAM_RE.match(segment)
        if match:
            names.append(match.group(1))
            pieces.append(f"(?P<{match.group(1)}>[^/]+)")
        else:
            pieces.append(re.escape(segment))
    return re.compile("^/" + "/".join(pieces) + "$", re.IGNORECASE), names


async def forward_error(error: BaseException, request: Request, ctx: RequestCtx) -> Response:
    """Default group error callback: forward the error unchanged."""
    raise error


@dataclass
class Route:
    """A registered (method, path) binding with its handler chain."""
    method: str
    path: str
    handler: Handler
    middlewares: List[Middleware] = field(default_factory=list)
    error_callback: ErrorCallback = forward_error
    name: str = ""
    pattern: Optional[Pattern[str]] = field(default=None, repr=False)
    param_names: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.method = self.method.upper()
        self.path = normalize_path(self.path)
        self.pattern, self.param_names = compile_path(self.path)
        stack = LayerStack()
        for middleware in self.middlewares:
            stack.add(middleware)
        self._chain = stack.build_handler(self.handler)

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        if method != self.method and not (method == "HEAD" and self.method == "GET"):
            return None
        found = self.pattern.match(path)
        if found is None:
            return None
        return found.groupdict()

    async def handle(self, request: Request, ctx: RequestCtx) -> Response:
        """Run per-route middlewares and the handler; errors go to the callback."""
        try:
            return await self._chain(request, ctx)
        except Exception as error:
            result = self.error_callback(error, request, ctx)
            if inspect.isawaitable(result):
                result = await result
            return to_response(result)


class Router:
    """Ordered route table, mountable on an HTTPApp."""

    def __init__(self):
        self.routes: List[Route] = []

    def add(
        self,
        method: str,
        path: str,
        handler: Handler,
        *,
        middlewares: Optional[List[Middleware]] = None,
        error_callback: ErrorCallback = forward_error,
        name: str = "",
    ) -> Route:
        route = Route(
            method=method,
            path=path,
            handler=handler,
            middlewares=list(middlewares or ()),
            error_callback=error_callback,
            name=name or getattr(handler, "__name__", "handler"),
        )
        self.routes.append(route)
        return route

    def match(self, method: str, path: str) -> Optional[Tuple[Route, Dict[str, str]]]:
        path = normalize_path(path)
        for route in self.routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None

    def as_middleware(self, mount_path: str, middlewares: List[Middleware]) -> Middleware:
        """
        Build the layer that serves this router under ``mount_path``.

        Group middlewares run for every request under the mount path; when no
        route matches, the request continues to the next layer with its path
        restored.
        """
        mount = "" if mount_path in ("", "/") else normalize_path(mount_path)
        router = self
        group = LayerStack()
        for middleware in middlewares:
            group.add(middleware)

        async def router_layer(request: Request, ctx: RequestCtx, next: Handler) -> Response:
            sub_path = _strip_mount(mount, request.path)
            if sub_path is None:
                return await next(request, ctx)

            saved_path, saved_base = request.path, request.base_path

            async def dispatch(request: Request, ctx: RequestCtx) -> Response:
                found = router.match(request.method, request.path)
                if found is None:
                    request.path, request.base_path = saved_path, saved_base
                    return await next(request, ctx)
                route, params = found
                request.route = route
                request.path_params = params
                return await route.handle(request, ctx)

            request.path = sub_path
            request.base_path = saved_base + saved_path[:len(mount)]
            return await group.build_handler(dispatch)(request, ctx)

        router_layer.__name__ = f"router_layer[{mount or '/'}]"
        return router_layer

    def describe(self, mount_path: str = "") -> List[Dict[str, str]]:
        """Route table entries with the mount path applied."""
        return [
            {"method": route.method, "path": join_paths(mount_path, route.path), "handler": route.name}
            for route in self.routes
        ]

    def __len__(self) -> int:
        return len(self.routes)


def _strip_mount(mount: str, path: str) -> Optional[str]:
    """Return ``path`` relative to ``mount``, or None when outside it."""
    if not mount:
        return path
    lowered, mount = path.lower(), mount.lower()
    if lowered == mount:
        return "/"
    if lowered.startswith(mount + "/"):
        return path[len(mount):]
    return None
