"""
HTTP engine - ASGI application with an ordered layer stack.

Layers are tried strictly in registration order, Express style: global
middleware, then mounted routers, then the fallback. A layer either
produces a Response or awaits ``next`` to hand the request to the layer
behind it. Requests that fall off the end of the stack get a 404.

Middleware signature::

    async def middleware(request, ctx, next) -> Response
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from .faults import RequestFault
from .request import Request
from .response import Response

if TYPE_CHECKING:
    from .di import Container
    from .router import Router

Handler = Callable[[Request, "RequestCtx"], Awaitable[Response]]
Middleware = Callable[[Request, "RequestCtx", Handler], Awaitable[Response]]
LifespanHook = Callable[[], Awaitable[None]]


@dataclass
class RequestCtx:
    """
    Request context passed alongside the request.

    Attributes:
        request: The HTTP request
        container: Request-scoped DI container (None when no DI is wired)
        state: Additional per-request state
    """

    request: Request
    container: Optional["Container"] = None
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Layer:
    """One entry in the layer stack."""
    middleware: Middleware
    name: str
    kind: str = "middleware"  # "middleware", "router" or "fallback"


class LayerStack:
    """Ordered middleware stack. Insertion order is execution order."""

    def __init__(self):
        self.layers: List[Layer] = []

    def add(self, middleware: Middleware, name: Optional[str] = None, kind: str = "middleware") -> Layer:
        if name is None:
            name = getattr(middleware, "__name__", None) or type(middleware).__name__
        layer = Layer(middleware=middleware, name=name, kind=kind)
        self.layers.append(layer)
        return layer

    def build_handler(self, final_handler: Handler) -> Handler:
        """Build the chain wrapping ``final_handler``; first layer is outermost."""
        handler = final_handler
        for layer in reversed(self.layers):
            handler = self._wrap(layer.middleware, handler)
        return handler

    @staticmethod
    def _wrap(middleware: Middleware, next_handler: Handler) -> Handler:
        async def wrapped(request: Request, ctx: RequestCtx) -> Response:
            return await middleware(request, ctx, next_handler)

        return wrapped

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)


async def not_found(request: Request, ctx: RequestCtx) -> Response:
    """Terminal handler for requests no layer answered."""
    return Response.json(
        {"error": "Not found", "message": f"Cannot {request.method} {request.original_path}"},
        status=404,
    )


class HTTPApp:
    """
    ASGI application.

    The layer chain is built once and cached; adding a layer invalidates the
    cache so layers installed while the server is already accepting
    connections take effect on the next request.
    """

    def __init__(self, container: Optional["Container"] = None):
        self.stack = LayerStack()
        self.container = container
        self.logger = logging.getLogger("corvus.http")
        self._mounts: List[Dict[str, Any]] = []
        self._startup_hooks: List[LifespanHook] = []
        self._shutdown_hooks: List[LifespanHook] = []
        self._cached_chain: Optional[Handler] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def use(self, middleware: Middleware, name: Optional[str] = None, kind: str = "middleware") -> Layer:
        """Append a middleware layer."""
        layer = self.stack.add(middleware, name=name, kind=kind)
        self._cached_chain = None
        return layer

    def mount(self, path: str, middlewares: List[Middleware], router: "Router") -> Layer:
        """Append a sub-router mounted at ``path`` behind ``middlewares``."""
        layer = self.use(
            router.as_middleware(path, middlewares),
            name=f"router:{path or '/'}",
            kind="router",
        )
        self._mounts.append({"path": path, "router": router})
        return layer

    def routes(self) -> List[Dict[str, Any]]:
        """Every mounted route, in precedence order."""
        table = []
        for mount in self._mounts:
            table.extend(mount["router"].describe(mount["path"]))
        return table

    def on_startup(self, hook: LifespanHook) -> None:
        self._startup_hooks.append(hook)

    def on_shutdown(self, hook: LifespanHook) -> None:
        self._shutdown_hooks.append(hook)

    # ------------------------------------------------------------------
    # ASGI entry point
    # ------------------------------------------------------------------

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        if self._cached_chain is None:
            self._cached_chain = self.stack.build_handler(not_found)

        request = Request(scope, receive)
        container = self.container.create_request_scope() if self.container else None
        ctx = RequestCtx(request=request, container=container)

        try:
            response = await self._cached_chain(request, ctx)
        except RequestFault as e:
            self.logger.warning("Fault %s: %s", e.code, e.message)
            response = Response.json({"error": e.to_dict()}, status=e.status)
        except Exception as e:
            self.logger.error("Unhandled error in request pipeline: %s", e, exc_info=True)
            response = Response.json({"error": "Internal server error"}, status=500)
        finally:
            if container is not None:
                await container.shutdown()

        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        """Run registered hooks on ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        await hook()
                except Exception as e:
                    self.logger.error("Startup error: %s", e, exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif message["type"] == "lifespan.shutdown":
                try:
                    for hook in self._shutdown_hooks:
                        await hook()
                except Exception as e:
                    self.logger.error("Shutdown error: %s", e, exc_info=True)
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return
