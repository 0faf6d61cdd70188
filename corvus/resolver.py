"""
Route descriptor resolver.

Turns a RouteGroup (controllers plus group middlewares and error callback)
into a Router ready to mount: each controller class is resolved to a live
instance through the DI container, its descriptor is read from the
ControllerRegistry, and every route entry becomes a route bound to the
instance method it names.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Tuple

from .config import RouteGroup
from .controller import ControllerRegistry
from .di import Container
from .faults import HandlerNotFoundFault
from .http import Handler, Middleware, RequestCtx
from .request import Request
from .response import Response, to_response
from .router import Router, forward_error, join_paths

logger = logging.getLogger("corvus.resolver")


@dataclass(frozen=True)
class MountedGroup:
    """A resolved route group: mount path, group middlewares and router."""
    path: str
    middlewares: Tuple[Middleware, ...]
    router: Router


def bind_handler(instance: Any, handler_name: str) -> Handler:
    """
    Wrap ``instance.handler_name`` as a route handler.

    The method is called with ``(request, ctx)``; it may be sync or async
    and its return value goes through ``to_response``.
    """
    method = getattr(instance, handler_name, None)
    if method is None or not callable(method):
        raise HandlerNotFoundFault(
            f"{type(instance).__qualname__} has no handler method '{handler_name}'",
            metadata={"controller": type(instance).__qualname__, "handler": handler_name},
        )

    async def handler(request: Request, ctx: RequestCtx) -> Response:
        result = method(request, ctx)
        if inspect.isawaitable(result):
            result = await result
        return to_response(result)

    handler.__name__ = f"{type(instance).__qualname__}.{handler_name}"
    return handler


async def build_group(
    group: RouteGroup,
    container: Container,
    registry: ControllerRegistry,
) -> MountedGroup:
    """
    Resolve every controller of ``group`` into one Router.

    Routes are added in declaration order, so on a (method, path) collision
    the first declared route wins.

    Raises:
        MetadataNotFoundFault: A controller has no declared descriptor
        HandlerNotFoundFault: A route names a missing method
        DIError: A controller cannot be resolved
    """
    router = Router()
    error_callback = group.callback or forward_error

    for controller_cls in group.controllers:
        instance = await container.resolve_async(controller_cls)
        prefix = registry.get_metadata("prefix", controller_cls)
        routes = registry.get_metadata("routes", controller_cls)

        for entry in routes:
            router.add(
                entry.method.value,
                join_paths(prefix, entry.path),
                bind_handler(instance, entry.handler_name),
                middlewares=list(entry.middlewares),
                error_callback=error_callback,
            )

        logger.debug(
            "Resolved %s: %d routes under %r",
            controller_cls.__qualname__, len(routes), join_paths(group.path, prefix),
        )

    return MountedGroup(path=group.path, middlewares=tuple(group.middlewares), router=router)
