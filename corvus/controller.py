"""
Controller declarations.

A controller is a plain class whose methods handle routes. Its route table
is declared explicitly at class-definition time and stored on the class as
a ``ControllerDescriptor``:

    @controller("/users")
    class UsersController:
        def __init__(self, repo: UserRepo):
            self.repo = repo

        @GET("/")
        async def list(self, request, ctx):
            return {"users": await self.repo.all()}

        @POST("/", middlewares=[require_json])
        async def create(self, request, ctx):
            ...

The same descriptor can be declared without decorators through
``register_controller(cls, prefix, routes)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from .faults import MetadataNotFoundFault

F = TypeVar("F", bound=Callable[..., Any])
C = TypeVar("C", bound=type)

DESCRIPTOR_ATTR = "__controller__"
ROUTE_ATTR = "__route_metadata__"


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


@dataclass(frozen=True)
class RouteEntry:
    """
    One route declared by a controller.

    Attributes:
        method: HTTP method
        path: Path relative to the controller prefix
        handler_name: Name of the instance method serving the route
        middlewares: Per-route middlewares run before the handler
    """
    method: HTTPMethod
    path: str
    handler_name: str
    middlewares: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class ControllerDescriptor:
    """Route prefix plus ordered route entries of a controller class."""
    prefix: str
    routes: Tuple[RouteEntry, ...] = field(default_factory=tuple)


# ============================================================================
# Method decorators
# ============================================================================

class RouteDecorator:
    """
    Base route decorator.

    Attaches route metadata to the function; ``@controller`` collects it.
    """

    method: HTTPMethod

    def __init__(self, path: str = "/", *, middlewares: Optional[Sequence[Any]] = None):
        self.path = path
        self.middlewares = tuple(middlewares or ())

    def __call__(self, func: F) -> F:
        if not hasattr(func, ROUTE_ATTR):
            func.__route_metadata__ = []
        func.__route_metadata__.append({
            "method": self.method,
            "path": self.path,
            "middlewares": self.middlewares,
        })
        return func


class GET(RouteDecorator):
    method = HTTPMethod.GET


class POST(RouteDecorator):
    method = HTTPMethod.POST


class PUT(RouteDecorator):
    method = HTTPMethod.PUT


class PATCH(RouteDecorator):
    method = HTTPMethod.PATCH


class DELETE(RouteDecorator):
    method = HTTPMethod.DELETE


class HEAD(RouteDecorator):
    method = HTTPMethod.HEAD


class OPTIONS(RouteDecorator):
    method = HTTPMethod.OPTIONS


# ============================================================================
# Class registration
# ============================================================================

def register_controller(cls: C, prefix: str = "", routes: Sequence[RouteEntry] = ()) -> C:
    """Attach a ControllerDescriptor to ``cls`` and return it unchanged."""
    entries = []
    for route in routes:
        if not isinstance(route.method, HTTPMethod):
            route = RouteEntry(
                method=HTTPMethod(str(route.method).upper()),
                path=route.path,
                handler_name=route.handler_name,
                middlewares=tuple(route.middlewares),
            )
        entries.append(route)
    setattr(cls, DESCRIPTOR_ATTR, ControllerDescriptor(prefix=prefix, routes=tuple(entries)))
    return cls


def controller(prefix: str = "") -> Callable[[C], C]:
    """
    Class decorator declaring a controller.

    Routes are collected from decorated methods in definition order.
    """

    def decorator(cls: C) -> C:
        entries: List[RouteEntry] = []
        for name, member in cls.__dict__.items():
            for meta in getattr(member, ROUTE_ATTR, ()):
                entries.append(RouteEntry(
                    method=meta["method"],
                    path=meta["path"],
                    handler_name=name,
                    middlewares=meta["middlewares"],
                ))
        return register_controller(cls, prefix, entries)

    return decorator


class ControllerRegistry:
    """
    Lookup table for controller metadata.

    Descriptors declared on the class are found automatically; ``define``
    adds or overrides an entry for a class without touching the class.
    """

    def __init__(self):
        self._table: Dict[type, ControllerDescriptor] = {}

    def define(self, cls: type, prefix: str, routes: Sequence[RouteEntry]) -> ControllerDescriptor:
        descriptor = ControllerDescriptor(prefix=prefix, routes=tuple(routes))
        self._table[cls] = descriptor
        return descriptor

    def descriptor(self, cls: Type[Any]) -> ControllerDescriptor:
        found = self._table.get(cls) or cls.__dict__.get(DESCRIPTOR_ATTR)
        if found is None:
            raise MetadataNotFoundFault("prefix", cls)
        return found

    def get_metadata(self, key: str, cls: Type[Any]) -> Any:
        """Return ``"prefix"`` or ``"routes"`` metadata for a controller."""
        if key not in ("prefix", "routes"):
            raise MetadataNotFoundFault(key, cls)
        try:
            descriptor = self.descriptor(cls)
        except MetadataNotFoundFault:
            raise MetadataNotFoundFault(key, cls) from None
        return getattr(descriptor, key)

    def __contains__(self, cls: object) -> bool:
        return cls in self._table or DESCRIPTOR_ATTR in getattr(cls, "__dict__", {})
