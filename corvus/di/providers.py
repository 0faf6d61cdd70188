"""
Provider implementations for different instantiation strategies.
"""

from __future__ import annotations

import inspect
from typing import Any, Dict, Optional, Type, TypeVar, get_type_hints

from .core import ProviderMeta, ResolveCtx, Token, token_key
from .errors import DIError

T = TypeVar("T")


class ClassProvider:
    """
    Provider that instantiates a class by resolving constructor dependencies.

    Every ``__init__`` parameter must be annotated with a resolvable type,
    unless it has a default value. Supports ``async_init()`` for
    asynchronous set-up after construction.
    """

    __slots__ = ("_meta", "_cls", "_dependencies", "_has_async_init")

    def __init__(self, cls: Type[T], scope: str = "app"):
        self._cls = cls
        self._dependencies = self._extract_dependencies(cls)
        self._has_async_init = hasattr(cls, "async_init")
        self._meta = ProviderMeta(name=cls.__name__, token=token_key(cls), scope=scope)

    @property
    def meta(self) -> ProviderMeta:
        return self._meta

    async def instantiate(self, ctx: ResolveCtx) -> Any:
        resolved = {}
        for name, dep in self._dependencies.items():
            # parameters with defaults are only injected when explicitly provided
            if dep["optional"] and not ctx.container.is_registered(dep["token"]):
                continue
            value = await ctx.container.resolve_async(
                dep["token"], optional=dep["optional"], _ctx=ctx,
            )
            if value is None and dep["optional"]:
                continue
            resolved[name] = value

        instance = self._cls(**resolved)

        if self._has_async_init:
            await instance.async_init()

        return instance

    def _extract_dependencies(self, cls: Type) -> Dict[str, Dict[str, Any]]:
        """Map ``__init__`` parameter names to dependency info."""
        deps: Dict[str, Dict[str, Any]] = {}

        if cls.__init__ is object.__init__:
            return deps

        try:
            sig = inspect.signature(cls.__init__)
        except ValueError:
            return deps

        try:
            hints = get_type_hints(cls.__init__)
        except Exception:
            hints = {}

        for name, param in sig.parameters.items():
            if name in ("self", "cls"):
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue

            annotation = hints.get(name, param.annotation)
            has_default = param.default is not inspect.Parameter.empty

            if annotation is inspect.Parameter.empty:
                if has_default:
                    continue
                raise DIError(
                    f"Missing type annotation for parameter '{name}' "
                    f"in {cls.__qualname__}.__init__"
                )

            deps[name] = {"token": annotation, "optional": has_default}

        return deps


class ValueProvider:
    """Provider that returns a pre-bound constant value."""

    __slots__ = ("_meta", "_value")

    def __init__(
        self,
        value: Any,
        token: Token,
        name: Optional[str] = None,
        scope: str = "singleton",
    ):
        self._value = value
        self._meta = ProviderMeta(name=name or "value", token=token_key(token), scope=scope)

    @property
    def meta(self) -> ProviderMeta:
        return self._meta

    async def instantiate(self, ctx: ResolveCtx) -> Any:
        return self._value
