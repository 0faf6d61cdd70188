"""
Core DI types: provider protocol, resolution context and the Container.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar, Union, runtime_checkable

from .errors import DependencyCycleError

logger = logging.getLogger("corvus.di")

T = TypeVar("T")

Token = Union[Type[Any], str]

# Module-level cache: type -> "module.qualname"
_type_key_cache: Dict[type, str] = {}

_CACHEABLE_SCOPES = frozenset(("singleton", "app", "request"))


def token_key(token: Token) -> str:
    """Convert a type or string token into its registry key."""
    if isinstance(token, str):
        return token
    if isinstance(token, type):
        key = _type_key_cache.get(token)
        if key is None:
            key = f"{token.__module__}.{token.__qualname__}"
            _type_key_cache[token] = key
        return key
    return str(token)


@dataclass(frozen=True)
class ProviderMeta:
    """Provider metadata."""
    name: str
    token: str
    scope: str  # "singleton", "app", "request", "transient"


class ResolveCtx:
    """
    Context for one resolution.

    Tracks the resolution stack for cycle detection.
    """
    __slots__ = ("container", "stack")

    def __init__(self, container: "Container", stack: Optional[List[str]] = None):
        self.container = container
        self.stack: List[str] = stack if stack is not None else []

    def push(self, token: str) -> None:
        if token in self.stack:
            raise DependencyCycleError(self.stack + [token])
        self.stack.append(token)

    def pop(self) -> None:
        self.stack.pop()


@runtime_checkable
class Provider(Protocol):
    """How to produce an instance for a token."""

    @property
    def meta(self) -> ProviderMeta:
        ...

    async def instantiate(self, ctx: ResolveCtx) -> Any:
        ...


class Container:
    """
    DI Container - holds providers and caches scoped instances.

    ``app``/``singleton`` providers are cached on the root container,
    ``request`` providers on the request-scoped child, ``transient``
    providers are never cached.
    """

    __slots__ = ("_providers", "_cache", "_scope", "_parent", "_finalizers")

    def __init__(self, scope: str = "app", parent: Optional["Container"] = None):
        self._providers: Dict[str, Provider] = {} if parent is None else parent._providers
        self._cache: Dict[str, Any] = {}
        self._scope = scope
        self._parent = parent
        self._finalizers: List[Any] = []

    @property
    def scope(self) -> str:
        return self._scope

    def register(self, provider: Provider) -> None:
        """
        Register a provider.

        Re-registering the same provider is a no-op; a different provider
        for an already registered token is an error.
        """
        key = provider.meta.token
        existing = self._providers.get(key)
        if existing is not None:
            if existing is provider:
                return
            raise ValueError(
                f"Provider for {key} already registered: {existing.meta.name}"
            )
        self._providers[key] = provider
        logger.debug("Registered provider %s (%s)", key, provider.meta.scope)

    def register_value(self, token: Token, value: Any, name: Optional[str] = None) -> None:
        from .providers import ValueProvider
        self.register(ValueProvider(value, token=token, name=name))

    def register_class(self, cls: Type[Any], scope: str = "app") -> None:
        from .providers import ClassProvider
        self.register(ClassProvider(cls, scope=scope))

    def is_registered(self, token: Token) -> bool:
        return token_key(token) in self._providers

    async def resolve_async(
        self,
        token: Token,
        *,
        optional: bool = False,
        _ctx: Optional[ResolveCtx] = None,
    ) -> Any:
        """
        Resolve a token to an instance.

        Unregistered classes are auto-wired through a transient
        ``ClassProvider`` so controllers need no explicit registration.

        Raises:
            ProviderNotFoundError: For unknown string tokens when not optional
            DependencyCycleError: On circular constructor dependencies
        """
        key = token_key(token)

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        provider = self._providers.get(key)
        if provider is None:
            if isinstance(token, type):
                from .providers import ClassProvider
                provider = ClassProvider(token, scope="transient")
            elif optional:
                return None
            else:
                requested_by = _ctx.stack[-1] if _ctx is not None and _ctx.stack else None
                self._raise_not_found(key, requested_by)

        if self._parent is not None and provider.meta.scope in ("singleton", "app"):
            return await self._parent.resolve_async(token, optional=optional, _ctx=_ctx)

        ctx = _ctx or ResolveCtx(container=self)
        ctx.push(key)
        try:
            instance = await provider.instantiate(ctx)
        finally:
            ctx.pop()

        if provider.meta.scope in _CACHEABLE_SCOPES:
            self._cache[key] = instance
            if hasattr(instance, "shutdown"):
                self._finalizers.append(instance.shutdown)
        return instance

    def create_request_scope(self) -> "Container":
        """Create a request-scoped child container sharing the providers."""
        return Container(scope="request", parent=self)

    async def shutdown(self) -> None:
        """Run finalizers in LIFO order and drop cached instances."""
        for finalizer in reversed(self._finalizers):
            try:
                result = finalizer()
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                logger.warning("Error during finalizer: %s", e)
        self._finalizers.clear()
        self._cache.clear()

    def _raise_not_found(self, key: str, requested_by: Optional[str] = None) -> None:
        from .errors import ProviderNotFoundError
        candidates = [name for name in self._providers if key in name]
        raise ProviderNotFoundError(token=key, candidates=candidates, requested_by=requested_by)
