"""
Corvus DI - Constructor-injection container used to resolve controllers.

Exports:
- Container: provider registry and scoped instance cache
- ClassProvider, ValueProvider: instantiation strategies
- DIError, ProviderNotFoundError, DependencyCycleError
"""

from .core import Container, Provider, ProviderMeta, ResolveCtx, token_key
from .errors import DependencyCycleError, DIError, ProviderNotFoundError
from .providers import ClassProvider, ValueProvider

__all__ = [
    "Container",
    "Provider",
    "ProviderMeta",
    "ResolveCtx",
    "token_key",
    "ClassProvider",
    "ValueProvider",
    "DIError",
    "ProviderNotFoundError",
    "DependencyCycleError",
]
