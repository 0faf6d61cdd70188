"""
DatabaseRegistry - models of every connected database module.

One registry is created per application and handed to whatever needs model
lookup (it is registered as a value in the DI container). It is written
once per module during start-up and read-only afterwards.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Tuple


class DatabaseRegistry:
    """Maps database modules (by identity) to their model sets."""

    def __init__(self):
        self._entries: Dict[int, Tuple[Any, Dict[str, Any]]] = {}

    def add(self, database: Any, models: Mapping[str, Any]) -> None:
        key = id(database)
        if key in self._entries:
            raise ValueError(f"Database {database!r} is already registered")
        self._entries[key] = (database, dict(models))

    def models(self, database: Any) -> Dict[str, Any]:
        """Models registered for ``database``."""
        try:
            return dict(self._entries[id(database)][1])
        except KeyError:
            raise KeyError(f"Database {database!r} is not registered") from None

    def model(self, name: str) -> Any:
        """Find a model by name across every registered database."""
        for _, models in self._entries.values():
            if name in models:
                return models[name]
        raise KeyError(f"No registered database declares model '{name}'")

    def databases(self) -> List[Any]:
        return [database for database, _ in self._entries.values()]

    def __contains__(self, database: object) -> bool:
        return id(database) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.databases())
