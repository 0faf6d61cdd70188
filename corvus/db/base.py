"""
Database modules - the capability set the connection orchestrator drives.

A database module is anything with:
- ``connection(verbose)``: configure logging verbosity (called once)
- ``async connect()``: open the connection (awaited once)
- ``models()``: mapping of model name to model definition (after connect)
- optionally ``async disconnect()``: called on server shutdown
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class DatabaseModule(Protocol):
    def connection(self, verbose: bool) -> None:
        ...

    async def connect(self) -> None:
        ...

    def models(self) -> Mapping[str, Any]:
        ...


class Database(ABC):
    """
    Base class for database modules.

    Subclasses implement ``connect`` and ``models``; verbosity handling and
    naming are shared.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or type(self).__name__
        self.verbose = False
        self.connected = False
        self.logger = logging.getLogger(f"corvus.db.{self.name}")

    def connection(self, verbose: bool) -> None:
        self.verbose = verbose
        self.logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    def models(self) -> Mapping[str, Any]:
        ...

    async def disconnect(self) -> None:
        self.connected = False

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<{type(self).__name__} {self.name!r} {state}>"


class MemoryDatabase(Database):
    """
    In-process database module.

    Holds a declared model map and one dict-backed table per model. Useful
    for development and tests; ``fail_with`` makes ``connect`` raise.
    """

    def __init__(
        self,
        models: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
        delay: float = 0.0,
        fail_with: Optional[BaseException] = None,
    ):
        super().__init__(name=name or "memory")
        self._models: Dict[str, Any] = dict(models or {})
        self.tables: Dict[str, Dict[Any, Any]] = {}
        self.delay = delay
        self.fail_with = fail_with

    async def connect(self) -> None:
        self.logger.debug("Connecting %s", self.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.tables = {model: {} for model in self._models}
        self.connected = True
        self.logger.debug("Connected %s (%d models)", self.name, len(self._models))

    def models(self) -> Mapping[str, Any]:
        return dict(self._models)

    async def disconnect(self) -> None:
        self.tables.clear()
        await super().disconnect()
