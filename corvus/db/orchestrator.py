"""
Database connection orchestrator.

Connects every declared database module concurrently and registers each
module's models once its connection succeeds. The batch is fail-fast: the
first failure cancels the connects still in flight and surfaces as a
``DatabaseConnectionFault``. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from ..faults import DatabaseConnectionFault
from .registry import DatabaseRegistry

logger = logging.getLogger("corvus.db")


def _database_name(database: Any) -> str:
    return getattr(database, "name", None) or type(database).__name__


async def connect_databases(
    databases: Sequence[Any],
    registry: DatabaseRegistry,
    *,
    verbose: bool = False,
) -> None:
    """
    Connect ``databases`` concurrently and register their models.

    Returns once every module has connected. An empty sequence returns
    immediately.

    Raises:
        DatabaseConnectionFault: If any module fails to connect
    """
    if not databases:
        return

    async def connect_one(database: Any) -> None:
        await database.connect()
        registry.add(database, database.models())
        logger.info("Connected database %s", _database_name(database))

    for database in databases:
        database.connection(verbose)

    tasks = [asyncio.ensure_future(connect_one(database)) for database in databases]
    try:
        await asyncio.gather(*tasks)
    except Exception as error:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        failed = next(
            (
                database
                for database, task in zip(databases, tasks)
                if task.done() and not task.cancelled() and task.exception() is error
            ),
            None,
        )
        name = _database_name(failed) if failed is not None else "<unknown>"
        raise DatabaseConnectionFault(name, str(error) or type(error).__name__) from error


async def disconnect_databases(registry: DatabaseRegistry) -> None:
    """Disconnect every registered database that supports it."""
    for database in registry:
        disconnect = getattr(database, "disconnect", None)
        if disconnect is None:
            continue
        try:
            await disconnect()
        except Exception as e:
            logger.warning("Error disconnecting database %s: %s", _database_name(database), e)
