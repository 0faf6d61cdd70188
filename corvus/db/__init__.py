"""
Corvus Database - database modules, model registry and the concurrent
connection orchestrator.
"""

from .base import Database, DatabaseModule, MemoryDatabase
from .orchestrator import connect_databases, disconnect_databases
from .registry import DatabaseRegistry
from ..faults import DatabaseConnectionFault

__all__ = [
    "Database",
    "DatabaseModule",
    "MemoryDatabase",
    "DatabaseRegistry",
    "DatabaseConnectionFault",
    "connect_databases",
    "disconnect_databases",
]
