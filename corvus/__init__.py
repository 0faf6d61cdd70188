"""
Corvus - application bootstrap for async HTTP services

Turns a declarative description of controllers, databases and middleware
into a listening ASGI server:
- Controllers: route tables declared at class-definition time
- DI: controllers resolved through a scoped container
- Databases: modules connected concurrently before any route is mounted
- Pipeline: CORS, body parsers and request logging in a fixed order
- Faults: structured startup and request errors
"""

__version__ = "0.1.0"

from .app import Corvus
from .config import AppModule, RouteGroup, RuntimeConfig, Settings
from .controller import (
    ControllerDescriptor,
    ControllerRegistry,
    DELETE,
    GET,
    HEAD,
    HTTPMethod,
    OPTIONS,
    PATCH,
    POST,
    PUT,
    RouteEntry,
    controller,
    register_controller,
)
from .db import Database, DatabaseModule, DatabaseRegistry, MemoryDatabase
from .di import Container
from .faults import (
    BadRequest,
    ConfigurationFault,
    DatabaseConnectionFault,
    Fault,
    FaultDomain,
    HandlerNotFoundFault,
    InvalidJSON,
    ListenFault,
    MetadataNotFoundFault,
    PayloadTooLarge,
)
from .http import HTTPApp, RequestCtx
from .lifecycle import LifecyclePhase, StartupSequence
from .middleware import CORSMiddleware, JSONBodyParser, RequestLogger, URLEncodedBodyParser
from .pipeline import PipelineSettings
from .request import Request
from .response import Response
from .router import Router
from .server import RunningServer

__all__ = [
    "__version__",
    # Application
    "Corvus",
    "AppModule",
    "RouteGroup",
    "RuntimeConfig",
    "Settings",
    "RunningServer",
    "StartupSequence",
    "LifecyclePhase",
    # Controllers
    "controller",
    "register_controller",
    "ControllerDescriptor",
    "ControllerRegistry",
    "RouteEntry",
    "HTTPMethod",
    "GET",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "HEAD",
    "OPTIONS",
    # Databases
    "Database",
    "DatabaseModule",
    "DatabaseRegistry",
    "MemoryDatabase",
    # DI
    "Container",
    # HTTP
    "HTTPApp",
    "Router",
    "Request",
    "RequestCtx",
    "Response",
    "PipelineSettings",
    "CORSMiddleware",
    "JSONBodyParser",
    "URLEncodedBodyParser",
    "RequestLogger",
    # Faults
    "Fault",
    "FaultDomain",
    "ConfigurationFault",
    "ListenFault",
    "DatabaseConnectionFault",
    "MetadataNotFoundFault",
    "HandlerNotFoundFault",
    "BadRequest",
    "InvalidJSON",
    "PayloadTooLarge",
]
