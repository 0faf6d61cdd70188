"""
Corvus - application builder and lifecycle controller.

Configuration is passive until ``start``:

    app = Corvus(AppModule(databases=[db], routes=[RouteGroup(controllers=[Users])]))
    app.prod_mode(True).use(request_id).set_cors(CORSMiddleware(["https://example.com"]))
    server = await app.start(3333)

``start`` binds the socket, then runs the startup sequence (middleware,
databases, routes, fallback) in the background. Stage failures are logged,
never raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import AppModule, RuntimeConfig, Settings
from .controller import ControllerRegistry
from .db import DatabaseRegistry, disconnect_databases
from .di import Container
from .faults import ConfigurationFault
from .http import HTTPApp, Middleware
from .lifecycle import StartupSequence
from .middleware import JSONBodyParser, URLEncodedBodyParser
from .pipeline import PipelineSettings
from .server import (
    ProcessHandlers,
    RunningServer,
    bind_socket,
    create_server,
)

logger = logging.getLogger("corvus.app")

_BODY_PARSER_KEYS = {"json": "json_parser", "urlencoded": "urlencoded_parser"}


class Corvus:
    """
    Application builder.

    Args:
        module: Databases and route groups of the application
        settings: Server settings (host, port, body limits, ...)
        container: DI container used to resolve controllers
        controllers: Controller metadata table

    Attributes:
        asgi: The ASGI application; usable with any ASGI server
        databases: Models of every connected database module
    """

    def __init__(
        self,
        module: Optional[AppModule] = None,
        *,
        settings: Optional[Settings] = None,
        container: Optional[Container] = None,
        controllers: Optional[ControllerRegistry] = None,
    ):
        self.module = module or AppModule()
        self.settings = settings or Settings()
        self.container = container or Container()
        self.controllers = controllers or ControllerRegistry()
        self.databases = DatabaseRegistry()
        self.container.register_value(DatabaseRegistry, self.databases)

        self.asgi = HTTPApp(container=self.container)
        self.asgi.on_startup(self._lifespan_startup)
        self.asgi.on_shutdown(self._lifespan_shutdown)

        self._prod = False
        self._pipeline = PipelineSettings.defaults(
            body_limit=self.settings.body_limit,
            parameter_limit=self.settings.parameter_limit,
        )
        self._started = False
        self._sequence: Optional[StartupSequence] = None
        self._handlers = ProcessHandlers()

    @classmethod
    def from_settings(cls, module: AppModule, settings: Settings, **kwargs) -> "Corvus":
        app = cls(module, settings=settings, **kwargs)
        app.prod_mode(settings.prod)
        return app

    def apply_settings(self, settings: Settings) -> "Corvus":
        """
        Adopt ``settings`` for host, port, log level and production mode.

        Body parsers keep the limits they were created with; use
        ``set_body_limits`` to change them.
        """
        self._check_configurable("apply_settings")
        self.settings = settings
        return self.prod_mode(settings.prod)

    # ------------------------------------------------------------------
    # Fluent configuration
    # ------------------------------------------------------------------

    def _check_configurable(self, operation: str) -> None:
        if self._started:
            raise ConfigurationFault(
                f"Cannot call {operation}() after the application has started",
                metadata={"operation": operation},
            )

    @property
    def is_prod(self) -> bool:
        return self._prod

    @property
    def started(self) -> bool:
        return self._started

    def prod_mode(self, flag: bool = True) -> "Corvus":
        """Enable production mode. Once enabled it stays enabled."""
        self._check_configurable("prod_mode")
        self._prod = self._prod or bool(flag)
        return self

    def plugins(self, handlers: Sequence[Middleware]) -> "Corvus":
        """Install ``handlers`` on the HTTP engine now, in order."""
        self._check_configurable("plugins")
        for handler in handlers:
            self.asgi.use(handler, name=f"plugin:{_handler_name(handler)}")
        return self

    def use(self, handler: Middleware) -> "Corvus":
        self._check_configurable("use")
        self.asgi.use(handler, name=f"plugin:{_handler_name(handler)}")
        return self

    def set_body_parser(
        self,
        config: Optional[Mapping[str, Middleware]] = None,
        *,
        json: Optional[Middleware] = None,
        urlencoded: Optional[Middleware] = None,
    ) -> "Corvus":
        """
        Replace the JSON and/or url-encoded body parser.

        Only the provided keys are replaced; an empty configuration changes
        nothing.
        """
        self._check_configurable("set_body_parser")
        parsers: Dict[str, Middleware] = dict(config or {})
        if json is not None:
            parsers["json"] = json
        if urlencoded is not None:
            parsers["urlencoded"] = urlencoded

        unknown = set(parsers) - set(_BODY_PARSER_KEYS)
        if unknown:
            raise ConfigurationFault(
                f"Unknown body parser keys: {', '.join(sorted(unknown))}",
                metadata={"keys": sorted(unknown)},
            )

        changes = {_BODY_PARSER_KEYS[key]: parser for key, parser in parsers.items() if parser is not None}
        if changes:
            self._pipeline = replace(self._pipeline, **changes)
        return self

    def set_body_limits(self, body_limit: int, parameter_limit: Optional[int] = None) -> "Corvus":
        """Replace both body parsers with default parsers using these limits."""
        return self.set_body_parser(
            json=JSONBodyParser(limit=body_limit),
            urlencoded=URLEncodedBodyParser(
                limit=body_limit,
                parameter_limit=parameter_limit or self.settings.parameter_limit,
            ),
        )

    def set_cors(self, handler: Middleware) -> "Corvus":
        self._check_configurable("set_cors")
        self._pipeline = replace(self._pipeline, cors=handler)
        return self

    def set_logger(self, handler: Middleware) -> "Corvus":
        self._check_configurable("set_logger")
        self._pipeline = replace(self._pipeline, logger=handler)
        return self

    def build(self) -> RuntimeConfig:
        """Snapshot the current configuration."""
        return RuntimeConfig(
            prod=self._prod,
            pipeline=self._pipeline,
            module=self.module,
            settings=self.settings,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _begin(self) -> StartupSequence:
        self._check_configurable("start")
        self._started = True
        self._sequence = StartupSequence(
            self.asgi,
            self.build(),
            self.container,
            self.controllers,
            self.databases,
        )
        return self._sequence

    @property
    def sequence(self) -> Optional[StartupSequence]:
        return self._sequence

    async def bootstrap(self) -> bool:
        """
        Run the startup sequence without a listening socket.

        Returns True when every stage completed; failures are logged.
        """
        return await self._begin().run()

    async def shutdown(self) -> None:
        """Disconnect the databases connected by ``bootstrap``."""
        if self._sequence is not None:
            await self._sequence.shutdown()
        else:
            await disconnect_databases(self.databases)

    async def start(self, port: Optional[int] = None, host: Optional[str] = None) -> RunningServer:
        """
        Listen on ``host:port`` and start the application in the background.

        Raises:
            ListenFault: The port could not be bound
            ConfigurationFault: The application was already started
        """
        port = self.settings.port if port is None else port
        host = self.settings.host if host is None else host
        self._check_configurable("start")

        sock = bind_socket(host, port)
        sequence = self._begin()
        loop = asyncio.get_running_loop()
        self._handlers.install(loop)

        server = create_server(self.asgi, host, port, log_level=self.settings.log_level.lower())
        serve_task = loop.create_task(server.serve(sockets=[sock]))
        startup_task = loop.create_task(sequence.run())

        running = RunningServer(server, sock, serve_task, startup_task, sequence, self._handlers)
        logger.info("Server running on port %s", running.port)
        return running

    def run(self, port: Optional[int] = None, host: Optional[str] = None) -> None:
        """Serve until interrupted."""
        logging.basicConfig(
            level=getattr(logging, self.settings.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        async def serve():
            running = await self.start(port, host)
            try:
                await running.wait()
            finally:
                await running.stop()

        try:
            asyncio.run(serve())
        except KeyboardInterrupt:
            logger.info("Interrupted, server stopped")

    def routes(self) -> List[Dict[str, Any]]:
        """Mounted routes, in precedence order."""
        return self.asgi.routes()

    # ------------------------------------------------------------------
    # ASGI lifespan (external servers)
    # ------------------------------------------------------------------

    async def _lifespan_startup(self) -> None:
        if not self._started:
            await self.bootstrap()

    async def _lifespan_shutdown(self) -> None:
        await self.shutdown()

    async def __call__(self, scope, receive, send):
        await self.asgi(scope, receive, send)

    def __repr__(self) -> str:
        mode = "prod" if self._prod else "dev"
        state = "started" if self._started else "configuring"
        return f"<Corvus {mode} {state} groups={len(self.module.routes)}>"


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__name__", None) or type(handler).__name__
