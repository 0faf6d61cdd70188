"""
Startup sequence - the post-listen stages of an application.

Stages run strictly in order:

1. middleware: install the cross-cutting pipeline (synchronous)
2. databases: connect every database module concurrently
3. routes: resolve every route group, then mount them in declaration order
4. fallback: install the unhandled-request handler as the last layer

A failing stage stops the sequence. The failure is logged and reported
through lifecycle events; it is never raised, so a server that is already
listening keeps serving (unmatched requests get the engine's 404).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .config import RuntimeConfig
from .controller import ControllerRegistry
from .db import DatabaseRegistry, connect_databases, disconnect_databases
from .di import Container
from .fallback import unhandled_request
from .http import HTTPApp
from .pipeline import install_pipeline
from .resolver import MountedGroup, build_group

logger = logging.getLogger("corvus.lifecycle")


class LifecyclePhase(Enum):
    """Lifecycle phases."""
    INIT = "init"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class StartupStage(Enum):
    MIDDLEWARE = "middleware"
    DATABASES = "databases"
    ROUTES = "routes"
    FALLBACK = "fallback"


@dataclass
class LifecycleEvent:
    """Event emitted during lifecycle transitions."""
    phase: LifecyclePhase
    stage: Optional[StartupStage] = None
    message: Optional[str] = None
    error: Optional[BaseException] = None


class StartupSequence:
    """
    Runs the post-listen stages against an HTTP engine.

    One instance runs once. ``completed`` lists the stages that finished;
    ``error`` holds the failure, if any.
    """

    def __init__(
        self,
        app: HTTPApp,
        config: RuntimeConfig,
        container: Container,
        controllers: ControllerRegistry,
        databases: DatabaseRegistry,
    ):
        self.app = app
        self.config = config
        self.container = container
        self.controllers = controllers
        self.databases = databases
        self.phase = LifecyclePhase.INIT
        self.completed: List[StartupStage] = []
        self.mounted: List[MountedGroup] = []
        self.error: Optional[BaseException] = None
        self.event_handlers: List[Callable[[LifecycleEvent], None]] = []

    def on_event(self, handler: Callable[[LifecycleEvent], None]) -> None:
        self.event_handlers.append(handler)

    def _emit_event(self, event: LifecycleEvent) -> None:
        for handler in self.event_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Lifecycle event handler error: %s", e)

    async def run(self) -> bool:
        """
        Run every stage. Returns True when the application is ready.
        """
        if self.phase != LifecyclePhase.INIT:
            raise RuntimeError(f"Startup sequence already ran (phase {self.phase.value})")

        self.phase = LifecyclePhase.STARTING
        self._emit_event(LifecycleEvent(LifecyclePhase.STARTING))

        stage = StartupStage.MIDDLEWARE
        try:
            install_pipeline(self.app, self.config.pipeline, self.config.prod)
            self.completed.append(stage)

            stage = StartupStage.DATABASES
            await connect_databases(
                self.config.module.databases,
                self.databases,
                verbose=self.config.verbose,
            )
            self.completed.append(stage)

            stage = StartupStage.ROUTES
            groups = [
                await build_group(group, self.container, self.controllers)
                for group in self.config.module.routes
            ]
            for group in groups:
                self.app.mount(group.path, list(group.middlewares), group.router)
                self.mounted.append(group)
            self.completed.append(stage)

            stage = StartupStage.FALLBACK
            self.app.use(unhandled_request, name="unhandled_request", kind="fallback")
            self.completed.append(stage)

        except Exception as e:
            self.phase = LifecyclePhase.ERROR
            self.error = e
            logger.error("Startup failed during %s stage: %s", stage.value, e, exc_info=True)
            self._emit_event(LifecycleEvent(
                LifecyclePhase.ERROR,
                stage=stage,
                message="Startup failed",
                error=e,
            ))
            return False

        self.phase = LifecyclePhase.READY
        self._emit_event(LifecycleEvent(LifecyclePhase.READY))
        logger.info(
            "Application ready: %d databases, %d route groups, %d routes",
            len(self.databases), len(self.mounted), len(self.app.routes()),
        )
        return True

    async def shutdown(self) -> None:
        """
        Disconnect every connected database.

        Runs whatever state startup reached, including after a failed
        stage. A second call is a no-op.
        """
        if self.phase in (LifecyclePhase.STOPPING, LifecyclePhase.STOPPED):
            return

        self.phase = LifecyclePhase.STOPPING
        self._emit_event(LifecycleEvent(LifecyclePhase.STOPPING))

        await disconnect_databases(self.databases)

        self.phase = LifecyclePhase.STOPPED
        self._emit_event(LifecycleEvent(LifecyclePhase.STOPPED))
        logger.info("Application stopped")
