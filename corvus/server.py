"""
Server runtime - listening socket, uvicorn serving task and process-wide
error handlers.

The listening socket is bound here rather than by uvicorn so that a bind
failure surfaces synchronously from ``Corvus.start`` and the post-listen
startup sequence can be scheduled the moment the socket accepts
connections.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import sys
import threading
from typing import Any, Callable, Optional

import uvicorn

from .faults import ListenFault
from .lifecycle import StartupSequence

logger = logging.getLogger("corvus.server")
process_logger = logging.getLogger("corvus.process")

DEFAULT_BACKLOG = 2048


def bind_socket(host: str, port: int, backlog: int = DEFAULT_BACKLOG) -> socket.socket:
    """
    Bind and listen on ``host:port``.

    Raises:
        ListenFault: The socket could not be bound; it is closed first
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise ListenFault(host, port, e.strerror or str(e)) from e
    return sock


class ProcessHandlers:
    """
    Process-wide handlers for errors nothing else caught.

    Installs an event loop exception handler (unobserved task errors),
    ``sys.excepthook`` and ``threading.excepthook``. Each logs the error on
    ``corvus.process``; the loop and other threads keep running.
    ``uninstall`` restores whatever was there before.
    """

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_loop_handler: Optional[Callable[..., Any]] = None
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._previous_thread_excepthook: Optional[Callable[..., Any]] = None
        self.installed = False

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.installed:
            return
        self._loop = loop
        self._previous_loop_handler = loop.get_exception_handler()
        self._previous_excepthook = sys.excepthook
        self._previous_thread_excepthook = threading.excepthook

        loop.set_exception_handler(self.loop_exception_handler)
        sys.excepthook = self.excepthook
        threading.excepthook = self.thread_excepthook
        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._previous_loop_handler)
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_thread_excepthook
        self.installed = False

    @staticmethod
    def loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        error = context.get("exception")
        process_logger.error(
            "Unhandled asynchronous error: %s",
            context.get("message") or error,
            exc_info=(type(error), error, error.__traceback__) if error is not None else None,
        )

    def excepthook(self, exc_type, exc_value, exc_traceback) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        process_logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    def thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        name = args.thread.name if args.thread is not None else "<unknown>"
        process_logger.critical(
            "Uncaught exception in thread %s",
            name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )


def create_server(app: Any, host: str, port: int, log_level: str = "info") -> uvicorn.Server:
    """uvicorn server for an externally bound socket; logging is left to the application."""
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        lifespan="off",
        log_config=None,
        log_level=log_level,
        access_log=False,
    )
    return uvicorn.Server(config)


class RunningServer:
    """
    Handle to a listening application.

    ``ready()`` waits for the startup sequence and returns whether it
    succeeded; ``stop()`` shuts the server down and runs the sequence's
    shutdown, which disconnects the databases; ``wait()`` blocks until the
    server exits.
    """

    def __init__(
        self,
        server: uvicorn.Server,
        sock: socket.socket,
        serve_task: asyncio.Task,
        startup_task: asyncio.Task,
        sequence: StartupSequence,
        handlers: ProcessHandlers,
    ):
        self.server = server
        self.socket = sock
        self.serve_task = serve_task
        self.startup_task = startup_task
        self.sequence = sequence
        self.handlers = handlers
        self.host, self.port = sock.getsockname()[:2]
        self.stopped = False

    async def ready(self) -> bool:
        return await asyncio.shield(self.startup_task)

    async def wait(self) -> None:
        await self.serve_task

    async def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True

        if not self.startup_task.done():
            self.startup_task.cancel()
            await asyncio.gather(self.startup_task, return_exceptions=True)

        self.server.should_exit = True
        await self.serve_task
        self.socket.close()

        await self.sequence.shutdown()
        self.handlers.uninstall()
        logger.info("Server on port %s stopped", self.port)

    def __repr__(self) -> str:
        state = "stopped" if self.stopped else "running"
        return f"<RunningServer {self.host}:{self.port} {state}>"
