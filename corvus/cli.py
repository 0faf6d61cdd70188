"""Corvus CLI.

Commands:
    run      - Serve an application
    routes   - Print the route table of an application
    version  - Show version information
"""

import asyncio
import importlib
import sys
from typing import Optional

import click

from . import __version__
from .app import Corvus
from .config import AppModule, LOG_LEVELS, Settings
from .faults import Fault


def _success(message: str) -> None:
    click.echo(click.style(message, fg="green"))


def _error(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)


def load_app(target: str, settings: Settings) -> Corvus:
    """
    Import ``module:attribute`` and return a configured Corvus application.

    The attribute may be a Corvus instance, an AppModule, or a zero-argument
    factory returning either.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"expected MODULE:ATTRIBUTE, got {target!r}", param_hint="APP")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import {module_name!r}: {e}", param_hint="APP") from e

    try:
        obj = getattr(module, attribute)
    except AttributeError:
        raise click.BadParameter(f"{module_name!r} has no attribute {attribute!r}", param_hint="APP") from None

    if not isinstance(obj, (Corvus, AppModule)) and callable(obj):
        obj = obj()

    if isinstance(obj, AppModule):
        return Corvus.from_settings(obj, settings)
    if isinstance(obj, Corvus):
        return obj.apply_settings(settings)

    raise click.BadParameter(
        f"{target!r} is a {type(obj).__name__}, not a Corvus application or AppModule",
        param_hint="APP",
    )


@click.group()
@click.version_option(version=__version__, prog_name="corvus")
def cli():
    """Bootstrap and serve Corvus applications."""


@cli.command("run")
@click.argument("app")
@click.option("--host", type=str, default=None, help="Bind host (default 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Bind port (default 3333)")
@click.option("--prod", is_flag=True, help="Production mode")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False), default=None, help=".env file to load")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default=None, help="Logging level")
def run(app: str, host: Optional[str], port: Optional[int], prod: bool, env_file: Optional[str], log_level: Optional[str]):
    """
    Serve APP (MODULE:ATTRIBUTE).

    Examples:
      corvus run myapp:app
      corvus run myapp:create_app --port=8080 --prod
    """
    try:
        settings = Settings.load(
            env_file=env_file,
            overrides={"host": host, "port": port, "prod": prod or None, "log_level": log_level},
        )
        application = load_app(app, settings)
        application.run()
    except Fault as e:
        _error(f"✗ {e.message}")
        sys.exit(1)


@cli.command("routes")
@click.argument("app")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False), default=None, help=".env file to load")
def routes(app: str, env_file: Optional[str]):
    """
    Bootstrap APP without a socket and print its route table.
    """
    try:
        application = load_app(app, Settings.load(env_file=env_file))
    except Fault as e:
        _error(f"✗ {e.message}")
        sys.exit(1)

    async def bootstrap() -> bool:
        try:
            return await application.bootstrap()
        finally:
            await application.shutdown()

    ok = asyncio.run(bootstrap())
    if not ok:
        error = application.sequence.error if application.sequence else None
        _error(f"✗ Startup failed: {error}")
        sys.exit(1)

    table = application.routes()
    if not table:
        click.echo("No routes mounted")
        return

    width = max(len(route["path"]) for route in table)
    for route in table:
        method = click.style(f"{route['method']:7}", fg="cyan")
        click.echo(f"  {method} {route['path']:{width}}  -> {route['handler']}")
    _success(f"✓ {len(table)} routes")


@cli.command("version")
def version():
    """Show version information."""
    click.echo(f"corvus {__version__}")
    click.echo(f"Python {sys.version.split()[0]}")


def main():
    """Entry point for the `corvus` command."""
    cli()


if __name__ == "__main__":
    main()
