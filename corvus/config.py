"""
Application declarations and runtime settings.

- AppModule / RouteGroup: the declarative application description
- Settings: server settings loaded from defaults, a ``.env`` file,
  environment variables and explicit overrides (in increasing priority)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from dotenv import dotenv_values

from .faults import ConfigurationFault

if TYPE_CHECKING:
    from .pipeline import PipelineSettings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3333
LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


@dataclass(frozen=True)
class RouteGroup:
    """
    Controllers mounted together under one path.

    Attributes:
        path: Mount path ("" mounts at the root)
        middlewares: Middlewares run for every request under ``path``
        controllers: Controller classes, in mount order
        callback: Error callback ``(error, request, ctx)``; errors are
            forwarded unchanged when omitted
    """
    path: str = ""
    middlewares: Tuple[Any, ...] = ()
    controllers: Tuple[type, ...] = ()
    callback: Optional[Callable[..., Any]] = None

    def __post_init__(self):
        object.__setattr__(self, "middlewares", tuple(self.middlewares))
        object.__setattr__(self, "controllers", tuple(self.controllers))


@dataclass(frozen=True)
class AppModule:
    """Databases and route groups making up an application."""
    databases: Tuple[Any, ...] = ()
    routes: Tuple[RouteGroup, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "databases", tuple(self.databases))
        object.__setattr__(self, "routes", route_groups(self.routes))


@dataclass
class Settings:
    """Server settings."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    prod: bool = False
    log_level: str = "info"
    body_limit: int = 50 * 1024 * 1024
    parameter_limit: int = 100_000_000

    @classmethod
    def load(
        cls,
        env_prefix: str = "CORVUS_",
        env_file: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Settings":
        """
        Load settings.

        Sources, lowest priority first: field defaults, ``env_file``
        (``KEY=value`` lines), ``{env_prefix}{FIELD}`` environment
        variables, ``overrides``. Unknown keys are ignored; ``None``
        overrides are skipped.

        Raises:
            ConfigurationFault: A value cannot be coerced or is out of range
        """
        names = {f.name: f for f in fields(cls)}
        raw: Dict[str, Any] = {}

        if env_file is not None:
            if not os.path.exists(env_file):
                raise ConfigurationFault(
                    f"Env file not found: {env_file}",
                    metadata={"env_file": env_file},
                )
            raw.update(_prefixed(dotenv_values(env_file), env_prefix))

        raw.update(_prefixed(os.environ, env_prefix))

        for key, value in (overrides or {}).items():
            if value is not None:
                raw[key] = value

        values = {}
        for key, value in raw.items():
            if key in names:
                values[key] = _coerce(key, value, names[key].type)

        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigurationFault(f"Port out of range: {self.port}", metadata={"port": self.port})
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationFault(
                f"Unknown log level: {self.log_level}",
                metadata={"log_level": self.log_level},
            )
        if self.body_limit <= 0:
            raise ConfigurationFault("body_limit must be positive")
        if self.parameter_limit <= 0:
            raise ConfigurationFault("parameter_limit must be positive")


def _prefixed(source: Mapping[str, Optional[str]], prefix: str) -> Dict[str, Any]:
    """``{"CORVUS_PORT": "80"}`` -> ``{"port": "80"}``."""
    return {
        key[len(prefix):].lower(): value
        for key, value in source.items()
        if key.startswith(prefix) and value is not None
    }


_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off", "")


def _coerce(name: str, value: Any, annotation: Any) -> Any:
    # dataclass field types are strings under postponed annotations
    kind = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", str(annotation))

    if kind == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigurationFault(
            f"Setting '{name}' expects a boolean, got {value!r}",
            metadata={"setting": name, "value": value},
        )

    if kind == "int":
        if isinstance(value, bool):
            raise ConfigurationFault(
                f"Setting '{name}' expects an integer, got {value!r}",
                metadata={"setting": name, "value": value},
            )
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationFault(
                f"Setting '{name}' expects an integer, got {value!r}",
                metadata={"setting": name, "value": value},
            ) from None

    return str(value)


def route_groups(groups: Sequence[Any]) -> Tuple[RouteGroup, ...]:
    """Accept RouteGroup instances or plain mappings with the same keys."""
    result = []
    for group in groups:
        if isinstance(group, RouteGroup):
            result.append(group)
        elif isinstance(group, Mapping):
            result.append(RouteGroup(**group))
        else:
            raise ConfigurationFault(
                f"Route group must be a RouteGroup or mapping, got {type(group).__name__}"
            )
    return tuple(result)


@dataclass(frozen=True)
class RuntimeConfig:
    """
    Immutable snapshot of an application's configuration.

    Produced by ``Corvus.build()``; the startup sequence reads only this.
    """
    prod: bool
    pipeline: "PipelineSettings"
    module: AppModule
    settings: Settings

    @property
    def verbose(self) -> bool:
        """Database modules log verbosely outside production."""
        return not self.prod
