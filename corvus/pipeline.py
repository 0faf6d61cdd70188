"""
Middleware pipeline builder.

Installs the cross-cutting middleware on the HTTP engine in a fixed order:
CORS, JSON body parser, url-encoded body parser, then the request logger.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .http import HTTPApp, Layer, Middleware
from .middleware import (
    CORSMiddleware,
    DEFAULT_BODY_LIMIT,
    DEFAULT_PARAMETER_LIMIT,
    JSONBodyParser,
    RequestLogger,
    URLEncodedBodyParser,
)


@dataclass(frozen=True)
class PipelineSettings:
    """
    Middleware slots.

    ``logger`` left as None picks the request logger by production mode
    at install time.
    """

    cors: Middleware
    json_parser: Middleware
    urlencoded_parser: Middleware
    logger: Optional[Middleware] = None

    @classmethod
    def defaults(
        cls,
        body_limit: int = DEFAULT_BODY_LIMIT,
        parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
    ) -> "PipelineSettings":
        return cls(
            cors=CORSMiddleware(),
            json_parser=JSONBodyParser(limit=body_limit),
            urlencoded_parser=URLEncodedBodyParser(
                limit=body_limit,
                extended=True,
                parameter_limit=parameter_limit,
            ),
        )


def default_logger(prod: bool) -> RequestLogger:
    return RequestLogger("tiny" if prod else "dev")


def install_pipeline(app: HTTPApp, settings: PipelineSettings, prod: bool) -> List[Layer]:
    """Install the pipeline on ``app`` and return the added layers."""
    logger = settings.logger if settings.logger is not None else default_logger(prod)
    return [
        app.use(settings.cors, name="cors"),
        app.use(settings.json_parser, name="json_parser"),
        app.use(settings.urlencoded_parser, name="urlencoded_parser"),
        app.use(logger, name="logger"),
    ]
