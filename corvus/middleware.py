"""
Cross-cutting middleware installed by the pipeline builder.

- CORSMiddleware: CORS headers and preflight answers
- JSONBodyParser / URLEncodedBodyParser: size-limited body decoding into
  ``request.payload``
- RequestLogger: access log lines in ``tiny``, ``dev`` or ``combined``
  format on the ``corvus.requests`` logger

All follow the layer signature ``async def __call__(request, ctx, next)``.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from .faults import BadRequest, InvalidJSON, PayloadTooLarge, RequestFault
from .http import Handler, RequestCtx
from .request import Request
from .response import Response

DEFAULT_BODY_LIMIT = 50 * 1024 * 1024
DEFAULT_PARAMETER_LIMIT = 100_000_000


def _fault_response(fault: RequestFault) -> Response:
    return Response.json({"error": fault.to_dict()}, status=fault.status)


def _has_body(request: Request) -> bool:
    return request.header("transfer-encoding") is not None or bool(request.content_length())


# ============================================================================
# CORS
# ============================================================================

class CORSMiddleware:
    """
    Handles CORS headers.

    Defaults are permissive: any origin, the common methods, and request
    headers reflected back on preflight.
    """

    def __init__(
        self,
        allow_origins: Optional[List[str]] = None,
        allow_methods: Optional[List[str]] = None,
        allow_headers: Optional[List[str]] = None,
        allow_credentials: bool = False,
        max_age: Optional[int] = None,
    ):
        self.allow_origins = allow_origins or ["*"]
        self.allow_methods = allow_methods or ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
        self.allow_headers = allow_headers
        self.allow_credentials = allow_credentials
        self.max_age = max_age

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if request.method == "OPTIONS" and request.header("access-control-request-method"):
            return self._preflight_response(request)

        response = await next(request, ctx)
        response.headers.update(self._origin_headers(request))
        return response

    def _origin_headers(self, request: Request) -> Dict[str, str]:
        headers = {}
        origin = request.header("origin")
        if "*" in self.allow_origins and not self.allow_credentials:
            headers["access-control-allow-origin"] = "*"
        elif origin and ("*" in self.allow_origins or origin in self.allow_origins):
            headers["access-control-allow-origin"] = origin
            headers["vary"] = "Origin"
        if self.allow_credentials:
            headers["access-control-allow-credentials"] = "true"
        return headers

    def _preflight_response(self, request: Request) -> Response:
        headers = self._origin_headers(request)
        headers["access-control-allow-methods"] = ",".join(self.allow_methods)

        if self.allow_headers:
            headers["access-control-allow-headers"] = ",".join(self.allow_headers)
        else:
            requested = request.header("access-control-request-headers")
            if requested:
                headers["access-control-allow-headers"] = requested

        if self.max_age is not None:
            headers["access-control-max-age"] = str(self.max_age)

        return Response(b"", status=204, headers=headers)


# ============================================================================
# Body parsers
# ============================================================================

class JSONBodyParser:
    """
    Decodes ``application/json`` (and ``+json``) bodies.

    A body of exactly ``limit`` bytes is accepted, one more is rejected with
    413. In strict mode only objects and arrays are accepted.
    """

    media_type = "application/json"

    def __init__(self, limit: int = DEFAULT_BODY_LIMIT, strict: bool = True):
        self.limit = limit
        self.strict = strict

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if request.payload is not None or not self._applies(request):
            return await next(request, ctx)

        try:
            request.payload = await self.parse(request)
        except RequestFault as fault:
            return _fault_response(fault)

        return await next(request, ctx)

    def _applies(self, request: Request) -> bool:
        content_type = request.content_type()
        return content_type is not None and content_type.matches(self.media_type) and _has_body(request)

    async def parse(self, request: Request) -> Any:
        raw = await request.body(limit=self.limit)
        if not raw:
            return {}

        try:
            data = json.loads(raw.decode(request.content_type().charset))
        except (UnicodeDecodeError, LookupError) as e:
            raise InvalidJSON(f"Invalid encoding in JSON payload: {e}")
        except json.JSONDecodeError as e:
            raise InvalidJSON(f"Invalid JSON: {e}")
        except RecursionError:
            raise InvalidJSON("JSON payload is nested too deeply")

        if self.strict and not isinstance(data, (dict, list)):
            raise InvalidJSON("JSON body must be an object or an array")
        return data


class URLEncodedBodyParser:
    """
    Decodes ``application/x-www-form-urlencoded`` bodies.

    With ``extended`` enabled, bracket keys build nested structures
    (``a[b]=1`` -> ``{"a": {"b": "1"}}``, ``a[]=1&a[]=2`` -> ``{"a": ["1", "2"]}``).
    More than ``parameter_limit`` fields is rejected with 413.
    """

    media_type = "application/x-www-form-urlencoded"

    def __init__(
        self,
        limit: int = DEFAULT_BODY_LIMIT,
        *,
        extended: bool = True,
        parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
    ):
        self.limit = limit
        self.extended = extended
        self.parameter_limit = parameter_limit

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if request.payload is not None or not self._applies(request):
            return await next(request, ctx)

        try:
            request.payload = await self.parse(request)
        except RequestFault as fault:
            return _fault_response(fault)

        return await next(request, ctx)

    def _applies(self, request: Request) -> bool:
        content_type = request.content_type()
        return content_type is not None and content_type.matches(self.media_type) and _has_body(request)

    async def parse(self, request: Request) -> Dict[str, Any]:
        raw = await request.body(limit=self.limit)
        try:
            text = raw.decode(request.content_type().charset)
        except (UnicodeDecodeError, LookupError) as e:
            raise BadRequest(f"Invalid encoding in form payload: {e}")

        if text.count("&") + 1 > self.parameter_limit:
            raise PayloadTooLarge(
                "Too many parameters",
                metadata={"parameter_limit": self.parameter_limit},
            )

        items = parse_qsl(text, keep_blank_values=True)
        if not self.extended:
            form: Dict[str, Any] = {}
            for key, value in items:
                if key in form:
                    previous = form[key]
                    form[key] = (previous if isinstance(previous, list) else [previous]) + [value]
                else:
                    form[key] = value
            return form
        return _nest(items)


def _split_key(key: str) -> List[str]:
    """``a[b][]`` -> ``["a", "b", ""]``."""
    head, bracket, rest = key.partition("[")
    if not bracket or not rest.endswith("]"):
        return [key]
    return [head] + rest[:-1].split("][")


def _nest(items: List[Tuple[str, str]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in items:
        parts = _split_key(key)
        node: Any = result
        for index, part in enumerate(parts):
            last = index == len(parts) - 1
            if isinstance(node, list):
                if last:
                    node.append(value)
                else:
                    child: Dict[str, Any] = {}
                    node.append(child)
                    node = child
                continue
            if last:
                if part in node:
                    existing = node[part]
                    node[part] = (existing if isinstance(existing, list) else [existing]) + [value]
                else:
                    node[part] = value
            else:
                following = parts[index + 1]
                existing = node.get(part)
                if isinstance(existing, (dict, list)):
                    node = existing
                    continue
                if part not in node:
                    node[part] = [] if following == "" else {}
                elif following == "":
                    node[part] = [existing]
                else:
                    # scalar and bracketed keys share the name; keep both
                    node[part] = [existing, {}]
                    node = node[part][1]
                    continue
                node = node[part]
    return result


# ============================================================================
# Request logging
# ============================================================================

_COLORS = {
    "reset": "\033[0m",
    "green": "\033[32m",
    "cyan": "\033[36m",
    "yellow": "\033[33m",
    "red": "\033[31m",
}


def _status_color(status: int) -> str:
    if status < 300:
        return _COLORS["green"]
    if status < 400:
        return _COLORS["cyan"]
    if status < 500:
        return _COLORS["yellow"]
    return _COLORS["red"]


class RequestLogger:
    """
    Access logger.

    Formats:
        tiny:      ``GET /users 200 42 - 1.234 ms``
        dev:       ``GET /users 200 1.234 ms - 42`` with a coloured status
        combined:  Apache combined log format
    """

    FORMATS = ("tiny", "dev", "combined")

    def __init__(self, format: str = "dev", logger: Optional[logging.Logger] = None):
        if format not in self.FORMATS:
            raise ValueError(f"Unknown log format {format!r}; expected one of {self.FORMATS}")
        self.format = format
        self.logger = logger or logging.getLogger("corvus.requests")

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if not self.logger.isEnabledFor(logging.INFO):
            return await next(request, ctx)

        start = time.monotonic()
        response = await next(request, ctx)
        elapsed_ms = (time.monotonic() - start) * 1000.0

        self.logger.info(self.format_line(request, response, elapsed_ms))
        return response

    def format_line(self, request: Request, response: Response, elapsed_ms: float) -> str:
        length = response.headers.get("content-length") or str(len(response.body))
        url = request.original_url

        if self.format == "tiny":
            return f"{request.method} {url} {response.status} {length} - {elapsed_ms:.3f} ms"

        if self.format == "dev":
            color = _status_color(response.status)
            return (
                f"{request.method} {url} {color}{response.status}{_COLORS['reset']} "
                f"{elapsed_ms:.3f} ms - {length}"
            )

        now = datetime.now(timezone.utc).strftime("%d/%b/%Y:%H:%M:%S %z")
        client = request.client[0] if request.client else "-"
        return (
            f'{client} - - [{now}] "{request.method} {url} HTTP/{request.scope.get("http_version", "1.1")}" '
            f'{response.status} {length} "{request.header("referer", "-")}" '
            f'"{request.header("user-agent", "-")}"'
        )
