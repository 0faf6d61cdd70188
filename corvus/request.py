"""
Request - ASGI request wrapper.

Provides:
- Typed access to the ASGI scope (method, path, headers, query)
- Full URL reconstruction (scheme + host + original path)
- Idempotent, size-limited body reading
- Per-request state: parsed payload, path params and the route-match marker
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl

from ._datastructures import ContentType, Headers, MultiDict
from .faults import ClientDisconnect, PayloadTooLarge


class Request:
    """
    Request object handed to every middleware and route handler.

    ``payload`` holds the body decoded by the body-parser middleware (None
    until a parser accepts the request). ``route`` is set by the router when
    a declared route matches and stays None otherwise; the unhandled-request
    fallback relies on it.
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[dict]],
    ):
        self.scope = scope
        self._receive = receive

        self.state: Dict[str, Any] = {}
        self.payload: Any = None
        self.path_params: Dict[str, str] = {}
        self.route: Optional[Any] = None
        self.base_path = ""

        self._path: Optional[str] = None
        self._body: Optional[bytes] = None
        self._headers: Optional[Headers] = None
        self._query_params: Optional[MultiDict] = None
        self._disconnected = False

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        """Path as seen by the current layer (mount prefix stripped)."""
        if self._path is not None:
            return self._path
        return self.scope.get("path", "/")

    @path.setter
    def path(self, value: Optional[str]) -> None:
        self._path = value

    @property
    def original_path(self) -> str:
        return self.scope.get("path", "/")

    @property
    def query_string(self) -> str:
        return self.scope.get("query_string", b"").decode("latin-1")

    @property
    def original_url(self) -> str:
        """Original path plus query string, as received."""
        query = self.query_string
        return f"{self.original_path}?{query}" if query else self.original_path

    @property
    def scheme(self) -> str:
        return self.scope.get("scheme", "http")

    @property
    def client(self) -> Optional[tuple]:
        return self.scope.get("client")

    @property
    def query_params(self) -> MultiDict:
        if self._query_params is None:
            self._query_params = MultiDict(
                parse_qsl(self.query_string, keep_blank_values=True)
            )
        return self._query_params

    @property
    def headers(self) -> Headers:
        if self._headers is None:
            self._headers = Headers(raw=list(self.scope.get("headers", [])))
        return self._headers

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get single header (case-insensitive)."""
        return self.headers.get(name, default)

    @property
    def host(self) -> str:
        host = self.header("host")
        if host:
            return host
        server = self.scope.get("server")
        if server:
            server_host, port = server
            return f"{server_host}:{port}" if port else server_host
        return "localhost"

    def url(self) -> str:
        """Reconstructed full URL: scheme, host and original path."""
        return f"{self.scheme}://{self.host}{self.original_url}"

    def content_type(self) -> Optional[ContentType]:
        return ContentType.parse(self.header("content-type"))

    def content_length(self) -> Optional[int]:
        value = self.header("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    # ========================================================================
    # Body
    # ========================================================================

    async def _receive_message(self) -> dict:
        try:
            message = await self._receive()
        except asyncio.CancelledError:
            self._disconnected = True
            raise
        if message["type"] == "http.disconnect":
            self._disconnected = True
            raise ClientDisconnect()
        return message

    def is_disconnected(self) -> bool:
        return self._disconnected

    async def body(self, limit: Optional[int] = None) -> bytes:
        """
        Read the full request body (idempotent).

        Args:
            limit: Maximum accepted size in bytes, or None for no limit.
                A body of exactly ``limit`` bytes is accepted.

        Raises:
            PayloadTooLarge: If the body exceeds the limit
            ClientDisconnect: If the client goes away mid-body
        """
        if self._body is not None:
            if limit is not None and len(self._body) > limit:
                raise PayloadTooLarge(
                    metadata={"limit": limit, "actual": len(self._body)}
                )
            return self._body

        declared = self.content_length()
        if limit is not None and declared is not None and declared > limit:
            raise PayloadTooLarge(metadata={"limit": limit, "actual": declared})

        chunks: List[bytes] = []
        total = 0
        while True:
            message = await self._receive_message()
            chunk = message.get("body", b"")
            if chunk:
                total += len(chunk)
                if limit is not None and total > limit:
                    raise PayloadTooLarge(metadata={"limit": limit, "actual": total})
                chunks.append(chunk)
            if not message.get("more_body", False):
                break

        self._body = b"".join(chunks)
        return self._body

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.original_url}>"
