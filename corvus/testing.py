"""
Corvus Testing - in-process ASGI test client and request factories.

``TestClient`` drives an ASGI application (a ``Corvus`` instance or any
ASGI callable) without opening sockets:

    app = Corvus(module)
    await app.bootstrap()
    client = TestClient(app)
    resp = await client.get("/users")
    assert resp.status_code == 200
"""

from __future__ import annotations

import json as stdlib_json
import time as _time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlsplit

from .http import RequestCtx
from .request import Request


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    scheme: str = "http",
    client: Optional[tuple] = None,
    server: Optional[tuple] = None,
    http_version: str = "1.1",
) -> dict:
    """
    Build a minimal ASGI HTTP scope.

    Args:
        method: HTTP method.
        path: Request path.
        query_string: Raw query string (without ``?``).
        headers: List of ``(name, value)`` tuples (strings or bytes).
        scheme: URL scheme (``http`` or ``https``).
        client: ``(host, port)`` tuple.
        server: ``(host, port)`` tuple.
        http_version: HTTP protocol version.
    """
    raw_headers: list[tuple[bytes, bytes]] = []
    for name, value in headers or ():
        raw_headers.append((
            name.lower().encode("latin-1") if isinstance(name, str) else name,
            value.encode("latin-1") if isinstance(value, str) else value,
        ))

    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": http_version,
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8") if isinstance(query_string, str) else query_string,
        "headers": raw_headers,
        "scheme": scheme,
        "server": server or ("127.0.0.1", 8000),
        "client": client or ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None):
    """
    Create an ASGI receive callable.

    ``chunks`` overrides ``body`` and is delivered as several messages.
    Once the body is exhausted the callable reports a disconnect.
    """
    if chunks:
        messages = [
            {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
            for i, chunk in enumerate(chunks)
        ]
    else:
        messages = [{"type": "http.request", "body": body, "more_body": False}]

    idx = 0

    async def receive():
        nonlocal idx
        if idx < len(messages):
            msg = messages[idx]
            idx += 1
            return msg
        return {"type": "http.disconnect"}

    return receive


def make_request(
    method: str = "GET",
    path: str = "/",
    *,
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    body: bytes = b"",
    chunks: Optional[List[bytes]] = None,
) -> Request:
    scope = make_scope(method=method, path=path, query_string=query_string, headers=headers)
    return Request(scope, make_receive(body, chunks=chunks))


def make_ctx(request: Request, container: Any = None) -> RequestCtx:
    return RequestCtx(request=request, container=container)


class TestResponse:
    """Captured ASGI response."""

    __test__ = False

    __slots__ = ("status_code", "headers", "body", "elapsed", "request_method", "request_path", "_json_cache")

    def __init__(
        self,
        status_code: int,
        headers: Dict[str, str],
        body: bytes,
        *,
        elapsed: float = 0.0,
        request_method: str = "",
        request_path: str = "",
    ):
        self.status_code = status_code
        self.headers = headers
        self.body = body
        self.elapsed = elapsed
        self.request_method = request_method
        self.request_path = request_path
        self._json_cache: Any = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        if self._json_cache is None:
            self._json_cache = stdlib_json.loads(self.body)
        return self._json_cache

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip()

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def __repr__(self) -> str:
        return (
            f"<TestResponse [{self.status_code}] {self.request_method} {self.request_path} "
            f"{len(self.body)}B {self.elapsed:.1f}ms>"
        )


class TestClient:
    """
    In-process ASGI test client.

    Does not open network sockets; the ASGI application is invoked
    directly and its response events are captured into a TestResponse.
    """

    __test__ = False

    def __init__(
        self,
        app: Any,
        *,
        base_url: str = "http://testserver",
        default_headers: Optional[Dict[str, str]] = None,
        raise_server_exceptions: bool = True,
    ):
        self._app = getattr(app, "asgi", app)
        parts = urlsplit(base_url)
        self._scheme = parts.scheme or "http"
        self._host = parts.netloc or "testserver"
        self._default_headers = default_headers or {}
        self._raise_server_exceptions = raise_server_exceptions

    async def get(self, path: str, **kw) -> TestResponse:
        return await self.request("GET", path, **kw)

    async def post(self, path: str, json: Any = None, data: Optional[Dict[str, Any]] = None, body: bytes = b"", **kw) -> TestResponse:
        return await self.request("POST", path, json=json, data=data, body=body, **kw)

    async def put(self, path: str, json: Any = None, body: bytes = b"", **kw) -> TestResponse:
        return await self.request("PUT", path, json=json, body=body, **kw)

    async def patch(self, path: str, json: Any = None, body: bytes = b"", **kw) -> TestResponse:
        return await self.request("PATCH", path, json=json, body=body, **kw)

    async def delete(self, path: str, **kw) -> TestResponse:
        return await self.request("DELETE", path, **kw)

    async def head(self, path: str, **kw) -> TestResponse:
        return await self.request("HEAD", path, **kw)

    async def options(self, path: str, **kw) -> TestResponse:
        return await self.request("OPTIONS", path, **kw)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        body: bytes = b"",
        content_type: Optional[str] = None,
    ) -> TestResponse:
        """Issue an in-process ASGI request."""
        path, _, query_string = path.partition("?")

        combined_headers: list[tuple[str, str]] = [("host", self._host)]
        for k, v in self._default_headers.items():
            combined_headers.append((k.lower(), v))
        for k, v in (headers or {}).items():
            combined_headers.append((k.lower(), v))

        if json is not None:
            body = stdlib_json.dumps(json).encode("utf-8")
            content_type = content_type or "application/json"
        elif data is not None:
            body = urlencode(data, doseq=True).encode("utf-8")
            content_type = content_type or "application/x-www-form-urlencoded"

        if content_type is not None:
            combined_headers.append(("content-type", content_type))
        if body:
            combined_headers.append(("content-length", str(len(body))))

        scope = make_scope(
            method=method,
            path=path,
            query_string=query_string,
            headers=combined_headers,
            scheme=self._scheme,
        )
        receive = make_receive(body)

        status_code = 200
        resp_headers: Dict[str, str] = {}
        body_parts: list[bytes] = []

        async def send(event: dict):
            nonlocal status_code
            if event["type"] == "http.response.start":
                status_code = event["status"]
                for name, value in event.get("headers", []):
                    resp_headers[name.decode("latin-1").lower()] = value.decode("latin-1")
            elif event["type"] == "http.response.body":
                body_parts.append(event.get("body", b""))

        start_time = _time.monotonic()
        try:
            await self._app(scope, receive, send)
        except Exception:
            if self._raise_server_exceptions:
                raise
            status_code = 500
        elapsed_ms = (_time.monotonic() - start_time) * 1000

        return TestResponse(
            status_code=status_code,
            headers=resp_headers,
            body=b"".join(body_parts),
            elapsed=elapsed_ms,
            request_method=method.upper(),
            request_path=path,
        )
