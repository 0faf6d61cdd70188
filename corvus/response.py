"""
Response - HTTP response with ASGI send support.

Handlers may return a Response directly or any value accepted by
``to_response`` (dict/list as JSON, str as text, None as 204).
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union


def _json_default_serializer(o):
    """Default JSON serializer for non-standard types."""
    if isinstance(o, (set, tuple)):
        return list(o)
    if hasattr(o, "isoformat"):
        return o.isoformat()
    return str(o)


class Response:
    """
    HTTP response.

    Content may be bytes, str or a JSON-serialisable dict/list. Header names
    are stored lower-cased.
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, List] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        media_type: Optional[str] = None,
        *,
        encoding: str = "utf-8",
    ):
        self.status = status
        self.encoding = encoding
        self._headers: Dict[str, str] = {
            key.lower(): value for key, value in (headers or {}).items()
        }

        if isinstance(content, (dict, list)):
            content = json.dumps(content, default=_json_default_serializer)
            media_type = media_type or "application/json; charset=utf-8"
        self._content = content

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers:
            if isinstance(content, str):
                self._headers["content-type"] = "text/plain; charset=utf-8"
            elif content:
                self._headers["content-type"] = "application/octet-stream"

    @property
    def headers(self) -> Dict[str, str]:
        return self._headers

    @property
    def body(self) -> bytes:
        content = self._content
        if isinstance(content, bytes):
            return content
        return content.encode(self.encoding)

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        content = json.dumps(obj, default=_json_default_serializer)
        return cls(
            content=content,
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def text(cls, content: str, status: int = 200, **kwargs) -> "Response":
        return cls(
            content=content,
            status=status,
            media_type="text/plain; charset=utf-8",
            **kwargs,
        )

    # ========================================================================
    # ASGI
    # ========================================================================

    def _prepare_headers(self, body: bytes) -> List[Tuple[bytes, bytes]]:
        if "content-length" not in self._headers and self.status not in (204, 304):
            self._headers["content-length"] = str(len(body))
        return [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in self._headers.items()
        ]

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send ``http.response.start`` followed by a single body message."""
        body = b"" if self.status in (204, 304) else self.body
        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(body),
        })
        await send({"type": "http.response.body", "body": body})

    def __repr__(self) -> str:
        return f"<Response [{self.status}] {self._headers.get('content-type', '')}>"


def to_response(value: Any) -> Response:
    """Convert a handler return value into a Response."""
    if isinstance(value, Response):
        return value
    if value is None:
        return Response(b"", status=204)
    if isinstance(value, (dict, list)):
        return Response.json(value)
    if isinstance(value, str):
        return Response.text(value)
    if isinstance(value, bytes):
        return Response(value)
    raise TypeError(
        f"Handler returned unsupported type {type(value).__name__}; "
        f"expected Response, dict, list, str, bytes or None"
    )
