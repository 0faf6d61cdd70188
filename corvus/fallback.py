"""
Unhandled-request fallback.

Installed as the last layer once every route group is mounted. Anything
that reaches it without a matched route is answered with a 405.
"""

from __future__ import annotations

from .http import Handler, RequestCtx
from .request import Request
from .response import Response


def invalid_request_body(request: Request) -> dict:
    url = request.url()
    return {
        "status": "Invalid Request",
        "code": 405,
        "method": request.method,
        "url": url,
        "message": f"Request: ({request.method}) {url} is invalid!",
    }


async def unhandled_request(request: Request, ctx: RequestCtx, next: Handler) -> Response:
    if request.route is not None:
        return await next(request, ctx)
    return Response.json(invalid_request_body(request), status=405)
