# backend/app/middleware/request_id.py
from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id so every handoff log line of one call can be
    joined: incoming X-Request-ID is kept, otherwise a UUID4 is minted. The id
    is echoed on the response and exposed on request.state.
    """

    header_out = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get("X-Request-ID") or request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = rid

        token = request_id_ctx.set(rid)
        try:
            resp = await call_next(request)
            resp.headers[self.header_out] = rid
            return resp
        finally:
            request_id_ctx.reset(token)
