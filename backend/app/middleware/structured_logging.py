# backend/app/middleware/structured_logging.py
from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings
from ..services.code_store import mask_code

log = logging.getLogger("handoff.request")

# never log raw access codes; path segments after /codes/ are masked
_CODE_SEGMENT = "codes"


def _mask_path(path: str) -> str:
    parts = path.split("/")
    for i, seg in enumerate(parts[:-1]):
        if seg == _CODE_SEGMENT and parts[i + 1]:
            parts[i + 1] = mask_code(parts[i + 1])
    return "/".join(parts)


def _json_log(payload: dict) -> None:
    try:
        log.info(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        log.info(str(payload))


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured line per request:
      request_id, method, path (codes masked), status_code, latency_ms, user_email
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.time()
        user_email = request.headers.get(settings.dev_header_user_email)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            request_id: Optional[str] = getattr(request.state, "request_id", None)
            _json_log(
                {
                    "event": "http_request",
                    "request_id": request_id,
                    "method": request.method,
                    "path": _mask_path(request.url.path),
                    "status_code": status_code,
                    "latency_ms": int((time.time() - t0) * 1000),
                    "user_email": user_email,
                }
            )
