"""
NoteFlow Backend - Access Log Middleware
==========================================

What:  One log line per HTTP request: method, path, status, duration,
       request size, request id.
How:   Level follows the status code (5xx ERROR, 4xx WARNING, else INFO).
       /health is not logged.

Upload requests are the slow ones: their duration includes compression
and the remote upload, which is what this line is mostly read for.
Request bodies and file contents are never logged, only the declared
Content-Length.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from noteflow.middleware.request_id import request_id_var

logger = logging.getLogger("noteflow.access")

QUIET_PATHS = frozenset({"/health"})


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        fields = {
            "request_id": request_id_var.get("") or getattr(request.state, "request_id", ""),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "bytes_in": _content_length(request),
        }
        logger.log(
            level_for_status(response.status_code),
            "%(method)s %(path)s %(status)d %(duration_ms).1fms in=%(bytes_in)dB [%(request_id)s]",
            fields,
            extra=fields,
        )
        return response


def _content_length(request: Request) -> int:
    value = request.headers.get("content-length", "")
    return int(value) if value.isdigit() else 0
