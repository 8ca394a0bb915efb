"""
NoteFlow Backend - Upload Size Guard
======================================

What:  Refuses request bodies whose declared Content-Length is already larger
       than any file the intake pipeline could accept.
How:   Checked before the body is read, so FastAPI never parses (and spools)
       the multipart form. Bodies without a Content-Length pass through;
       IntakeService still measures what actually arrives.

Error body matches the IntakeError too_large response built in main.py.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from noteflow.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class UploadSizeGuardMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_body_bytes: int):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method in BODY_METHODS:
            declared = request.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.max_body_bytes:
                rid = request_id_var.get("")
                logger.warning(
                    "[%s] Refused %s %s: Content-Length %s over %d",
                    rid,
                    request.method,
                    request.url.path,
                    declared,
                    self.max_body_bytes,
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": "too_large",
                        "message": f"Request body is {declared} bytes; the limit is {self.max_body_bytes}",
                        "request_id": rid,
                    },
                )
        return await call_next(request)
