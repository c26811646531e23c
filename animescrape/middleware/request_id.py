"""Per-request correlation ids.

A caller-supplied ``X-Request-ID`` is kept, otherwise a UUID4 is minted. The
id is bound to ``request_id_var`` while the request runs, so every log line
written by the fetch pipeline carries it, and is echoed back on the response.
"""

from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from animescrape.logging_config import request_id_var


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to each request and exposes it to the log formatter."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response: Response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response
