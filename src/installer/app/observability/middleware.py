"""Request correlation middleware for the installer FastAPI app.

Every response carries ``X-Request-ID``. The id, together with the request
method and path, is bound into the logging context so that the provisioning
run spawned by the request logs under the same id.
"""

from __future__ import annotations

import logging
import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import request_id_ctx

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# 8-128 chars of alphanumerics or dashes.
_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")


def resolve_request_id(incoming: str | None) -> str:
    """Reuse a well-formed caller id, otherwise mint a fresh UUID."""
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    if incoming:
        logger.debug("Replacing malformed request id", extra={"length": len(incoming)})
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accept or generate the request id and expose it to log records."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid

        token = request_id_ctx.set(rid)
        try:
            with structlog.contextvars.bound_contextvars(
                http_method=request.method, http_path=request.url.path,
            ):
                response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
