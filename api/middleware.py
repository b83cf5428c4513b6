"""Request context middleware using structlog contextvars.

Takes the request id from the X-Request-ID header (or mints one) and binds
it into structlog's contextvars, so every log event emitted while handling
the request carries it without explicit parameter passing. The id is echoed
back on the response.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

logger = structlog.get_logger(__name__)


def get_request_id() -> str | None:
    """Return the request id bound for the current request, if any."""
    return structlog.contextvars.get_contextvars().get("request_id")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request_id, method and path for the duration of a request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        tokens = structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.debug("request.completed", status_code=response.status_code)
            return response
        finally:
            structlog.contextvars.reset_contextvars(**tokens)
