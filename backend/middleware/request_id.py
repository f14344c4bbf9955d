"""Request ID middleware for distributed tracing.

Adopts the caller's ``X-Request-Id`` header when it is present and
non-empty, otherwise generates a new ID. The ID is stored on the request
context and in ``structlog.contextvars`` so that all log lines emitted while
handling the request include ``request_id``.

The ID is also returned in the ``X-Request-Id`` response header so clients
can correlate logs, including for requests that fail downstream.
"""

from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

from middleware.context import (
    REQUEST_ID_HEADER,
    RequestIDFactory,
    generate_request_id,
    set_request_id,
)

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every HTTP request.

    1. Reads ``X-Request-Id`` from the incoming request, otherwise calls
       ``request_id_factory``.
    2. Stores the ID on ``request.state`` and binds it to structlog context
       vars.
    3. Adds ``X-Request-Id`` to the response headers before the body is
       sent.
    """

    def __init__(self, app: ASGIApp, request_id_factory: RequestIDFactory | None = None) -> None:
        super().__init__(app)
        self._next_request_id = request_id_factory or generate_request_id

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or self._next_request_id()

        # Bind to structlog context for this request scope
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        set_request_id(request, request_id)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("unhandled_request_error", path=request.url.path)
            response = PlainTextResponse("Internal Server Error\n", status_code=500)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
