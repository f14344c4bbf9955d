"""Access logging middleware.

Emits one ``request_completed`` record per request once the downstream
chain has finished, whether it returned a response or raised. The record
carries the request ID assigned by the tracing layer, so this middleware has
to sit outside ``RequestIDMiddleware``.
"""

import sys
import time
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from middleware.context import get_request_id

logger = structlog.get_logger(__name__)


def _remote_addr(request: Request) -> str:
    if request.client is None:
        return ""
    return f"{request.client.host}:{request.client.port}"


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, duration, peer and user agent of every request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        status_code: int | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            try:
                logger.info(
                    "request_completed",
                    request_id=get_request_id(request),
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=elapsed_ms,
                    remote_addr=_remote_addr(request),
                    user_agent=request.headers.get("user-agent", ""),
                )
            except Exception as exc:  # noqa: BLE001
                print(f"access log failed: {exc!r}", file=sys.stderr)
