"""Request-scoped context shared by the middleware chain and handlers.

The request ID lives on ``request.state``, which Starlette backs with a
single dict per request (``scope["state"]``). Every middleware layer and the
endpoint see the same object, so a value written by an inner layer is
visible to an outer one once the inner layer returns.
"""

import time
import uuid
from typing import Callable

from starlette.requests import Request

REQUEST_ID_HEADER = "X-Request-Id"

# Reported when no request ID was attached, e.g. tracing is not installed.
UNKNOWN_REQUEST_ID = "unknown"

RequestIDFactory = Callable[[], str]


def generate_request_id() -> str:
    """Return a new random request ID."""
    return uuid.uuid4().hex


def clock_request_id() -> str:
    """Return a request ID derived from the wall clock in nanoseconds."""
    return str(time.time_ns())


def set_request_id(request: Request, request_id: str) -> None:
    request.state.request_id = request_id


def get_request_id(request: Request) -> str:
    """Return the request ID attached to *request*, or ``"unknown"``."""
    return getattr(request.state, "request_id", None) or UNKNOWN_REQUEST_ID


# Selectable from the command line.
REQUEST_ID_FORMATS: dict[str, RequestIDFactory] = {
    "uuid": generate_request_id,
    "clock": clock_request_id,
}
