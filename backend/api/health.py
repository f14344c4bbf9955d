"""Process health gate and the endpoint that reports it."""

import threading
from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import Response


class HealthGate:
    """Process-wide readiness flag.

    Starts out not ready. Only the lifecycle controller flips it: ready once
    the listener is up, not ready again when draining begins. Reads and
    writes go through a ``threading.Event`` and are safe from any thread.
    """

    def __init__(self) -> None:
        self._ready = threading.Event()

    @property
    def is_healthy(self) -> bool:
        return self._ready.is_set()

    def mark_healthy(self) -> None:
        self._ready.set()

    def mark_unhealthy(self) -> None:
        self._ready.clear()

    def __repr__(self) -> str:
        return f"HealthGate(healthy={self.is_healthy})"


def healthz(gate: HealthGate) -> Callable[[Request], Awaitable[Response]]:
    """Build the health endpoint for *gate*.

    Responds 200 when the gate is healthy and 503 otherwise, both with an
    empty body. Any method is accepted and the body is never read.
    """

    async def health_check(request: Request) -> Response:
        if gate.is_healthy:
            return Response(status_code=200)
        return Response(status_code=503)

    return health_check
