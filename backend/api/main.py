"""FastAPI application factory for the upload server.

Builds the app from an already-validated ``Config``: the router with the
health and upload endpoints, wrapped by the middleware chain.
"""

from fastapi import FastAPI
from starlette.middleware import Middleware

from api.health import HealthGate
from api.routes import build_router, not_found
from config import Config
from middleware.access_log import AccessLogMiddleware
from middleware.context import RequestIDFactory
from middleware.request_id import RequestIDMiddleware


def middleware_chain(request_id_factory: RequestIDFactory | None = None) -> list[Middleware]:
    """Middleware in order, outermost first.

    Access logging wraps tracing so the log record sees the request ID that
    tracing assigns.
    """
    return [
        Middleware(AccessLogMiddleware),
        Middleware(RequestIDMiddleware, request_id_factory=request_id_factory),
    ]


def create_app(
    config: Config,
    health_gate: HealthGate | None = None,
    request_id_factory: RequestIDFactory | None = None,
) -> FastAPI:
    """Create the upload server application.

    Args:
        config: Server configuration.
        health_gate: Readiness flag reported by ``/healthz``; a fresh,
            not-ready gate is created when omitted.
        request_id_factory: Generator for request IDs when the caller does
            not send one.
    """
    gate = health_gate or HealthGate()

    app = FastAPI(
        title="Upload Server",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
        middleware=middleware_chain(request_id_factory),
        exception_handlers={404: not_found},
    )
    app.state.config = config
    app.state.health_gate = gate

    app.include_router(build_router(config, gate))
    return app
