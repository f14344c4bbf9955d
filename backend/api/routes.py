"""HTTP routes for the upload server.

Dispatch is on exact paths only. Two routes exist, the health check and the
configured upload path; every other path is answered by ``not_found``.
Both routes accept every method and decide for themselves what to do with
it, so the router never produces a 405 of its own.
"""

from fastapi import APIRouter
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from api.health import HealthGate, healthz
from api.upload import upload
from config import Config

HEALTH_PATH = "/healthz"


def build_router(config: Config, gate: HealthGate) -> APIRouter:
    """Register the health and upload endpoints, open to every method."""
    router = APIRouter(redirect_slashes=False)
    router.add_route(HEALTH_PATH, healthz(gate), include_in_schema=False)
    router.add_route(config.upload_endpoint, upload(config), include_in_schema=False)
    return router


async def not_found(request: Request, exc: HTTPException) -> PlainTextResponse:
    """Generic responder for unregistered paths."""
    return PlainTextResponse(
        "404 page not found\n",
        status_code=404,
        headers={"X-Content-Type-Options": "nosniff"},
    )
