"""Shared fixtures for the upload server tests."""

import sys
from pathlib import Path

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from api.health import HealthGate  # noqa: E402
from api.main import create_app  # noqa: E402
from config import Config  # noqa: E402


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog configuration a test installed."""
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def config(upload_dir: Path) -> Config:
    return Config(dir=str(upload_dir))


@pytest.fixture
def health_gate() -> HealthGate:
    return HealthGate()


@pytest.fixture
def app(config: Config, health_gate: HealthGate):
    return create_app(config, health_gate=health_gate)


@pytest.fixture
async def client(app):
    """Async client talking to the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
