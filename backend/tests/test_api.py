"""Tests for the assembled application: routing, health and tracing."""

import pytest
from httpx import ASGITransport, AsyncClient
from structlog.testing import capture_logs

from api.health import HealthGate
from api.main import create_app


class TestRouting:
    """Only the two registered paths are served."""

    @pytest.mark.parametrize("path", ["/", "/nope", "/upload/", "/healthz/", "/docs", "/redoc", "/openapi.json"])
    async def test_unknown_paths_are_404(self, client, path):
        response = await client.get(path)

        assert response.status_code == 404
        assert response.text == "404 page not found\n"
        assert response.headers["content-type"].startswith("text/plain")

    async def test_post_to_unknown_path_is_404(self, client):
        response = await client.post("/elsewhere", files={"upload": ("a.txt", b"x")})

        assert response.status_code == 404

    async def test_404_carries_request_id(self, client):
        response = await client.get("/nope", headers={"X-Request-Id": "lost-request"})

        assert response.headers["x-request-id"] == "lost-request"


class TestHealthCheck:
    """Tests for /healthz."""

    async def test_not_ready_by_default(self, client):
        response = await client.get("/healthz")

        assert response.status_code == 503
        assert response.content == b""

    async def test_ready_after_mark_healthy(self, client, health_gate):
        health_gate.mark_healthy()

        response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.content == b""

    async def test_not_ready_again_after_mark_unhealthy(self, client, health_gate):
        health_gate.mark_healthy()
        health_gate.mark_unhealthy()

        response = await client.get("/healthz")

        assert response.status_code == 503

    @pytest.mark.parametrize(
        "method",
        ["GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "TRACE", "PROPFIND", "MKCOL"],
    )
    async def test_any_method_is_accepted(self, client, health_gate, method):
        health_gate.mark_healthy()

        response = await client.request(method, "/healthz", content=b"ignored")

        assert response.status_code == 200

    async def test_unusual_method_not_ready_is_503(self, client):
        response = await client.request("PROPFIND", "/healthz")

        assert response.status_code == 503
        assert response.content == b""

    async def test_app_creates_gate_when_omitted(self, config):
        app = create_app(config)

        assert isinstance(app.state.health_gate, HealthGate)
        assert not app.state.health_gate.is_healthy

    def test_gate_repr(self):
        gate = HealthGate()
        assert repr(gate) == "HealthGate(healthy=False)"
        gate.mark_healthy()
        assert repr(gate) == "HealthGate(healthy=True)"


class TestRequestTracing:
    """Request IDs on the assembled application."""

    async def test_generated_when_absent(self, client):
        response = await client.get("/healthz")

        assert len(response.headers["x-request-id"]) == 32

    async def test_echoed_when_present(self, client):
        response = await client.get("/healthz", headers={"X-Request-Id": "abc-123"})

        assert response.headers["x-request-id"] == "abc-123"

    async def test_empty_header_gets_generated_id(self, client):
        response = await client.get("/healthz", headers={"X-Request-Id": ""})

        assert response.headers["x-request-id"]

    async def test_distinct_per_request(self, client):
        ids = {(await client.get("/healthz")).headers["x-request-id"] for _ in range(20)}

        assert len(ids) == 20

    async def test_custom_factory(self, config):
        app = create_app(config, request_id_factory=lambda: "from-factory")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/healthz")

        assert response.headers["x-request-id"] == "from-factory"


class TestAccessLog:
    """One access-log record per request."""

    async def test_record_fields(self, client):
        with capture_logs() as logs:
            response = await client.post(
                "/upload",
                files={"upload": ("a.txt", b"x")},
                headers={"User-Agent": "uploader/1.0", "X-Request-Id": "req-1"},
            )

        records = [entry for entry in logs if entry["event"] == "request_completed"]
        assert len(records) == 1
        record = records[0]
        assert record["request_id"] == response.headers["x-request-id"] == "req-1"
        assert record["method"] == "POST"
        assert record["path"] == "/upload"
        assert record["status_code"] == 200
        assert record["remote_addr"] == "127.0.0.1:123"
        assert record["user_agent"] == "uploader/1.0"
        assert isinstance(record["duration_ms"], float)

    async def test_logged_for_404(self, client):
        with capture_logs() as logs:
            await client.get("/missing")

        records = [entry for entry in logs if entry["event"] == "request_completed"]
        assert [r["path"] for r in records] == ["/missing"]
        assert records[0]["status_code"] == 404
