"""Tests for /health and /ready observability endpoints.

Uses FastAPI TestClient with an in-memory store to verify liveness and
readiness probes without external dependencies.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from dealflow.health import register_health_routes
from dealflow.state.schema import init_db
from dealflow.state.store import DealStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_app(services: dict | None = None) -> FastAPI:
    """Create a minimal FastAPI app with health routes and given services."""
    app = FastAPI()
    app.state.services = services or {}
    register_health_routes(app)
    return app


# ---------------------------------------------------------------------------
# /health (liveness)
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    """GET /health liveness probe."""

    def test_health_returns_200(self) -> None:
        client = TestClient(_make_app())

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ---------------------------------------------------------------------------
# /ready (readiness)
# ---------------------------------------------------------------------------


class TestReadyEndpoint:
    """GET /ready readiness probe."""

    def test_ready_returns_200_when_services_ok(self) -> None:
        store = DealStore(init_db(":memory:"))
        client = TestClient(_make_app({"store": store, "engine": object()}))

        response = client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": "ok", "engine": "ok"}

        store.close()

    def test_ready_returns_503_when_store_missing(self) -> None:
        client = TestClient(_make_app({"store": None, "engine": object()}))

        response = client.get("/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "not_ready"
        assert body["checks"]["database"] == "fail"
        assert body["checks"]["engine"] == "ok"

    def test_ready_returns_503_when_engine_missing(self) -> None:
        store = DealStore(init_db(":memory:"))
        client = TestClient(_make_app({"store": store}))

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"] == {"database": "ok", "engine": "fail"}

        store.close()

    def test_ready_returns_503_when_db_connection_broken(self) -> None:
        """A closed connection that raises on ping -> database fails."""
        store = DealStore(init_db(":memory:"))
        store.close()
        client = TestClient(_make_app({"store": store, "engine": object()}))

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] == "fail"
