"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from reminder_dispatcher.main import create_app


def _client(runtime=None) -> TestClient:
    app = create_app(use_lifespan=False)
    app.state.runtime = runtime
    return TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = _client().get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "reminder-dispatcher"}


def test_readyz_all_services_healthy(runtime):
    """Test readiness endpoint when gateway, Redis and database are healthy."""
    with (
        patch("reminder_dispatcher.routes.health.fast_redis.ping", AsyncMock(return_value=True)),
        patch(
            "reminder_dispatcher.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = _client(runtime).get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    checks = data["checks"]
    assert checks["gateway"]["ok"] is True
    assert checks["redis"]["ok"] is True
    assert checks["database"]["ok"] is True
    assert checks["scheduler"]["time"] == "07:25"
    assert checks["scheduler"]["active_chains"] == 0


def test_readyz_gateway_not_ready(runtime, gateway):
    """Gateway session down means not ready."""
    gateway.ready = False
    with (
        patch("reminder_dispatcher.routes.health.fast_redis.ping", AsyncMock(return_value=True)),
        patch(
            "reminder_dispatcher.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = _client(runtime).get("/readyz")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


def test_readyz_reports_database_and_redis_errors(runtime):
    """Dependency failures are reported without failing readiness."""
    with (
        patch(
            "reminder_dispatcher.routes.health.fast_redis.ping",
            AsyncMock(side_effect=ConnectionError("refused")),
        ),
        patch(
            "reminder_dispatcher.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": False, "error": "pool closed"}),
        ),
    ):
        response = _client(runtime).get("/readyz")

    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["redis"]["ok"] is False
    assert "ConnectionError" in checks["redis"]["error"]
    assert checks["database"]["ok"] is False
    assert checks["database"]["error"] == "pool closed"


def test_readyz_without_runtime():
    with (
        patch("reminder_dispatcher.routes.health.fast_redis.ping", AsyncMock(return_value=True)),
        patch(
            "reminder_dispatcher.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = _client().get("/readyz")

    assert response.status_code == 503
    assert "scheduler" not in response.json()["checks"]
