from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from riselocal_api.core.settings import settings


@pytest.mark.asyncio
async def test_healthz_reports_environment(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        root = await client.get("/healthz")
        versioned = await client.get("/api/v1/healthz")

    assert root.status_code == 200
    assert root.json()["status"] == "ok"
    assert root.json()["environment"] == settings.environment
    assert versioned.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readyz_reports_disabled_sweep_worker(app_with_db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "redemption_sweep_worker_enabled", False)
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["redemption_sweep"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readyz_degrades_when_sweep_worker_failed(app_with_db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "redemption_sweep_worker_enabled", True)
    app, _ = app_with_db
    app.state.redemption_sweep_worker = SimpleNamespace(is_running=True, last_error="database is locked")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["components"]["redemption_sweep"]["status"] == "error"
    assert payload["components"]["redemption_sweep"]["detail"] == "database is locked"


@pytest.mark.asyncio
async def test_readyz_marks_stopped_worker_as_starting(app_with_db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "redemption_sweep_worker_enabled", True)
    app, _ = app_with_db
    app.state.redemption_sweep_worker = SimpleNamespace(is_running=False, last_error=None)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["components"]["redemption_sweep"]["status"] == "starting"
