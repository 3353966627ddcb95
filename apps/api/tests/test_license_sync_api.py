"""Tests for the license sync API (trigger, status, history, recovery)."""

import pytest
from httpx import AsyncClient

from app.core.config import settings
from app.core.deps import get_license_provider_factory
from app.db.enums import SyncTrigger
from app.main import app
from app.services import license_sync_service, sync_state_service


@pytest.mark.asyncio
async def test_status_before_any_run(client: AsyncClient):
    response = await client.get("/licenses/sync/status")
    data = response.json()

    assert response.status_code == 200
    assert data["state"] == "idle"
    assert data["running"] is False
    assert data["last_sync_result"] is None
    assert data["statistics"]["total_runs"] == 0
    assert data["schedule"]["cron"] == settings.LICENSE_SYNC_SCHEDULE
    assert data["schedule"]["next_run_at"] is None


@pytest.mark.asyncio
async def test_trigger_returns_immediately_and_runs_in_background(
    client: AsyncClient, db, fake_provider, make_record
):
    fake_provider.records = [make_record("A1"), make_record("A2"), make_record(None)]

    response = await client.post("/licenses/sync")
    data = response.json()

    assert response.status_code == 202
    assert data["accepted"] is True
    assert data["message"] == "License sync started"
    assert data["run_id"]

    db.rollback()
    status = (await client.get("/licenses/sync/status")).json()
    assert status["state"] == "idle"
    assert status["last_outcome"] == "succeeded"
    assert status["last_sync_result"]["run_id"] == data["run_id"]
    assert status["last_sync_result"]["created"] == 2
    assert status["last_sync_result"]["failed"] == 1
    assert status["last_sync_result"]["trigger"] == "manual"

    licenses = (await client.get("/licenses")).json()
    assert licenses["total"] == 2

    staged = (await client.get("/external-licenses")).json()
    assert staged["total"] == 2


@pytest.mark.asyncio
async def test_trigger_while_running_is_rejected(client: AsyncClient, db):
    sync_state_service.try_acquire(db, SyncTrigger.CLI)

    response = await client.post("/licenses/sync")

    assert response.status_code == 202
    assert response.json() == {
        "accepted": False,
        "run_id": None,
        "message": "License sync already in progress",
    }
    status = (await client.get("/licenses/sync/status")).json()
    assert status["running"] is True
    assert status["current_run"]["trigger"] == "cli"


@pytest.mark.asyncio
async def test_dry_run_trigger(client: AsyncClient, db, fake_provider, make_record):
    fake_provider.records = [make_record("A1")]

    response = await client.post("/licenses/sync", params={"dry_run": "true"})

    assert response.json()["message"] == "Dry run started"
    db.rollback()
    assert (await client.get("/licenses")).json()["total"] == 0
    history = (await client.get("/licenses/sync/history")).json()
    assert history[0]["dry_run"] is True
    assert history[0]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_failed_fetch_is_reported_in_status(client: AsyncClient, db, fake_provider):
    fake_provider.fail_pages = {1: 503}

    await client.post("/licenses/sync")

    db.rollback()
    status = (await client.get("/licenses/sync/status")).json()
    assert status["state"] == "idle"
    assert status["last_outcome"] == "failed"
    assert "HTTP 503" in status["last_sync_result"]["error"]
    assert status["statistics"]["failed_runs"] == 1


@pytest.mark.asyncio
async def test_history(client: AsyncClient, db, fake_provider, make_record):
    fake_provider.records = [make_record("A1")]
    await client.post("/licenses/sync")
    db.rollback()
    await client.post("/licenses/sync")
    db.rollback()

    response = await client.get("/licenses/sync/history", params={"limit": 5})
    runs = response.json()

    assert response.status_code == 200
    assert len(runs) == 2
    assert runs[0]["updated"] == 1
    assert runs[1]["created"] == 1
    assert all(run["trigger"] == "manual" for run in runs)

    response = await client.get("/licenses/sync/history", params={"limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reset(client: AsyncClient, db):
    response = await client.post("/licenses/sync/reset")
    assert response.json() == {"reset": False, "message": "Nothing to reset"}

    sync_state_service.try_acquire(db, SyncTrigger.MANUAL)

    response = await client.post("/licenses/sync/reset")
    assert response.json()["reset"] is False

    response = await client.post("/licenses/sync/reset", params={"force": "true"})
    assert response.json() == {"reset": True, "message": "Running state reset to idle"}
    assert (await client.get("/licenses/sync/status")).json()["state"] == "idle"


@pytest.mark.asyncio
async def test_provider_health(client: AsyncClient, fake_provider, make_record):
    fake_provider.records = [make_record("A1")]

    response = await client.get("/licenses/sync/provider-health")
    assert response.status_code == 200
    assert response.json()["healthy"] is True

    fake_provider.fail_pages = {1: 502}
    response = await client.get("/licenses/sync/provider-health")
    assert response.json()["healthy"] is False


@pytest.mark.asyncio
async def test_provider_health_without_configuration(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "EXTERNAL_LICENSE_API_URL", "")
    app.dependency_overrides[get_license_provider_factory] = (
        lambda: license_sync_service.default_provider_factory
    )

    response = await client.get("/licenses/sync/provider-health")

    assert response.status_code == 200
    assert response.json()["healthy"] is False
    assert "must be configured" in response.json()["error"]


@pytest.mark.asyncio
async def test_external_license_endpoints(client: AsyncClient, db, fake_provider, make_record):
    fake_provider.records = [make_record("A1"), make_record("B2", status=0)]
    await client.post("/licenses/sync")
    db.rollback()

    stats = (await client.get("/external-licenses/stats")).json()
    assert stats["total"] == 2
    assert stats["inactive"] == 1

    row = (await client.get("/external-licenses/A1")).json()
    assert row["sms_balance"] == 8.9
    assert row["package"] == {"basic": True}

    inactive = (await client.get("/external-licenses", params={"status": 0})).json()
    assert [item["appid"] for item in inactive["items"]] == ["B2"]

    response = await client.get("/external-licenses/missing")
    assert response.status_code == 404
