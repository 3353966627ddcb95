"""End-to-end tests for the sync pipeline against a fake provider."""

import uuid
from datetime import datetime, timezone

import pytest

from app.core.config import settings
from app.db.enums import SyncTrigger
from app.db.models import ExternalLicense, License
from app.services import cache_service, license_sync_service, license_validator, sync_state_service
from app.services.license_sync_errors import SyncAlreadyRunningError
from app.services.sync_state_service import SyncRun


async def _run(db, session_factory, provider_factory, *, trigger=SyncTrigger.MANUAL, dry_run=False):
    run = license_sync_service.acquire_or_raise(db, trigger, dry_run=dry_run)
    result = await license_sync_service.execute_sync(session_factory, provider_factory, run)
    db.rollback()
    return result


async def test_sync_stages_valid_records_and_counts_rejections(
    db, session_factory, provider_factory, fake_provider, make_record
):
    fake_provider.records = [make_record("A1"), make_record("A2"), make_record(None)]

    result = await _run(db, session_factory, provider_factory)

    assert result.success is True
    assert result.fetched == 3
    assert result.created == 2
    assert result.failed == 1
    assert result.rejected == 1
    assert result.failures[0] == {"appid": None, "reason": "missing appid", "stage": "validation"}
    assert db.query(ExternalLicense).count() == 2
    assert db.query(License).count() == 2

    last = sync_state_service.get_status(db)["last_sync_result"]
    assert last["created"] == 2
    assert last["failed"] == 1
    assert last["success"] is True


async def test_out_of_range_provider_values_do_not_abort_the_run(
    db, session_factory, provider_factory, fake_provider, make_record
):
    fake_provider.records = [
        make_record("A1"),
        make_record("A2", countid="inf", lastActive="0001-01-01T00:00:00+05:00"),
        make_record("A3"),
    ]

    result = await _run(db, session_factory, provider_factory)

    assert result.success is True
    assert result.error is None
    assert result.failed == 0
    assert db.query(ExternalLicense).count() == 3
    staged = db.query(ExternalLicense).filter_by(appid="A2").one()
    assert staged.countid is None
    assert staged.last_active is None


async def test_record_that_breaks_normalization_is_counted_failed(
    db, session_factory, provider_factory, fake_provider, make_record, monkeypatch
):
    original = license_validator.normalize_package

    def _explode_on_bad(value):
        if value == "bad":
            raise OverflowError("cannot convert float infinity to integer")
        return original(value)

    monkeypatch.setattr(license_validator, "normalize_package", _explode_on_bad)
    fake_provider.records = [make_record("A1"), make_record("A2", Package="bad"), make_record("A3")]

    result = await _run(db, session_factory, provider_factory)

    assert result.success is True
    assert result.failed == 1
    assert result.failures == [
        {"appid": "A2", "reason": "unprocessable record: OverflowError", "stage": "validation"}
    ]
    assert sorted(row.appid for row in db.query(ExternalLicense)) == ["A1", "A3"]
    assert db.query(License).count() == 2

async def test_rerun_overwrites_with_identical_values(
    db, session_factory, provider_factory, fake_provider, make_record
):
    fake_provider.records = [make_record("A1"), make_record("A2"), make_record(None)]
    await _run(db, session_factory, provider_factory)

    result = await _run(db, session_factory, provider_factory)

    assert result.created == 0
    assert result.updated == 2
    assert result.reconciled_created == 0
    assert result.reconciled_updated == 0
    assert result.reconciled_unchanged == 2
    assert db.query(ExternalLicense).count() == 2
    assert db.query(License).count() == 2

    status = sync_state_service.get_status(db)
    assert status["statistics"]["total_runs"] == 2
    assert status["statistics"]["successful_runs"] == 2


async def test_provider_balance_change_flows_to_internal(
    db, session_factory, provider_factory, fake_provider, make_record
):
    fake_provider.records = [make_record("A1")]
    await _run(db, session_factory, provider_factory)

    fake_provider.records = [make_record("A1", smsBalance=0)]
    result = await _run(db, session_factory, provider_factory)

    assert result.reconciled_updated == 1
    assert db.query(ExternalLicense).filter_by(appid="A1").one().sms_balance == 0
    assert db.query(License).filter_by(appid="A1").one().sms_balance == 0


async def test_fetch_failure_ends_idle_with_error(
    db, session_factory, provider_factory, fake_provider, make_record
):
    fake_provider.records = [make_record(f"A{i}") for i in range(60)]
    fake_provider.fail_pages = {2: 500}

    result = await _run(db, session_factory, provider_factory)

    assert result.success is False
    assert "HTTP 500" in result.error
    # page 1 was committed before page 2 failed
    assert db.query(ExternalLicense).count() == 50

    status = sync_state_service.get_status(db)
    assert status["state"] == "idle"
    assert status["last_outcome"] == "failed"
    assert status["last_sync_result"]["success"] is False
    assert status["last_success_at"] is None


async def test_dry_run_writes_nothing(db, session_factory, provider_factory, fake_provider, make_record):
    fake_provider.records = [make_record("A1"), make_record(None)]

    result = await _run(db, session_factory, provider_factory, dry_run=True)

    assert result.success is True
    assert result.dry_run is True
    assert result.valid == 1
    assert result.rejected == 1
    assert db.query(ExternalLicense).count() == 0
    assert db.query(License).count() == 0


async def test_provider_config_error_is_recorded(db, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "EXTERNAL_LICENSE_API_URL", "")

    result = await _run(db, session_factory, license_sync_service.default_provider_factory)

    assert result.success is False
    assert "must be configured" in result.error
    assert sync_state_service.get_status(db)["state"] == "idle"


async def test_second_acquire_is_rejected(db, session_factory, provider_factory):
    license_sync_service.acquire_or_raise(db, SyncTrigger.MANUAL)

    with pytest.raises(SyncAlreadyRunningError):
        license_sync_service.acquire_or_raise(db, SyncTrigger.CLI)

    assert await license_sync_service.trigger_sync(
        session_factory, provider_factory, SyncTrigger.SCHEDULED
    ) is None


async def test_trigger_sync_runs_to_completion(db, session_factory, provider_factory, fake_provider, make_record):
    fake_provider.records = [make_record("A1")]

    result = await license_sync_service.trigger_sync(
        session_factory, provider_factory, SyncTrigger.SCHEDULED
    )

    assert result is not None
    assert result.success is True
    assert result.trigger == "scheduled"
    assert fake_provider.requests[0].headers["X-Correlation-ID"] == result.run_id


async def test_sync_invalidates_dashboard_metrics_cache(
    db, session_factory, provider_factory, fake_provider, make_record
):
    cache_service.set(f"{cache_service.DASHBOARD_METRICS_PREFIX}abc", {"stale": True})
    fake_provider.records = [make_record("A1")]

    await _run(db, session_factory, provider_factory)

    assert cache_service.get(f"{cache_service.DASHBOARD_METRICS_PREFIX}abc") is None


def test_result_payload_shape():
    run = SyncRun(
        run_id=uuid.uuid4(),
        trigger=SyncTrigger.MANUAL,
        started_at=datetime(2025, 7, 1, tzinfo=timezone.utc),
    )
    payload = license_sync_service.SyncResult.for_run(run).as_dict()

    assert payload["trigger"] == "manual"
    assert payload["timestamp"] == "2025-07-01T00:00:00+00:00"
    assert set(payload["reconciled"]) == {"created", "updated", "unchanged", "failed"}
    assert payload["total_fetched"] == payload["fetched"] == 0


async def test_counters_follow_staging_writes_and_keep_reconcile_failures_apart(
    db, session_factory, fake_provider, make_record
):
    # EXT-A3 is the key reconciliation would generate for A3
    db.add(License(key="EXT-A3", plan="Basic"))
    db.commit()
    fake_provider.records = [make_record("A1"), make_record("A1", smsBalance=3), make_record("A3")]

    def one_per_page(**overrides):
        return fake_provider.client(page_size=1, **overrides)

    result = await _run(db, session_factory, one_per_page)

    assert result.success is True
    assert result.pages == 3
    assert (result.created, result.updated, result.failed) == (2, 1, 0)
    assert result.reconciled_failed == 1
    assert [f["stage"] for f in result.failures] == ["reconcile"]
    assert result.failures[0]["appid"] == "A3"
    assert db.query(ExternalLicense).filter_by(appid="A1").one().sms_balance == 3
    assert sorted(row.appid for row in db.query(ExternalLicense)) == ["A1", "A3"]
