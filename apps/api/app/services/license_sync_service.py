"""License sync orchestration: fetch -> validate -> upsert -> reconcile.

Each provider page is validated, upserted into staging and reconciled into
``licenses`` before the next page is fetched, and committed on its own. A
run that fails part-way keeps the pages it already committed. Database work
runs in a worker thread so the event loop stays free while a page is being
written.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from opentelemetry import metrics
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.async_utils import run_in_thread
from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import SyncTrigger
from app.services import (
    cache_service,
    external_license_service,
    reconciliation_service,
    sync_state_service,
)
from app.services.external_license_service import UpsertSummary, dedupe_by_appid
from app.services.license_provider_client import LicenseProviderClient
from app.services.license_sync_errors import (
    LicenseSyncError,
    ProviderFetchError,
    SyncAlreadyRunningError,
)
from app.services.license_validator import ExternalLicenseRecord, RejectedRecord, validate_batch
from app.services.reconciliation_service import ReconcileSummary
from app.services.sync_state_service import SyncRun
from app.types import JsonObject

logger = logging.getLogger(__name__)

MAX_FAILURES_KEPT = 50

ProviderFactory = Callable[..., LicenseProviderClient]
SessionFactory = Callable[[], Session]

_meter = metrics.get_meter(__name__)
_runs_counter = _meter.create_counter(
    "license.sync.runs", unit="1", description="Completed license sync runs"
)
_rejected_counter = _meter.create_counter(
    "license.sync.rejected_records", unit="1", description="Provider records failing validation"
)


@dataclass
class SyncResult:
    """
    Outcome of one sync run (the ``last_sync_result`` payload).

    Top-level counters describe the staging table:

    - ``created`` / ``updated`` count staging writes page by page. An appid the
      provider repeats on a later page is written twice, so it counts once as
      created and once as updated.
    - ``failed`` counts records that never reached staging: validation
      rejections (also in ``rejected``) plus rows the upsert could not write.

    ``reconciled_*`` describe the internal ``licenses`` table. A record that
    was staged but could not be reconciled is counted in
    ``reconciled_failed`` only, not in ``failed``. Every failure, whatever
    the stage, is listed in ``failures`` (capped) with its ``stage``.
    """

    run_id: str
    trigger: str
    started_at: datetime
    dry_run: bool = False
    success: bool = False
    error: str | None = None
    duration_ms: int = 0
    pages: int = 0
    fetched: int = 0
    valid: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    rejected: int = 0
    reconciled_created: int = 0
    reconciled_updated: int = 0
    reconciled_unchanged: int = 0
    reconciled_failed: int = 0
    finished_at: datetime | None = None
    failures: list[JsonObject] = field(default_factory=list)

    @classmethod
    def for_run(cls, run: SyncRun) -> "SyncResult":
        return cls(
            run_id=run.correlation_id,
            trigger=run.trigger.value,
            started_at=run.started_at,
            dry_run=run.dry_run,
        )

    def _keep_failure(self, appid: str | None, reason: str, stage: str) -> None:
        if len(self.failures) < MAX_FAILURES_KEPT:
            self.failures.append({"appid": appid, "reason": reason, "stage": stage})

    def add_rejections(self, rejected: list[RejectedRecord]) -> None:
        self.rejected += len(rejected)
        self.failed += len(rejected)
        for item in rejected:
            self._keep_failure(item.appid, item.reason, "validation")

    def add_upsert(self, summary: UpsertSummary) -> None:
        self.created += summary.created
        self.updated += summary.updated
        self.failed += summary.failed
        for item in summary.errors:
            self._keep_failure(item.get("appid"), item.get("error", ""), "upsert")

    def add_reconcile(self, summary: ReconcileSummary) -> None:
        self.reconciled_created += summary.created
        self.reconciled_updated += summary.updated
        self.reconciled_unchanged += summary.unchanged
        self.reconciled_failed += summary.failed
        for item in summary.errors:
            self._keep_failure(item.get("appid"), item.get("error", ""), "reconcile")

    def as_dict(self) -> JsonObject:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "dry_run": self.dry_run,
            "success": self.success,
            "error": self.error,
            "timestamp": (self.finished_at or self.started_at).isoformat(),
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "pages": self.pages,
            "total_fetched": self.fetched,
            "fetched": self.fetched,
            "valid": self.valid,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "rejected": self.rejected,
            "reconciled": {
                "created": self.reconciled_created,
                "updated": self.reconciled_updated,
                "unchanged": self.reconciled_unchanged,
                "failed": self.reconciled_failed,
            },
            "failures": list(self.failures),
        }


def process_page(
    db: Session,
    records: list[ExternalLicenseRecord],
    *,
    batch_size: int,
    correlation_id: str | None = None,
) -> tuple[UpsertSummary, ReconcileSummary]:
    """Upsert one page into staging, reconcile what landed, commit."""
    upsert = external_license_service.bulk_upsert(
        db, records, batch_size=batch_size, correlation_id=correlation_id
    )
    landed = [r for r in dedupe_by_appid(records) if r.appid not in upsert.failed_appids]
    reconciled = reconciliation_service.reconcile(db, landed, correlation_id=correlation_id)
    db.commit()
    return upsert, reconciled


async def run_sync(
    db: Session,
    provider: LicenseProviderClient,
    run: SyncRun,
    *,
    dry_run: bool | None = None,
    batch_size: int | None = None,
) -> SyncResult:
    """
    Run the pipeline for an acquired run.

    Fetch errors and database errors end the run with ``success=False``;
    they do not propagate. A dry run validates without writing.
    """
    result = SyncResult.for_run(run)
    if dry_run is not None:
        result.dry_run = dry_run
    batch_size = batch_size or settings.LICENSE_SYNC_DB_BATCH_SIZE
    log_extra = build_log_context(run_id=run.correlation_id, trigger=run.trigger.value)
    started = time.monotonic()

    try:
        async for page in provider.iter_pages():
            batch = validate_batch(
                page.items,
                start_index=result.fetched,
                correlation_id=run.correlation_id,
            )
            result.pages += 1
            result.fetched += len(page.items)
            result.valid += len(batch.valid)
            result.add_rejections(batch.rejected)
            if batch.rejected:
                _rejected_counter.add(len(batch.rejected))

            if result.dry_run or not batch.valid:
                continue

            upsert, reconciled = await run_in_thread(
                process_page,
                db,
                batch.valid,
                batch_size=batch_size,
                correlation_id=run.correlation_id,
            )
            result.add_upsert(upsert)
            result.add_reconcile(reconciled)
        result.success = True
    except ProviderFetchError as exc:
        db.rollback()
        result.error = str(exc)
        logger.error("License sync fetch failed: %s", exc, extra=log_extra)
    except SQLAlchemyError as exc:
        db.rollback()
        result.error = f"Database error: {exc.__class__.__name__}"
        logger.exception("License sync database failure", extra=log_extra)
    finally:
        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.finished_at = datetime.now(timezone.utc)

    logger.info(
        "License sync %s %s: fetched=%s created=%s updated=%s failed=%s in %sms",
        run.run_id,
        "succeeded" if result.success else "failed",
        result.fetched,
        result.created,
        result.updated,
        result.failed,
        result.duration_ms,
        extra=log_extra,
    )
    return result


def _release(session_factory: SessionFactory, db: Session, run: SyncRun, result: SyncResult) -> None:
    try:
        sync_state_service.release(db, run, result)
        return
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to release license sync %s, retrying on a new session",
            run.run_id,
            extra=build_log_context(run_id=run.correlation_id),
        )

    retry_db = session_factory()
    try:
        sync_state_service.release(retry_db, run, result)
    except SQLAlchemyError:
        retry_db.rollback()
        logger.exception(
            "License sync %s could not be released; stale recovery will reset it",
            run.run_id,
            extra=build_log_context(run_id=run.correlation_id),
        )
    finally:
        retry_db.close()


async def execute_sync(
    session_factory: SessionFactory,
    provider_factory: ProviderFactory,
    run: SyncRun,
) -> SyncResult:
    """
    Run an acquired sync to completion and always release it.

    This is the entry point for background tasks, the scheduler and the CLI.
    It never raises for pipeline errors: they end up in ``last_sync_result``.
    """
    log_extra = build_log_context(run_id=run.correlation_id, trigger=run.trigger.value)
    db = session_factory()
    try:
        try:
            provider = provider_factory(correlation_id=run.correlation_id)
            result = await run_sync(db, provider, run)
        except LicenseSyncError as exc:
            db.rollback()
            result = SyncResult.for_run(run)
            result.error = str(exc)
            result.finished_at = datetime.now(timezone.utc)
            logger.error("License sync could not start: %s", exc, extra=log_extra)
        except Exception as exc:
            db.rollback()
            result = SyncResult.for_run(run)
            result.error = f"Unexpected error: {exc.__class__.__name__}"
            result.finished_at = datetime.now(timezone.utc)
            logger.exception("License sync crashed", extra=log_extra)

        await run_in_thread(_release, session_factory, db, run, result)
    finally:
        db.close()

    cache_service.invalidate_dashboard_metrics()
    _runs_counter.add(
        1,
        {"trigger": run.trigger.value, "outcome": "success" if result.success else "failure"},
    )
    return result


def default_provider_factory(**overrides: Any) -> LicenseProviderClient:
    return LicenseProviderClient.from_settings(**overrides)


def start_sync(db: Session, trigger: SyncTrigger, *, dry_run: bool = False) -> SyncRun | None:
    """Claim the running state for a new run; None if one is already running."""
    return sync_state_service.try_acquire(db, trigger, dry_run=dry_run)


def acquire_or_raise(db: Session, trigger: SyncTrigger, *, dry_run: bool = False) -> SyncRun:
    run = start_sync(db, trigger, dry_run=dry_run)
    if run is None:
        raise SyncAlreadyRunningError("A license sync is already in progress")
    return run


async def trigger_sync(
    session_factory: SessionFactory,
    provider_factory: ProviderFactory,
    trigger: SyncTrigger,
    *,
    dry_run: bool = False,
) -> SyncResult | None:
    """Acquire and run in one call; returns None if a run is already in progress."""
    db = session_factory()
    try:
        run = await run_in_thread(start_sync, db, trigger, dry_run=dry_run)
    finally:
        db.close()
    if run is None:
        return None
    return await execute_sync(session_factory, provider_factory, run)
