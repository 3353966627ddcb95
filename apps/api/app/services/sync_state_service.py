"""Sync status tracker: the idle/running state machine for license sync runs.

The single ``license_sync_state`` row is the only place that knows whether a
sync is running. ``try_acquire`` flips it idle -> running with a conditional
UPDATE (compare-and-swap), so two triggers (or two processes) can never both
win. ``release`` records the result, folds it into the statistics and returns
the row to idle in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import SyncOutcome, SyncState, SyncTrigger
from app.db.models import SYNC_STATE_ROW_ID, LicenseSyncRun, LicenseSyncState
from app.services import enrichment_service

if TYPE_CHECKING:
    from app.services.license_sync_service import SyncResult

logger = logging.getLogger(__name__)

ABANDONED_RUN_ERROR = "Sync run abandoned; stale running state was reset"


@dataclass(frozen=True)
class SyncRun:
    """Handle for an acquired run; passed through to ``release``."""

    run_id: uuid.UUID
    trigger: SyncTrigger
    started_at: datetime
    dry_run: bool = False

    @property
    def correlation_id(self) -> str:
        return str(self.run_id)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_state(db: Session, *, enabled: bool | None = None) -> LicenseSyncState:
    """Return the status row, creating it (idle) if missing."""
    state = db.get(LicenseSyncState, SYNC_STATE_ROW_ID)
    if state is None:
        state = LicenseSyncState(
            id=SYNC_STATE_ROW_ID,
            state=SyncState.IDLE.value,
            enabled=settings.LICENSE_SYNC_ENABLED if enabled is None else enabled,
        )
        db.add(state)
        try:
            db.commit()
        except IntegrityError:
            # another process created it first
            db.rollback()
            state = db.get(LicenseSyncState, SYNC_STATE_ROW_ID)
    elif enabled is not None and state.enabled != enabled:
        state.enabled = enabled
        db.commit()
    return state


def try_acquire(db: Session, trigger: SyncTrigger, *, dry_run: bool = False) -> SyncRun | None:
    """
    Atomically move idle -> running.

    Returns the run handle, or None when a run is already in progress.
    """
    ensure_state(db)
    run = SyncRun(run_id=uuid.uuid4(), trigger=trigger, started_at=_now(), dry_run=dry_run)

    result = db.execute(
        update(LicenseSyncState)
        .where(
            LicenseSyncState.id == SYNC_STATE_ROW_ID,
            LicenseSyncState.state == SyncState.IDLE.value,
        )
        .values(
            state=SyncState.RUNNING.value,
            run_id=run.run_id,
            trigger=trigger.value,
            started_at=run.started_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info(
            "License sync already in progress; %s trigger rejected",
            trigger.value,
            extra=build_log_context(trigger=trigger.value),
        )
        return None

    db.add(
        LicenseSyncRun(
            id=run.run_id,
            trigger=trigger.value,
            status=SyncOutcome.RUNNING.value,
            dry_run=dry_run,
            started_at=run.started_at,
        )
    )
    db.commit()
    logger.info(
        "License sync %s acquired (%s)",
        run.run_id,
        trigger.value,
        extra=build_log_context(run_id=run.correlation_id, trigger=trigger.value),
    )
    return run


def _statistics_values(success: bool, duration_ms: int, records: int) -> dict[str, Any]:
    return {
        "total_runs": LicenseSyncState.total_runs + 1,
        "successful_runs": LicenseSyncState.successful_runs + (1 if success else 0),
        "failed_runs": LicenseSyncState.failed_runs + (0 if success else 1),
        "total_duration_ms": LicenseSyncState.total_duration_ms + duration_ms,
        "total_records_processed": LicenseSyncState.total_records_processed + records,
    }


def release(db: Session, run: SyncRun, result: "SyncResult") -> None:
    """
    Record the result and return to idle, in one transaction.

    If the running state was already reset (stale recovery) and another run
    holds it now, only the history row and statistics are written.
    """
    outcome = SyncOutcome.SUCCEEDED if result.success else SyncOutcome.FAILED
    finished_at = _now()
    payload = result.as_dict()

    values = _statistics_values(result.success, result.duration_ms, result.fetched)
    values["last_outcome"] = outcome.value
    values["last_result"] = payload
    if result.success:
        values["last_success_at"] = finished_at

    db.execute(
        update(LicenseSyncState)
        .where(LicenseSyncState.id == SYNC_STATE_ROW_ID)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    reset = db.execute(
        update(LicenseSyncState)
        .where(
            LicenseSyncState.id == SYNC_STATE_ROW_ID,
            LicenseSyncState.run_id == run.run_id,
        )
        .values(
            state=SyncState.IDLE.value,
            run_id=None,
            trigger=None,
            started_at=None,
        )
        .execution_options(synchronize_session=False)
    )

    history = db.get(LicenseSyncRun, run.run_id)
    if history is not None:
        history.status = outcome.value
        history.finished_at = finished_at
        history.duration_ms = result.duration_ms
        history.fetched = result.fetched
        history.created = result.created
        history.updated = result.updated
        history.failed = result.failed
        history.reconciled_created = result.reconciled_created
        history.reconciled_updated = result.reconciled_updated
        history.error = result.error
        history.failures = list(result.failures)

    db.commit()
    db.expire_all()

    if reset.rowcount != 1:
        logger.warning(
            "License sync %s finished after its running state was reset",
            run.run_id,
            extra=build_log_context(run_id=run.correlation_id),
        )
    logger.info(
        "License sync %s released: %s",
        run.run_id,
        outcome.value,
        extra=build_log_context(run_id=run.correlation_id, trigger=run.trigger.value),
    )


def is_stale(state: LicenseSyncState, max_age: timedelta, *, now: datetime | None = None) -> bool:
    if state.state != SyncState.RUNNING.value or state.started_at is None:
        return False
    return (now or _now()) - state.started_at > max_age


def recover_stale(db: Session, max_age: timedelta | None = None, *, force: bool = False) -> bool:
    """
    Reset a running state that has been held longer than ``max_age``.

    ``force`` resets any running state regardless of age (manual recovery).
    The abandoned run is recorded as failed. Returns True if a reset happened.
    """
    max_age = max_age or timedelta(minutes=settings.LICENSE_SYNC_STALE_MINUTES)
    state = ensure_state(db)
    db.refresh(state)
    if state.state != SyncState.RUNNING.value:
        return False
    if not force and not is_stale(state, max_age):
        return False

    stale_run_id = state.run_id
    now = _now()
    duration_ms = int((now - state.started_at).total_seconds() * 1000) if state.started_at else 0

    values = _statistics_values(False, duration_ms, 0)
    values.update(
        state=SyncState.IDLE.value,
        run_id=None,
        trigger=None,
        started_at=None,
        last_outcome=SyncOutcome.FAILED.value,
        last_result={
            "success": False,
            "error": ABANDONED_RUN_ERROR,
            "run_id": str(stale_run_id) if stale_run_id else None,
            "duration_ms": duration_ms,
            "timestamp": now.isoformat(),
            "fetched": 0,
            "created": 0,
            "updated": 0,
            "failed": 0,
        },
    )
    conditions = [
        LicenseSyncState.id == SYNC_STATE_ROW_ID,
        LicenseSyncState.state == SyncState.RUNNING.value,
    ]
    if stale_run_id is not None:
        conditions.append(LicenseSyncState.run_id == stale_run_id)
    result = db.execute(
        update(LicenseSyncState)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return False

    if stale_run_id is not None:
        history = db.get(LicenseSyncRun, stale_run_id)
        if history is not None and history.status == SyncOutcome.RUNNING.value:
            history.status = SyncOutcome.FAILED.value
            history.finished_at = now
            history.duration_ms = duration_ms
            history.error = ABANDONED_RUN_ERROR
    db.commit()
    db.expire_all()

    logger.warning(
        "Reset stale license sync state (run %s, held %s ms, force=%s)",
        stale_run_id,
        duration_ms,
        force,
        extra=build_log_context(run_id=str(stale_run_id) if stale_run_id else None),
    )
    return True


def get_status(db: Session, *, next_run_at: datetime | None = None) -> dict[str, Any]:
    """Current state, last result and rolling statistics."""
    state = ensure_state(db)
    db.refresh(state)
    now = _now()
    max_age = timedelta(minutes=settings.LICENSE_SYNC_STALE_MINUTES)
    running = state.state == SyncState.RUNNING.value

    current_run = None
    if running:
        current_run = {
            "run_id": state.run_id,
            "trigger": state.trigger,
            "started_at": state.started_at,
            "running_for_seconds": (
                round((now - state.started_at).total_seconds(), 1) if state.started_at else None
            ),
            "is_stale": is_stale(state, max_age, now=now),
        }

    total = state.total_runs or 0
    return {
        "state": state.state,
        "running": running,
        "enabled": state.enabled,
        "current_run": current_run,
        "last_outcome": state.last_outcome,
        "last_sync_result": state.last_result,
        "last_success_at": state.last_success_at,
        "statistics": {
            "total_runs": total,
            "successful_runs": state.successful_runs or 0,
            "failed_runs": state.failed_runs or 0,
            "average_duration_ms": round((state.total_duration_ms or 0) / total) if total else 0,
            "success_rate": round((state.successful_runs or 0) / total * 100, 2) if total else 0.0,
            "total_records_processed": state.total_records_processed or 0,
        },
        "schedule": {
            "cron": settings.LICENSE_SYNC_SCHEDULE,
            "timezone": settings.LICENSE_SYNC_TIMEZONE,
            "next_run_at": next_run_at,
        },
        "enrichment": {
            "sms_balance_fallback_count": enrichment_service.get_fallback_count(),
        },
    }


def list_runs(db: Session, limit: int = 20) -> list[LicenseSyncRun]:
    return (
        db.query(LicenseSyncRun)
        .order_by(LicenseSyncRun.started_at.desc())
        .limit(limit)
        .all()
    )
