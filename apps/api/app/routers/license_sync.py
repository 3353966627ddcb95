"""License sync router - on-demand trigger, status, history and recovery.

Mounted before the licenses router so ``/licenses/sync`` is never parsed as
a license id.
"""

from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_license_provider_factory, get_session_factory
from app.core.rate_limit import SYNC_TRIGGER_LIMIT, limiter
from app.db.enums import SyncTrigger
from app.schemas.license_sync import (
    ProviderHealthRead,
    SyncResetResponse,
    SyncRunRead,
    SyncStatusRead,
    SyncTriggerResponse,
)
from app.services import license_sync_service, sync_state_service
from app.services.license_sync_errors import ProviderConfigError

router = APIRouter(prefix="/licenses/sync", tags=["license-sync"])


def _next_run_at(request: Request):
    scheduler = getattr(request.app.state, "license_sync_scheduler", None)
    return scheduler.next_run_time() if scheduler else None


@router.post("", response_model=SyncTriggerResponse, status_code=202)
@limiter.limit(SYNC_TRIGGER_LIMIT)
def trigger_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    dry_run: bool = Query(False, description="Fetch and validate without writing"),
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    provider_factory: Callable = Depends(get_license_provider_factory),
):
    """
    Start a sync in the background and return immediately.

    If a sync is already running the request is accepted=false, not queued.
    """
    run = license_sync_service.start_sync(db, SyncTrigger.MANUAL, dry_run=dry_run)
    if run is None:
        return SyncTriggerResponse(
            accepted=False,
            message="License sync already in progress",
        )

    background_tasks.add_task(
        license_sync_service.execute_sync, session_factory, provider_factory, run
    )
    return SyncTriggerResponse(
        accepted=True,
        run_id=run.run_id,
        message="Dry run started" if dry_run else "License sync started",
    )


@router.get("/status", response_model=SyncStatusRead)
def get_sync_status(request: Request, db: Session = Depends(get_db)):
    """Current state, last run result and rolling statistics."""
    return sync_state_service.get_status(db, next_run_at=_next_run_at(request))


@router.get("/history", response_model=list[SyncRunRead])
def get_sync_history(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return sync_state_service.list_runs(db, limit)


@router.post("/reset", response_model=SyncResetResponse)
def reset_sync_state(
    force: bool = Query(False, description="Reset even if the run is not stale yet"),
    db: Session = Depends(get_db),
):
    """Clear a stuck running state (stale only, unless force=true)."""
    reset = sync_state_service.recover_stale(db, force=force)
    if reset:
        return SyncResetResponse(reset=True, message="Running state reset to idle")
    return SyncResetResponse(reset=False, message="Nothing to reset")


@router.get("/provider-health", response_model=ProviderHealthRead)
async def get_provider_health(
    provider_factory: Callable = Depends(get_license_provider_factory),
):
    try:
        provider = provider_factory()
    except ProviderConfigError as e:
        return ProviderHealthRead(healthy=False, checked_at=datetime.now(timezone.utc), error=str(e))
    return await provider.health_check()
