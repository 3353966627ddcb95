"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron when the in-process scheduler is disabled.
"""
from typing import Any, Callable

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_license_provider_factory, get_session_factory
from app.db.enums import SyncTrigger
from app.services import license_sync_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class ScheduledSyncResponse(BaseModel):
    accepted: bool
    message: str
    result: dict[str, Any] | None = None


@router.post(
    "/license-sync",
    response_model=ScheduledSyncResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def run_license_sync(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    provider_factory: Callable = Depends(get_license_provider_factory),
):
    """
    Run a license sync to completion for an external cron.

    Rejected (accepted=false) when a sync is already running.
    """
    result = await license_sync_service.trigger_sync(
        session_factory, provider_factory, SyncTrigger.CRON
    )
    if result is None:
        return ScheduledSyncResponse(accepted=False, message="License sync already in progress")
    return ScheduledSyncResponse(
        accepted=True,
        message="License sync succeeded" if result.success else "License sync failed",
        result=result.as_dict(),
    )
