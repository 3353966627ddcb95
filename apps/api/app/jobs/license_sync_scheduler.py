"""In-process cron schedule for the license sync.

The scheduler only decides *when* to try. Whether a run may start is decided
by the status row's compare-and-swap, so a scheduled fire that lands during
a manual run is rejected and logged, never queued.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import SyncTrigger
from app.services import license_sync_service
from app.services.license_sync_service import ProviderFactory

logger = logging.getLogger(__name__)

JOB_ID = "license-sync"


def build_trigger(schedule: str | None = None, timezone: str | None = None) -> CronTrigger:
    """Parse a five-field crontab; raises ValueError on a bad expression."""
    return CronTrigger.from_crontab(
        schedule or settings.LICENSE_SYNC_SCHEDULE,
        timezone=timezone or settings.LICENSE_SYNC_TIMEZONE,
    )


class LicenseSyncScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider_factory: ProviderFactory = license_sync_service.default_provider_factory,
        *,
        schedule: str | None = None,
        timezone: str | None = None,
    ):
        self.session_factory = session_factory
        self.provider_factory = provider_factory
        self.schedule = schedule or settings.LICENSE_SYNC_SCHEDULE
        self.timezone = timezone or settings.LICENSE_SYNC_TIMEZONE
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def run_scheduled(self) -> None:
        """Job body: acquire through the status row, then run to completion."""
        result = await license_sync_service.trigger_sync(
            self.session_factory,
            self.provider_factory,
            SyncTrigger.SCHEDULED,
        )
        if result is None:
            logger.info("Scheduled license sync skipped: a sync is already in progress")

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_ERROR:
            logger.error("License sync job error: %s", event.exception)
        elif event.code == EVENT_JOB_MISSED:
            logger.warning("License sync job missed its scheduled run time")

    def start(self) -> None:
        if self.running:
            logger.warning("License sync scheduler is already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.timezone)
        scheduler.add_job(
            self.run_scheduled,
            trigger=build_trigger(self.schedule, self.timezone),
            id=JOB_ID,
            name="License sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "License sync scheduler started (%s %s), next run at %s",
            self.schedule,
            self.timezone,
            self.next_run_time(),
        )

    def shutdown(self, wait: bool = False) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("License sync scheduler stopped")

    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
