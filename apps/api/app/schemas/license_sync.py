"""Pydantic schemas for license sync status and triggers."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SyncTriggerResponse(BaseModel):
    """``POST /licenses/sync`` body; returned before the run finishes."""

    accepted: bool
    run_id: UUID | None = None
    message: str


class SyncCurrentRun(BaseModel):
    run_id: UUID | None
    trigger: str | None
    started_at: datetime | None
    running_for_seconds: float | None
    is_stale: bool


class SyncStatistics(BaseModel):
    total_runs: int
    successful_runs: int
    failed_runs: int
    average_duration_ms: int
    success_rate: float
    total_records_processed: int


class SyncSchedule(BaseModel):
    cron: str
    timezone: str
    next_run_at: datetime | None = None


class SyncEnrichment(BaseModel):
    sms_balance_fallback_count: int


class SyncStatusRead(BaseModel):
    state: str
    running: bool
    enabled: bool
    current_run: SyncCurrentRun | None
    last_outcome: str | None
    last_sync_result: dict[str, Any] | None
    last_success_at: datetime | None
    statistics: SyncStatistics
    schedule: SyncSchedule
    enrichment: SyncEnrichment


class SyncRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trigger: str
    status: str
    dry_run: bool
    started_at: datetime
    finished_at: datetime | None
    duration_ms: int | None
    fetched: int
    created: int
    updated: int
    failed: int
    reconciled_created: int
    reconciled_updated: int
    error: str | None
    failures: list[dict[str, Any]]


class SyncResetResponse(BaseModel):
    reset: bool
    message: str


class ProviderHealthRead(BaseModel):
    healthy: bool
    checked_at: datetime
    error: str | None = None
