"""Sync lock/status row and run history."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import SyncOutcome, SyncState
from app.db.types import JSONType

SYNC_STATE_ROW_ID = 1


class LicenseSyncState(Base):
    """
    Process-wide sync status (single row, id=1).

    state is flipped idle -> running only through a conditional UPDATE,
    which makes it the mutual-exclusion point for sync runs.
    """

    __tablename__ = "license_sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    state: Mapped[str] = mapped_column(
        String(20),
        default=SyncState.IDLE.value,
        server_default=text(f"'{SyncState.IDLE.value}'"),
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    trigger: Mapped[str | None] = mapped_column(String(20), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)

    last_outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(nullable=True)

    total_runs: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    successful_runs: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    failed_runs: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    total_duration_ms: Mapped[int] = mapped_column(
        BigInteger, default=0, server_default=text("0"), nullable=False
    )
    total_records_processed: Mapped[int] = mapped_column(
        BigInteger, default=0, server_default=text("0"), nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class LicenseSyncRun(Base):
    """History entry for one sync run."""

    __tablename__ = "license_sync_runs"
    __table_args__ = (Index("idx_license_sync_runs_started", "started_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=SyncOutcome.RUNNING.value, nullable=False
    )
    dry_run: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reconciled_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reconciled_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # First few per-record failures: [{"appid": ..., "reason": ...}]
    failures: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
