"""Staging repository for ``external_licenses``.

The sync pipeline is the only writer. ``bulk_upsert`` issues one
``INSERT ... ON CONFLICT (appid) DO UPDATE`` per batch that overwrites every
mutable column from the incoming row; when a batch statement fails it falls
back to per-row savepoints so one bad row does not drop the others.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import ExternalSyncStatus, ProviderStatus
from app.db.models import ExternalLicense
from app.services.license_validator import ExternalLicenseRecord
from app.types import JsonObject
from app.utils.pagination import PaginationParams, apply_sort, paginate_query

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
IN_CLAUSE_CHUNK = 500
MAX_ERRORS_KEPT = 50

STAGING_SORTABLE_FIELDS = {
    "appid": ExternalLicense.appid,
    "dba": ExternalLicense.dba,
    "coming_expired": ExternalLicense.coming_expired,
    "sms_balance": ExternalLicense.sms_balance,
    "last_synced_at": ExternalLicense.last_synced_at,
}

# Never rewritten by an upsert
IMMUTABLE_COLUMNS = frozenset({"id", "appid", "created_at"})
MUTABLE_COLUMNS: tuple[str, ...] = tuple(
    column.name
    for column in ExternalLicense.__table__.columns
    if column.name not in IMMUTABLE_COLUMNS
)


@dataclass
class UpsertSummary:
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[JsonObject] = field(default_factory=list)
    failed_appids: set[str] = field(default_factory=set)

    def add_error(self, appid: str | None, error: str) -> None:
        self.failed += 1
        if appid:
            self.failed_appids.add(appid)
        if len(self.errors) < MAX_ERRORS_KEPT:
            self.errors.append({"appid": appid, "error": error})

    def merge(self, other: "UpsertSummary") -> None:
        self.created += other.created
        self.updated += other.updated
        self.failed += other.failed
        self.failed_appids.update(other.failed_appids)
        room = MAX_ERRORS_KEPT - len(self.errors)
        if room > 0:
            self.errors.extend(other.errors[:room])

    def as_dict(self) -> JsonObject:
        return {
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def is_connection_error(exc: BaseException) -> bool:
    """Connection loss is fatal for a run; other database errors degrade per row."""
    if isinstance(exc, (OperationalError, DisconnectionError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _error_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    message = str(orig) if orig is not None else str(exc)
    return message.splitlines()[0][:500] if message else exc.__class__.__name__


def dedupe_by_appid(records: Iterable[ExternalLicenseRecord]) -> list[ExternalLicenseRecord]:
    """Keep one record per appid; the last occurrence wins and takes its position."""
    latest: dict[str, ExternalLicenseRecord] = {}
    for record in records:
        latest.pop(record.appid, None)
        latest[record.appid] = record
    return list(latest.values())


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Bulk upsert is not supported on {dialect}")
    return insert


def _build_upsert(db: Session, rows: list[JsonObject]):
    insert = _dialect_insert(db)
    stmt = insert(ExternalLicense).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=[ExternalLicense.appid],
        set_={name: stmt.excluded[name] for name in MUTABLE_COLUMNS},
    )


def _to_rows(records: Sequence[ExternalLicenseRecord], synced_at: datetime) -> list[JsonObject]:
    rows = []
    for record in records:
        row = record.to_row()
        row["id"] = uuid.uuid4()
        row["sync_status"] = ExternalSyncStatus.SYNCED.value
        row["last_synced_at"] = synced_at
        row["updated_at"] = synced_at
        rows.append(row)
    return rows


def existing_appids(db: Session, appids: Sequence[str]) -> set[str]:
    found: set[str] = set()
    for start in range(0, len(appids), IN_CLAUSE_CHUNK):
        chunk = appids[start : start + IN_CLAUSE_CHUNK]
        found.update(
            db.execute(
                select(ExternalLicense.appid).where(ExternalLicense.appid.in_(chunk))
            ).scalars()
        )
    return found


def _upsert_rows_individually(
    db: Session,
    rows: list[JsonObject],
    existing: set[str],
    correlation_id: str | None,
) -> UpsertSummary:
    summary = UpsertSummary()
    for row in rows:
        appid = row["appid"]
        try:
            with db.begin_nested():
                db.execute(_build_upsert(db, [row]))
        except SQLAlchemyError as exc:
            if is_connection_error(exc):
                raise
            message = _error_message(exc)
            summary.add_error(appid, message)
            logger.warning(
                "Staging upsert failed for appid %s: %s",
                appid,
                message,
                extra=build_log_context(correlation_id=correlation_id, appid=appid),
            )
            continue
        if appid in existing:
            summary.updated += 1
        else:
            summary.created += 1
    return summary


def _upsert_batch(
    db: Session,
    records: Sequence[ExternalLicenseRecord],
    synced_at: datetime,
    correlation_id: str | None,
) -> UpsertSummary:
    rows = _to_rows(records, synced_at)
    existing = existing_appids(db, [row["appid"] for row in rows])

    try:
        with db.begin_nested():
            db.execute(_build_upsert(db, rows))
    except SQLAlchemyError as exc:
        if is_connection_error(exc):
            raise
        logger.warning(
            "Batch upsert of %s rows failed (%s), retrying row by row",
            len(rows),
            _error_message(exc),
            extra=build_log_context(correlation_id=correlation_id),
        )
        return _upsert_rows_individually(db, rows, existing, correlation_id)

    return UpsertSummary(
        created=len(rows) - len(existing),
        updated=len(existing),
    )


def bulk_upsert(
    db: Session,
    records: Iterable[ExternalLicenseRecord],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    correlation_id: str | None = None,
) -> UpsertSummary:
    """
    Upsert validated records keyed by appid.

    Duplicates within the input collapse to their last occurrence. Runs in
    the caller's transaction; the caller commits. Connection errors
    propagate, every other database error is counted per row in ``failed``.
    """
    unique = dedupe_by_appid(records)
    summary = UpsertSummary()
    if not unique:
        return summary

    synced_at = datetime.now(timezone.utc)
    for start in range(0, len(unique), batch_size):
        batch = unique[start : start + batch_size]
        summary.merge(_upsert_batch(db, batch, synced_at, correlation_id))

    logger.info(
        "Staging upsert: %s created, %s updated, %s failed",
        summary.created,
        summary.updated,
        summary.failed,
        extra=build_log_context(correlation_id=correlation_id),
    )
    return summary


# =============================================================================
# Reads
# =============================================================================


def get_by_appid(db: Session, appid: str) -> ExternalLicense | None:
    return db.query(ExternalLicense).filter(ExternalLicense.appid == appid).first()


def get_by_appids(db: Session, appids: Iterable[str]) -> dict[str, ExternalLicense]:
    """Map appid -> staging row, one query per chunk of ids."""
    wanted = sorted({a for a in appids if a})
    found: dict[str, ExternalLicense] = {}
    for start in range(0, len(wanted), IN_CLAUSE_CHUNK):
        chunk = wanted[start : start + IN_CLAUSE_CHUNK]
        for row in db.query(ExternalLicense).filter(ExternalLicense.appid.in_(chunk)):
            found[row.appid] = row
    return found


def list_external_licenses(
    db: Session,
    pagination: PaginationParams,
    *,
    q: str | None = None,
    status: ProviderStatus | None = None,
    sort_by: str = "appid",
    sort_order: str = "asc",
) -> tuple[list[ExternalLicense], int]:
    query = db.query(ExternalLicense)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                ExternalLicense.appid.ilike(pattern),
                ExternalLicense.dba.ilike(pattern),
                ExternalLicense.zip.ilike(pattern),
            )
        )
    if status is not None:
        query = query.filter(ExternalLicense.status == int(status))
    query = apply_sort(query, STAGING_SORTABLE_FIELDS, sort_by, sort_order, tiebreaker=ExternalLicense.id)
    return paginate_query(query, pagination)


def get_stats(db: Session) -> dict[str, Any]:
    """Row counts and last sync time for the staging table."""
    total = db.query(func.count(ExternalLicense.id)).scalar() or 0
    active = (
        db.query(func.count(ExternalLicense.id))
        .filter(ExternalLicense.status == int(ProviderStatus.ACTIVE))
        .scalar()
        or 0
    )
    inactive = (
        db.query(func.count(ExternalLicense.id))
        .filter(ExternalLicense.status == int(ProviderStatus.INACTIVE))
        .scalar()
        or 0
    )
    failed = (
        db.query(func.count(ExternalLicense.id))
        .filter(ExternalLicense.sync_status == ExternalSyncStatus.FAILED.value)
        .scalar()
        or 0
    )
    last_synced_at = db.query(func.max(ExternalLicense.last_synced_at)).scalar()
    return {
        "total": total,
        "active": active,
        "inactive": inactive,
        "failed": failed,
        "last_synced_at": last_synced_at,
    }
