"""Reconciliation of staging records into the internal ``licenses`` table."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import ExternalSyncStatus, ProviderStatus
from app.db.models import ExternalLicense, License
from app.services import license_merge
from app.services.external_license_service import (
    IN_CLAUSE_CHUNK,
    MAX_ERRORS_KEPT,
    dedupe_by_appid,
    is_connection_error,
)
from app.services.license_validator import ExternalLicenseRecord
from app.types import JsonObject

logger = logging.getLogger(__name__)

STAGING_SCAN_BATCH = 500


@dataclass
class ReconcileSummary:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: list[JsonObject] = field(default_factory=list)

    def merge(self, other: "ReconcileSummary") -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.failed += other.failed
        room = MAX_ERRORS_KEPT - len(self.errors)
        if room > 0:
            self.errors.extend(other.errors[:room])

    def as_dict(self) -> JsonObject:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def record_from_staging(row: ExternalLicense) -> ExternalLicenseRecord:
    """Rebuild the canonical record from a stored staging row."""
    status = None
    if row.status is not None and row.status in (s.value for s in ProviderStatus):
        status = ProviderStatus(row.status)
    return ExternalLicenseRecord(
        appid=row.appid,
        countid=row.countid,
        mid=row.mid,
        dba=row.dba,
        zip=row.zip,
        status=status,
        license_type=row.license_type,
        activate_date=row.activate_date,
        coming_expired=row.coming_expired,
        monthly_fee=float(row.monthly_fee or 0),
        sms_balance=float(row.sms_balance or 0),
        sms_purchased=int(row.sms_purchased or 0),
        sms_sent=int(row.sms_sent or 0),
        package=dict(row.package or {}),
        note=row.note,
        email_license=row.email_license,
        sendbat_workspace=row.sendbat_workspace,
        last_active=row.last_active,
    )


def _load_internal(db: Session, appids: list[str]) -> dict[str, License]:
    found: dict[str, License] = {}
    for start in range(0, len(appids), IN_CLAUSE_CHUNK):
        chunk = appids[start : start + IN_CLAUSE_CHUNK]
        for license in db.query(License).filter(License.appid.in_(chunk)):
            found[license.appid] = license
    return found


def reconcile(
    db: Session,
    records: Iterable[ExternalLicenseRecord],
    *,
    today: date | None = None,
    correlation_id: str | None = None,
) -> ReconcileSummary:
    """
    Create or update internal licenses from staging records.

    Matches by appid. Only externally-owned fields are written on update and
    rows without differences are left untouched, so running this twice on
    the same records is a no-op the second time. Runs in the caller's
    transaction; each record is isolated in a savepoint.
    """
    unique = dedupe_by_appid(records)
    summary = ReconcileSummary()
    if not unique:
        return summary

    now = datetime.now(timezone.utc)
    existing = _load_internal(db, [r.appid for r in unique])

    for record in unique:
        current = existing.get(record.appid)
        try:
            with db.begin_nested():
                if current is None:
                    values = license_merge.new_license_values(record, today=today)
                    db.add(
                        License(
                            **values,
                            external_sync_status=ExternalSyncStatus.SYNCED.value,
                            last_external_sync=now,
                        )
                    )
                    db.flush()
                    summary.created += 1
                    continue

                changes = license_merge.plan_changes(current, record, today=today)
                if not changes:
                    summary.unchanged += 1
                    continue
                for name, value in changes.items():
                    setattr(current, name, value)
                current.external_sync_status = ExternalSyncStatus.SYNCED.value
                current.last_external_sync = now
                db.flush()
                summary.updated += 1
        except SQLAlchemyError as exc:
            if is_connection_error(exc):
                raise
            summary.failed += 1
            if len(summary.errors) < MAX_ERRORS_KEPT:
                summary.errors.append({"appid": record.appid, "error": str(getattr(exc, "orig", None) or exc)[:500]})
            logger.warning(
                "Reconciliation failed for appid %s",
                record.appid,
                exc_info=exc,
                extra=build_log_context(correlation_id=correlation_id, appid=record.appid),
            )

    logger.info(
        "Reconciled %s records: %s created, %s updated, %s unchanged, %s failed",
        len(unique),
        summary.created,
        summary.updated,
        summary.unchanged,
        summary.failed,
        extra=build_log_context(correlation_id=correlation_id),
    )
    return summary


def reconcile_from_staging(db: Session, *, batch_size: int = STAGING_SCAN_BATCH) -> ReconcileSummary:
    """Reconcile the whole staging table, committing after each batch."""
    summary = ReconcileSummary()
    last_appid = ""
    while True:
        rows = (
            db.query(ExternalLicense)
            .filter(ExternalLicense.appid > last_appid)
            .order_by(ExternalLicense.appid)
            .limit(batch_size)
            .all()
        )
        if not rows:
            break
        last_appid = rows[-1].appid
        summary.merge(reconcile(db, [record_from_staging(row) for row in rows]))
        db.commit()
    return summary
