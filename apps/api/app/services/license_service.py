"""License service - dashboard CRUD, bulk updates and the SMS ledger."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import LicenseStatus, LicenseTerm
from app.db.models import License, SmsPayment
from app.schemas.license import (
    LicenseBulkChanges,
    LicenseCreate,
    LicenseUpdate,
    SmsPaymentCreate,
)
from app.services import cache_service
from app.utils.pagination import PaginationParams, apply_sort, paginate_query

logger = logging.getLogger(__name__)

DASHBOARD_KEY_PREFIX = "LIC-"

SORTABLE_FIELDS = {
    "created_at": License.created_at,
    "updated_at": License.updated_at,
    "starts_at": License.starts_at,
    "due_date": License.due_date,
    "dba": License.dba,
    "status": License.status,
    "plan": License.plan,
    "sms_balance": License.sms_balance,
    "last_payment": License.last_payment,
    "last_active": License.last_active,
}

NON_NULLABLE_FIELDS = frozenset(
    {
        "product",
        "plan",
        "status",
        "term",
        "seats_total",
        "seats_used",
        "last_payment",
        "sms_purchased",
        "sms_sent",
        "sms_balance",
        "agents",
        "agents_name",
        "agents_cost",
    }
)


@dataclass
class LicenseFilters:
    q: str | None = None
    status: list[LicenseStatus] | None = None
    plan: str | None = None
    term: LicenseTerm | None = None
    starts_from: date | None = None
    starts_to: date | None = None
    due_before: date | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


@dataclass
class BulkUpdateResult:
    matched: int = 0
    updated: int = 0
    not_found: list[UUID] = field(default_factory=list)


def generate_dashboard_key() -> str:
    return f"{DASHBOARD_KEY_PREFIX}{uuid.uuid4().hex[:12].upper()}"


def _apply_filters(query, filters: LicenseFilters):
    if filters.q:
        pattern = f"%{filters.q.strip()}%"
        query = query.filter(
            or_(
                License.dba.ilike(pattern),
                License.key.ilike(pattern),
                License.appid.ilike(pattern),
                License.zip.ilike(pattern),
            )
        )
    if filters.status:
        query = query.filter(License.status.in_([s.value for s in filters.status]))
    if filters.plan:
        query = query.filter(License.plan.ilike(f"%{filters.plan}%"))
    if filters.term:
        query = query.filter(License.term == filters.term.value)
    if filters.starts_from:
        query = query.filter(License.starts_at >= filters.starts_from)
    if filters.starts_to:
        query = query.filter(License.starts_at <= filters.starts_to)
    if filters.due_before:
        query = query.filter(License.due_date <= filters.due_before)
    return query


def list_licenses(
    db: Session,
    pagination: PaginationParams,
    filters: LicenseFilters | None = None,
) -> tuple[list[License], int]:
    """Filtered, sorted page of licenses. Never triggers a sync."""
    filters = filters or LicenseFilters()
    query = apply_sort(
        _apply_filters(db.query(License), filters),
        SORTABLE_FIELDS,
        filters.sort_by,
        filters.sort_order,
        tiebreaker=License.id,
    )
    return paginate_query(query, pagination)


def filtered_query(db: Session, filters: LicenseFilters | None = None, *entities):
    """``db.query(*entities)`` over licenses (default: the ``License`` rows) with list filters applied."""
    query = db.query(*(entities or (License,))).select_from(License)
    return _apply_filters(query, filters or LicenseFilters())


def get_license(db: Session, license_id: UUID) -> License | None:
    return db.query(License).filter(License.id == license_id).first()


def get_by_appid(db: Session, appid: str) -> License | None:
    return db.query(License).filter(License.appid == appid).first()


def _check_cancel_date(values: dict) -> None:
    if values.get("status") == LicenseStatus.CANCEL.value and not values.get("cancel_date"):
        values["cancel_date"] = datetime.now(timezone.utc).date()


def create_license(db: Session, data: LicenseCreate) -> License:
    """
    Create a license from the dashboard.

    Raises ValueError if the key or appid already exists.
    """
    values = data.model_dump()
    values["status"] = data.status.value
    values["term"] = data.term.value
    values["key"] = data.key or generate_dashboard_key()
    _check_cancel_date(values)

    license = License(**values)
    db.add(license)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("A license with this key or appid already exists") from exc
    db.refresh(license)
    cache_service.invalidate_dashboard_metrics()
    logger.info("Created license %s", license.id)
    return license


def _normalize_changes(changes: dict) -> dict:
    for name, value in list(changes.items()):
        if value is None and name in NON_NULLABLE_FIELDS:
            raise ValueError(f"{name} cannot be null")
        if isinstance(value, (LicenseStatus, LicenseTerm)):
            changes[name] = value.value
    _check_cancel_date(changes)
    return changes


def _check_seats(seats_total: int, seats_used: int) -> None:
    if seats_used > seats_total:
        raise ValueError("seats_used cannot exceed seats_total")


def update_license(db: Session, license: License, data: LicenseUpdate) -> License:
    """Apply a partial update; only fields present in the payload are written."""
    changes = _normalize_changes(data.model_dump(exclude_unset=True))
    _check_seats(
        changes.get("seats_total", license.seats_total),
        changes.get("seats_used", license.seats_used),
    )

    for name, value in changes.items():
        setattr(license, name, value)
    db.commit()
    db.refresh(license)
    cache_service.invalidate_dashboard_metrics()
    return license


def delete_license(db: Session, license: License) -> License:
    """Soft delete: the row stays, status becomes revoked."""
    license.status = LicenseStatus.REVOKED.value
    db.commit()
    db.refresh(license)
    cache_service.invalidate_dashboard_metrics()
    logger.info("Revoked license %s", license.id)
    return license


def bulk_update(db: Session, ids: list[UUID], changes: LicenseBulkChanges) -> BulkUpdateResult:
    """
    Apply the same field changes to a set of licenses in one transaction.

    Unknown ids are reported back, not treated as errors.
    """
    values = _normalize_changes(changes.model_dump(exclude_unset=True))
    wanted = list(dict.fromkeys(ids))
    licenses = db.query(License).filter(License.id.in_(wanted)).all()
    found = {license.id for license in licenses}

    result = BulkUpdateResult(
        matched=len(licenses),
        not_found=[license_id for license_id in wanted if license_id not in found],
    )
    if "seats_total" in values:
        # Validate every row before writing any of them
        over = [str(license.id) for license in licenses if license.seats_used > values["seats_total"]]
        if over:
            raise ValueError(
                f"seats_total {values['seats_total']} is below seats_used for license(s): "
                + ", ".join(over[:10])
            )

    for license in licenses:
        dirty = False
        for name, value in values.items():
            if getattr(license, name) != value:
                setattr(license, name, value)
                dirty = True
        if dirty:
            result.updated += 1

    db.commit()
    cache_service.invalidate_dashboard_metrics()
    logger.info(
        "Bulk update: %s matched, %s updated, %s not found",
        result.matched,
        result.updated,
        len(result.not_found),
    )
    return result


# =============================================================================
# SMS ledger
# =============================================================================


def record_sms_payment(db: Session, license: License, data: SmsPaymentCreate) -> SmsPayment:
    """Record a top-up and credit the license's purchased count and balance."""
    payment = SmsPayment(
        license_id=license.id,
        amount=data.amount,
        sms_count=data.sms_count,
        note=data.note,
    )
    if data.paid_at is not None:
        payment.paid_at = data.paid_at
    db.add(payment)

    license.sms_purchased = (license.sms_purchased or 0) + data.sms_count
    license.sms_balance = round(float(license.sms_balance or 0) + data.amount, 2)
    db.commit()
    db.refresh(payment)
    cache_service.invalidate_dashboard_metrics()
    return payment


def list_sms_payments(db: Session, license_id: UUID) -> list[SmsPayment]:
    return (
        db.query(SmsPayment)
        .filter(SmsPayment.license_id == license_id)
        .order_by(SmsPayment.paid_at.desc())
        .all()
    )
