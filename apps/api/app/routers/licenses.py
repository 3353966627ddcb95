"""Licenses router - internal license CRUD, bulk edits, metrics and SMS ledger."""

from datetime import date
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.db.enums import LicenseStatus, LicenseTerm
from app.schemas.license import (
    DashboardMetricsRead,
    LicenseBulkUpdateRequest,
    LicenseBulkUpdateResponse,
    LicenseCreate,
    LicenseListResponse,
    LicenseRead,
    LicenseUpdate,
    SmsPaymentCreate,
    SmsPaymentRead,
)
from app.services import dashboard_metrics_service, enrichment_service, license_service
from app.services.license_service import LicenseFilters
from app.utils.pagination import PaginationParams, get_pagination, page_count

router = APIRouter(prefix="/licenses", tags=["licenses"])


def get_license_filters(
    q: str | None = Query(None, description="Search dba, key, appid and zip"),
    status: list[LicenseStatus] | None = Query(None),
    plan: str | None = None,
    term: LicenseTerm | None = None,
    starts_from: date | None = None,
    starts_to: date | None = None,
    due_before: date | None = None,
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
) -> LicenseFilters:
    return LicenseFilters(
        q=q,
        status=status,
        plan=plan,
        term=term,
        starts_from=starts_from,
        starts_to=starts_to,
        due_before=due_before,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def _get_or_404(db: Session, license_id: UUID):
    license = license_service.get_license(db, license_id)
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    return license


@router.get("", response_model=LicenseListResponse)
def list_licenses(
    db: Session = Depends(get_db),
    pagination: PaginationParams = Depends(get_pagination),
    filters: LicenseFilters = Depends(get_license_filters),
):
    """
    List internal licenses.

    Reads the internal table only (no sync is triggered). ``sms_balance`` is
    enriched from the staging table when the internal value is zero.
    """
    try:
        licenses, total = license_service.list_licenses(db, pagination, filters)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return LicenseListResponse(
        items=enrichment_service.enrich_licenses(db, licenses),
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=page_count(total, pagination.per_page),
    )


@router.get("/dashboard/metrics", response_model=DashboardMetricsRead)
def get_dashboard_metrics(
    db: Session = Depends(get_db),
    filters: LicenseFilters = Depends(get_license_filters),
):
    """Dashboard KPIs with month-over-month trends."""
    return dashboard_metrics_service.get_dashboard_metrics(db, filters)


@router.patch("/bulk", response_model=LicenseBulkUpdateResponse)
def bulk_update_licenses(data: LicenseBulkUpdateRequest, db: Session = Depends(get_db)):
    """Apply the same changes to many licenses; unknown ids are reported back."""
    try:
        result = license_service.bulk_update(db, data.ids, data.changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return LicenseBulkUpdateResponse(
        matched=result.matched,
        updated=result.updated,
        not_found=result.not_found,
    )


@router.post("", response_model=LicenseRead, status_code=201)
def create_license(data: LicenseCreate, db: Session = Depends(get_db)):
    try:
        license = license_service.create_license(db, data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return LicenseRead.model_validate(license)


@router.get("/{license_id}", response_model=LicenseRead)
def get_license(license_id: UUID, db: Session = Depends(get_db)):
    return enrichment_service.enrich_license(db, _get_or_404(db, license_id))


@router.patch("/{license_id}", response_model=LicenseRead)
def update_license(license_id: UUID, data: LicenseUpdate, db: Session = Depends(get_db)):
    license = _get_or_404(db, license_id)
    try:
        license = license_service.update_license(db, license, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return enrichment_service.enrich_license(db, license)


@router.delete("/{license_id}", response_model=LicenseRead)
def delete_license(license_id: UUID, db: Session = Depends(get_db)):
    """Soft delete: the license is revoked, not removed."""
    license = license_service.delete_license(db, _get_or_404(db, license_id))
    return LicenseRead.model_validate(license)


# =============================================================================
# SMS ledger
# =============================================================================


@router.get("/{license_id}/sms-payments", response_model=list[SmsPaymentRead])
def list_sms_payments(license_id: UUID, db: Session = Depends(get_db)):
    _get_or_404(db, license_id)
    return license_service.list_sms_payments(db, license_id)


@router.post("/{license_id}/sms-payments", response_model=SmsPaymentRead, status_code=201)
def record_sms_payment(license_id: UUID, data: SmsPaymentCreate, db: Session = Depends(get_db)):
    """Record an SMS top-up; credits the license's purchased count and balance."""
    license = _get_or_404(db, license_id)
    return license_service.record_sms_payment(db, license, data)
