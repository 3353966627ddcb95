"""External licenses router - read-only view of the provider staging table."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.db.enums import ProviderStatus
from app.schemas.external_license import (
    ExternalLicenseListResponse,
    ExternalLicenseRead,
    ExternalLicenseStats,
)
from app.services import external_license_service
from app.utils.pagination import PaginationParams, get_pagination, page_count

router = APIRouter(prefix="/external-licenses", tags=["external-licenses"])


@router.get("", response_model=ExternalLicenseListResponse)
def list_external_licenses(
    db: Session = Depends(get_db),
    pagination: PaginationParams = Depends(get_pagination),
    q: str | None = Query(None, description="Search appid, dba and zip"),
    status: ProviderStatus | None = Query(None, description="1 = active, 0 = inactive"),
    sort_by: str = "appid",
    sort_order: Literal["asc", "desc"] = "asc",
):
    try:
        rows, total = external_license_service.list_external_licenses(
            db, pagination, q=q, status=status, sort_by=sort_by, sort_order=sort_order
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ExternalLicenseListResponse(
        items=[ExternalLicenseRead.model_validate(row) for row in rows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=page_count(total, pagination.per_page),
    )


@router.get("/stats", response_model=ExternalLicenseStats)
def get_external_license_stats(db: Session = Depends(get_db)):
    return external_license_service.get_stats(db)


@router.get("/{appid}", response_model=ExternalLicenseRead)
def get_external_license(appid: str, db: Session = Depends(get_db)):
    row = external_license_service.get_by_appid(db, appid)
    if not row:
        raise HTTPException(status_code=404, detail="External license not found")
    return row
