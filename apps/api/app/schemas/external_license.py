"""Pydantic schemas for the read-only staging view."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ExternalLicenseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appid: str
    countid: int | None
    mid: str | None
    dba: str | None
    zip: str | None
    status: int | None
    license_type: str | None
    activate_date: date | None
    coming_expired: date | None
    monthly_fee: float
    sms_balance: float
    sms_purchased: int
    sms_sent: int
    package: dict[str, bool]
    note: str | None
    email_license: str | None
    sendbat_workspace: str | None
    last_active: datetime | None
    sync_status: str
    last_synced_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ExternalLicenseListResponse(BaseModel):
    items: list[ExternalLicenseRead]
    total: int
    page: int
    per_page: int
    pages: int


class ExternalLicenseStats(BaseModel):
    total: int
    active: int
    inactive: int
    failed: int
    last_synced_at: datetime | None
