"""Pydantic schemas for internal licenses."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.db.enums import LicenseStatus, LicenseTerm

BULK_UPDATE_MAX_IDS = 500


class LicenseBase(BaseModel):
    """Fields the dashboard can set on a license."""

    dba: str | None = Field(None, max_length=255)
    zip: str | None = Field(None, max_length=10)
    product: str = Field("ABC Business Suite", min_length=1, max_length=255)
    plan: str = Field("Basic", min_length=1, max_length=255)
    status: LicenseStatus = LicenseStatus.ACTIVE
    term: LicenseTerm = LicenseTerm.MONTHLY
    seats_total: int = Field(1, ge=0)
    seats_used: int = Field(0, ge=0)
    starts_at: date | None = None
    due_date: date | None = None
    cancel_date: date | None = None
    last_active: datetime | None = None
    last_payment: float = Field(0, ge=0)
    sms_purchased: int = Field(0, ge=0)
    sms_sent: int = Field(0, ge=0)
    sms_balance: float = Field(0, ge=0)
    agents: int = Field(0, ge=0)
    agents_name: list[str] = Field(default_factory=list)
    agents_cost: float = Field(0, ge=0)
    notes: str | None = Field(None, max_length=5000)


class LicenseCreate(LicenseBase):
    """Create a license from the dashboard."""

    key: str | None = Field(None, min_length=1, max_length=255)
    appid: str | None = Field(None, min_length=1, max_length=100)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_consistency(self) -> "LicenseCreate":
        if self.seats_used > self.seats_total:
            raise ValueError("seats_used cannot exceed seats_total")
        if self.starts_at and self.due_date and self.due_date <= self.starts_at:
            raise ValueError("due_date must be after starts_at")
        return self


class LicenseUpdate(BaseModel):
    """Partial update; only provided fields are written."""

    dba: str | None = Field(None, max_length=255)
    zip: str | None = Field(None, max_length=10)
    product: str | None = Field(None, min_length=1, max_length=255)
    plan: str | None = Field(None, min_length=1, max_length=255)
    status: LicenseStatus | None = None
    term: LicenseTerm | None = None
    seats_total: int | None = Field(None, ge=0)
    seats_used: int | None = Field(None, ge=0)
    starts_at: date | None = None
    due_date: date | None = None
    cancel_date: date | None = None
    last_active: datetime | None = None
    last_payment: float | None = Field(None, ge=0)
    sms_purchased: int | None = Field(None, ge=0)
    sms_sent: int | None = Field(None, ge=0)
    sms_balance: float | None = Field(None, ge=0)
    agents: int | None = Field(None, ge=0)
    agents_name: list[str] | None = None
    agents_cost: float | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=5000)

    model_config = {"extra": "forbid"}


class LicenseBulkChanges(BaseModel):
    """Fields allowed in a bulk update."""

    status: LicenseStatus | None = None
    plan: str | None = Field(None, min_length=1, max_length=255)
    product: str | None = Field(None, min_length=1, max_length=255)
    term: LicenseTerm | None = None
    seats_total: int | None = Field(None, ge=0)
    due_date: date | None = None
    cancel_date: date | None = None
    agents: int | None = Field(None, ge=0)
    agents_cost: float | None = Field(None, ge=0)
    sms_balance: float | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=5000)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def require_change(self) -> "LicenseBulkChanges":
        if not self.model_fields_set:
            raise ValueError("At least one field must be changed")
        return self


class LicenseBulkUpdateRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1, max_length=BULK_UPDATE_MAX_IDS)
    changes: LicenseBulkChanges

    model_config = {"extra": "forbid"}


class LicenseBulkUpdateResponse(BaseModel):
    matched: int
    updated: int
    not_found: list[UUID] = []


class LicenseRead(BaseModel):
    """License response; sms_balance may come from the staging table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    key: str
    appid: str | None
    dba: str | None
    zip: str | None
    product: str
    plan: str
    status: str
    term: str
    seats_total: int
    seats_used: int
    starts_at: date | None
    due_date: date | None
    cancel_date: date | None
    last_active: datetime | None
    last_payment: float
    sms_purchased: int
    sms_sent: int
    sms_balance: float
    sms_balance_source: Literal["internal", "external"] = "internal"
    agents: int
    agents_name: list[str]
    agents_cost: float
    notes: str | None
    external_sync_status: str | None
    last_external_sync: datetime | None
    created_at: datetime
    updated_at: datetime


class LicenseListResponse(BaseModel):
    items: list[LicenseRead]
    total: int
    page: int
    per_page: int
    pages: int


# =============================================================================
# SMS payments
# =============================================================================


class SmsPaymentCreate(BaseModel):
    amount: float = Field(..., ge=0)
    sms_count: int = Field(..., gt=0)
    note: str | None = Field(None, max_length=1000)
    paid_at: datetime | None = None

    model_config = {"extra": "forbid"}


class SmsPaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    license_id: UUID
    amount: float
    sms_count: int
    note: str | None
    paid_at: datetime


# =============================================================================
# Dashboard metrics
# =============================================================================


class MetricTrend(BaseModel):
    value: float
    direction: Literal["up", "down", "neutral"]
    label: str


class TrendMetric(BaseModel):
    value: float
    trend: MetricTrend


class SmsIncomeMetric(TrendMetric):
    sms_sent: int


class MetricsPeriod(BaseModel):
    start: date
    end: date


class LicenseTotals(BaseModel):
    total: int
    by_status: dict[str, int]
    expiring_within_30_days: int
    seats_total: int
    seats_used: int
    seat_utilization_percent: float
    sms_balance_total: float
    sms_purchased_total: int
    sms_sent_total: int


class DashboardMetricsRead(BaseModel):
    total_active_licenses: TrendMetric
    new_licenses_this_month: TrendMetric
    license_income_this_month: TrendMetric
    sms_income_this_month: SmsIncomeMetric
    in_house_licenses: TrendMetric
    agent_heavy_licenses: TrendMetric
    high_risk_licenses: TrendMetric
    estimated_next_month_income: TrendMetric
    totals: LicenseTotals
    current_period: MetricsPeriod
    previous_period: MetricsPeriod
    total_licenses_analyzed: int
    generated_at: datetime
