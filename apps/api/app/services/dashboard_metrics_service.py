"""Dashboard metrics over internal licenses.

"This month" is the set of licenses whose ``starts_at`` falls in the current
calendar month (or the requested range); trends compare against the month
before it. Trend percentages are capped at 999.
"""

from __future__ import annotations

import calendar
import hashlib
import json
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import LicenseStatus
from app.db.models import ExternalLicense, License
from app.schemas.license import DashboardMetricsRead
from app.services import cache_service, license_service
from app.services.license_service import LicenseFilters
from app.types import JsonObject

logger = logging.getLogger(__name__)

MAX_TREND_PERCENT = 999.0
SMS_REVENUE_PER_MESSAGE = 0.05
AGENT_HEAVY_THRESHOLD = 3
HIGH_RISK_INACTIVE_DAYS = 7
EXPIRING_WINDOW_DAYS = 30
PROJECTED_GROWTH = 0.1


def month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def previous_month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    return month_bounds(first - timedelta(days=1))


def percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0 if current == 0 else 100.0
    raw = (current - previous) / previous * 100
    return max(-MAX_TREND_PERCENT, min(MAX_TREND_PERCENT, raw))


def trend(current: float, previous: float, label: str = "vs last month") -> JsonObject:
    if current == previous:
        direction = "neutral"
    elif current > previous:
        direction = "up"
    else:
        direction = "down"
    return {
        "value": round(abs(percentage_change(current, previous)), 2),
        "direction": direction,
        "label": label,
    }


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _effective_sms_balance():
    """Per-row balance as the list endpoint shows it (staging fills a zero internal value)."""
    internal = func.coalesce(License.sms_balance, 0)
    external = func.coalesce(ExternalLicense.sms_balance, 0)
    return case((and_(internal == 0, external > 0), external), else_=internal)


def _period_stats(db: Session, filters: LicenseFilters, start: date, end: date) -> JsonObject:
    count, active, income, sms_sent, heavy = (
        license_service.filtered_query(
            db,
            filters,
            func.count(License.id),
            _count_where(License.status == LicenseStatus.ACTIVE.value),
            func.coalesce(func.sum(License.last_payment), 0),
            func.coalesce(func.sum(License.sms_sent), 0),
            _count_where(License.agents > AGENT_HEAVY_THRESHOLD),
        )
        .filter(License.starts_at.between(start, end))
        .one()
    )
    return {
        "count": int(count),
        "active": int(active),
        "income": round(float(income), 2),
        "sms_sent": int(sms_sent),
        "heavy": int(heavy),
    }


def _totals(db: Session, filters: LicenseFilters, today: date) -> JsonObject:
    by_status = {status.value: 0 for status in LicenseStatus}
    rows = (
        license_service.filtered_query(db, filters, License.status, func.count(License.id))
        .group_by(License.status)
        .all()
    )
    for status, count in rows:
        by_status[status] = count

    expiring_cutoff = today + timedelta(days=EXPIRING_WINDOW_DAYS)
    total, expiring, seats_total, seats_used, sms_purchased, sms_sent = license_service.filtered_query(
        db,
        filters,
        func.count(License.id),
        _count_where(
            and_(
                License.status == LicenseStatus.ACTIVE.value,
                License.due_date.between(today, expiring_cutoff),
            )
        ),
        func.coalesce(func.sum(License.seats_total), 0),
        func.coalesce(func.sum(License.seats_used), 0),
        func.coalesce(func.sum(License.sms_purchased), 0),
        func.coalesce(func.sum(License.sms_sent), 0),
    ).one()

    sms_balance = (
        license_service.filtered_query(db, filters, func.coalesce(func.sum(_effective_sms_balance()), 0))
        .outerjoin(ExternalLicense, ExternalLicense.appid == License.appid)
        .scalar()
    )

    return {
        "total": int(total),
        "by_status": by_status,
        "expiring_within_30_days": int(expiring),
        "seats_total": int(seats_total),
        "seats_used": int(seats_used),
        "seat_utilization_percent": round(seats_used / seats_total * 100, 2) if seats_total else 0.0,
        "sms_balance_total": round(float(sms_balance), 2),
        "sms_purchased_total": int(sms_purchased),
        "sms_sent_total": int(sms_sent),
    }


def compute_dashboard_metrics(
    db: Session,
    filters: LicenseFilters | None = None,
    *,
    now: datetime | None = None,
) -> JsonObject:
    """All aggregates run in the database; no license rows are loaded."""
    now = now or datetime.now(timezone.utc)
    today = now.date()
    filters = filters or LicenseFilters()
    period_filtered = bool(filters.starts_from or filters.starts_to)

    if filters.starts_from and filters.starts_to:
        current_start, current_end = filters.starts_from, filters.starts_to
        previous_start, previous_end = previous_month_bounds(current_start)
    else:
        current_start, current_end = month_bounds(today)
        previous_start, previous_end = previous_month_bounds(today)

    base_filters = LicenseFilters(
        q=filters.q,
        status=filters.status,
        plan=filters.plan,
        term=filters.term,
        due_before=filters.due_before,
    )
    current = _period_stats(db, base_filters, current_start, current_end)
    previous = _period_stats(db, base_filters, previous_start, previous_end)
    totals = _totals(db, base_filters, today)

    in_house_now = current["count"] - current["heavy"]
    in_house_before = previous["count"] - previous["heavy"]

    analyzed_query = license_service.filtered_query(db, base_filters, func.count(License.id))
    if period_filtered:
        analyzed_query = analyzed_query.filter(License.starts_at.between(current_start, current_end))
    risk_cutoff = now - timedelta(days=HIGH_RISK_INACTIVE_DAYS)
    high_risk = analyzed_query.filter(
        License.last_active.isnot(None), License.last_active < risk_cutoff
    ).scalar()
    analyzed = current["count"] if period_filtered else totals["total"]

    income_now = current["income"]
    average_payment = income_now / current["count"] if current["count"] else 0.0
    projected = income_now + average_payment * current["count"] * PROJECTED_GROWTH

    return {
        "total_active_licenses": {
            "value": current["active"],
            "trend": trend(current["active"], previous["active"]),
        },
        "new_licenses_this_month": {
            "value": current["count"],
            "trend": trend(current["count"], previous["count"]),
        },
        "license_income_this_month": {
            "value": income_now,
            "trend": trend(income_now, previous["income"]),
        },
        "sms_income_this_month": {
            "value": round(current["sms_sent"] * SMS_REVENUE_PER_MESSAGE, 2),
            "sms_sent": current["sms_sent"],
            "trend": trend(current["sms_sent"], previous["sms_sent"], "usage vs last month"),
        },
        "in_house_licenses": {
            "value": in_house_now,
            "trend": trend(in_house_now, in_house_before),
        },
        "agent_heavy_licenses": {
            "value": current["heavy"],
            "trend": trend(current["heavy"], previous["heavy"]),
        },
        "high_risk_licenses": {
            "value": int(high_risk),
            "trend": {"value": 0, "direction": "neutral", "label": "auto-updated daily"},
        },
        "estimated_next_month_income": {
            "value": round(projected, 2),
            "trend": {"value": round(PROJECTED_GROWTH * 100, 2), "direction": "up", "label": "projected"},
        },
        "totals": totals,
        "current_period": {"start": current_start, "end": current_end},
        "previous_period": {"start": previous_start, "end": previous_end},
        "total_licenses_analyzed": analyzed,
        "generated_at": now,
    }


def _cache_key(filters: LicenseFilters) -> str:
    raw = json.dumps(
        {
            "q": filters.q,
            "status": sorted(s.value for s in filters.status) if filters.status else None,
            "plan": filters.plan,
            "term": filters.term.value if filters.term else None,
            "starts_from": filters.starts_from,
            "starts_to": filters.starts_to,
            "due_before": filters.due_before,
        },
        default=str,
        sort_keys=True,
    )
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]
    return f"{cache_service.DASHBOARD_METRICS_PREFIX}{digest}"


def get_dashboard_metrics(db: Session, filters: LicenseFilters | None = None) -> DashboardMetricsRead:
    """Cached dashboard metrics; invalidated by syncs and dashboard writes."""
    filters = filters or LicenseFilters()
    key = _cache_key(filters)
    cached = cache_service.get(key)
    if cached is not None:
        return DashboardMetricsRead.model_validate(cached)

    metrics = DashboardMetricsRead.model_validate(compute_dashboard_metrics(db, filters))
    cache_service.set(key, metrics.model_dump(mode="json"), ttl=settings.DASHBOARD_CACHE_TTL_SECONDS)
    return metrics
