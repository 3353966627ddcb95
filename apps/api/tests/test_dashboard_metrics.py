"""Tests for dashboard aggregates computed in the database."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.db.enums import LicenseStatus
from app.db.models import ExternalLicense, License
from app.services.dashboard_metrics_service import compute_dashboard_metrics
from app.services.license_service import LicenseFilters

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seeded(db):
    db.add_all(
        [
            License(
                key="EXT-A1",
                appid="A1",
                sms_balance=0,
                starts_at=date(2026, 3, 2),
                due_date=date(2026, 3, 30),
                last_payment=100,
                sms_sent=40,
                agents=5,
                seats_total=4,
                seats_used=1,
                last_active=NOW - timedelta(days=30),
            ),
            License(
                key="EXT-A2",
                appid="A2",
                sms_balance=2,
                starts_at=date(2026, 2, 10),
                last_payment=60,
                sms_sent=10,
                seats_total=2,
                seats_used=2,
                last_active=NOW - timedelta(days=1),
            ),
            License(
                key="LIC-MANUAL",
                status=LicenseStatus.CANCEL.value,
                starts_at=date(2026, 3, 5),
                due_date=date(2026, 3, 20),
                last_payment=40,
                seats_total=2,
            ),
            ExternalLicense(appid="A1", sms_balance=8.5),
            ExternalLicense(appid="A2", sms_balance=7),
        ]
    )
    db.commit()
    return db


def test_totals_are_aggregated_per_status_with_enriched_balance(seeded):
    metrics = compute_dashboard_metrics(seeded, now=NOW)
    totals = metrics["totals"]

    assert totals["total"] == 3
    assert totals["by_status"]["active"] == 2
    assert totals["by_status"]["cancel"] == 1
    assert totals["by_status"]["draft"] == 0
    assert totals["expiring_within_30_days"] == 1
    assert (totals["seats_total"], totals["seats_used"]) == (8, 3)
    assert totals["seat_utilization_percent"] == pytest.approx(37.5)
    # A1 falls back to its staging balance; A2 keeps its own
    assert totals["sms_balance_total"] == pytest.approx(10.5)
    assert totals["sms_sent_total"] == 50


def test_period_metrics_compare_against_previous_month(seeded):
    metrics = compute_dashboard_metrics(seeded, now=NOW)

    assert metrics["new_licenses_this_month"]["value"] == 2
    assert metrics["total_active_licenses"]["value"] == 1
    assert metrics["total_active_licenses"]["trend"]["direction"] == "neutral"
    assert metrics["license_income_this_month"]["value"] == pytest.approx(140)
    assert metrics["license_income_this_month"]["trend"]["value"] == pytest.approx(133.33)
    assert metrics["sms_income_this_month"]["sms_sent"] == 40
    assert metrics["agent_heavy_licenses"]["value"] == 1
    assert metrics["in_house_licenses"]["value"] == 1
    assert metrics["high_risk_licenses"]["value"] == 1
    assert metrics["total_licenses_analyzed"] == 3
    assert metrics["current_period"] == {"start": date(2026, 3, 1), "end": date(2026, 3, 31)}


def test_filters_narrow_every_aggregate(seeded):
    metrics = compute_dashboard_metrics(
        seeded, LicenseFilters(status=[LicenseStatus.CANCEL]), now=NOW
    )

    assert metrics["totals"]["total"] == 1
    assert metrics["totals"]["by_status"]["active"] == 0
    assert metrics["totals"]["sms_balance_total"] == 0
    assert metrics["new_licenses_this_month"]["value"] == 1
    assert metrics["high_risk_licenses"]["value"] == 0


def test_date_range_limits_the_analyzed_set(seeded):
    metrics = compute_dashboard_metrics(
        seeded,
        LicenseFilters(starts_from=date(2026, 3, 1), starts_to=date(2026, 3, 31)),
        now=NOW,
    )

    assert metrics["total_licenses_analyzed"] == 2
    assert metrics["previous_period"] == {"start": date(2026, 2, 1), "end": date(2026, 2, 28)}
    assert metrics["high_risk_licenses"]["value"] == 1
