"""Tests for the field-ownership merge rules."""

from dataclasses import replace
from datetime import date, datetime, timezone
from types import SimpleNamespace

from app.db.enums import FieldOwner, LicenseStatus, ProviderStatus
from app.services import license_merge
from app.services.license_validator import ExternalLicenseRecord

TODAY = date(2025, 7, 1)


def _record(**fields) -> ExternalLicenseRecord:
    values = {
        "appid": "A1",
        "dba": "Store A1",
        "zip": "94016",
        "status": ProviderStatus.ACTIVE,
        "activate_date": date(2025, 1, 15),
        "coming_expired": date(2026, 1, 15),
        "monthly_fee": 49.99,
        "sms_balance": 8.9,
        "sms_purchased": 1000,
        "sms_sent": 120,
        "package": {"basic": True},
        "note": "seeded note",
    }
    values.update(fields)
    return ExternalLicenseRecord(**values)


def _current(**fields):
    values = {name: None for name in license_merge.FIELD_OWNERSHIP}
    values.update(fields)
    return SimpleNamespace(**values)


def test_every_field_has_one_owner():
    assert set(license_merge.EXTERNAL_FIELDS).isdisjoint(license_merge.SEEDED_FIELDS)
    assert license_merge.FIELD_OWNERSHIP["sms_balance"] is FieldOwner.EXTERNAL
    assert license_merge.FIELD_OWNERSHIP["notes"] is FieldOwner.SEEDED
    assert license_merge.FIELD_OWNERSHIP["agents"] is FieldOwner.DASHBOARD


def test_plan_label():
    assert license_merge.plan_label({}) is None
    assert license_merge.plan_label({"basic": True, "print_check": True}) == "Basic, Print Check"
    assert license_merge.plan_label({"sms_package_6000": True}) == "SMS Package 6000"
    assert license_merge.plan_label({"unknown_flag": True}) == "Basic"


def test_new_license_values_seed_notes_and_defaults():
    values = license_merge.new_license_values(_record(), today=TODAY)

    assert values["key"] == "EXT-A1"
    assert values["appid"] == "A1"
    assert values["notes"] == "seeded note"
    assert values["status"] == LicenseStatus.ACTIVE.value
    assert values["sms_balance"] == 8.9
    assert values["last_payment"] == 49.99
    assert values["starts_at"] == date(2025, 1, 15)
    assert values["due_date"] == date(2026, 1, 15)
    assert values["plan"] == "Basic"
    assert values["seats_total"] == 1
    assert values["agents_name"] == []
    assert values["cancel_date"] is None


def test_new_license_without_dba_falls_back():
    values = license_merge.new_license_values(
        _record(dba=None, email_license="owner@example.com", activate_date=None), today=TODAY
    )
    assert values["dba"] == "owner@example.com"
    assert values["starts_at"] == TODAY

    values = license_merge.new_license_values(_record(dba=None), today=TODAY)
    assert values["dba"] == license_merge.DEFAULT_EXTERNAL_DBA


def test_plan_changes_is_empty_when_nothing_differs():
    record = _record()
    current = _current(**license_merge.external_values(record, today=TODAY))

    assert license_merge.plan_changes(current, record, today=TODAY) == {}


def test_plan_changes_only_returns_differences():
    record = _record()
    current = _current(**license_merge.external_values(record, today=TODAY))
    current.sms_balance = 0.0
    current.notes = "edited on the dashboard"
    current.agents = 5

    changes = license_merge.plan_changes(current, record, today=TODAY)

    assert changes == {"sms_balance": 8.9}


def test_money_comparison_ignores_float_noise():
    record = _record(sms_balance=8.9)
    current = _current(**license_merge.external_values(record, today=TODAY))
    current.sms_balance = 8.900000001

    assert "sms_balance" not in license_merge.plan_changes(current, record, today=TODAY)


def test_empty_provider_values_do_not_blank_existing_data():
    record = _record(dba=None, zip=None, package={})
    current = _current(dba="Kept Name", zip="10001", plan="Print Check")

    changes = license_merge.plan_changes(current, record, today=TODAY)

    assert "dba" not in changes
    assert "zip" not in changes
    assert "plan" not in changes


def test_cancel_date_rules():
    last_active = datetime(2025, 6, 20, 8, 0, tzinfo=timezone.utc)
    inactive = _record(status=ProviderStatus.INACTIVE, last_active=last_active)

    changes = license_merge.plan_changes(_current(status="active"), inactive, today=TODAY)
    assert changes["status"] == LicenseStatus.CANCEL.value
    assert changes["cancel_date"] == date(2025, 6, 20)

    no_activity = replace(inactive, last_active=None)
    changes = license_merge.plan_changes(_current(status="active"), no_activity, today=TODAY)
    assert changes["cancel_date"] == TODAY

    already = _current(status="cancel", cancel_date=date(2025, 3, 1))
    changes = license_merge.plan_changes(already, inactive, today=TODAY)
    assert "cancel_date" not in changes

    reactivated = license_merge.plan_changes(already, _record(), today=TODAY)
    assert reactivated["status"] == LicenseStatus.ACTIVE.value
    assert reactivated["cancel_date"] is None


def test_revoked_license_keeps_its_status():
    current = _current(status=LicenseStatus.REVOKED.value, sms_balance=0.0)

    changes = license_merge.plan_changes(current, _record(), today=TODAY)

    assert "status" not in changes
    assert "cancel_date" not in changes
    assert changes["sms_balance"] == 8.9


def test_unknown_provider_status_leaves_status_alone():
    changes = license_merge.plan_changes(_current(status="active"), _record(status=None), today=TODAY)

    assert "status" not in changes
    assert "cancel_date" not in changes
