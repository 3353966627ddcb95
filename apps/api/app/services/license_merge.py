"""Pure merge rules between a staging record and an internal license.

Every internal attribute has exactly one owner in ``FIELD_OWNERSHIP``:

- EXTERNAL attributes are recomputed from the provider record on every sync.
- SEEDED attributes are copied from the provider when the license is
  created and belong to the dashboard afterwards.
- DASHBOARD attributes are never written by sync; new licenses get defaults.

Nothing here touches the database. ``plan_changes`` returns only the
externally-owned values that differ from the current row, which is what
makes reconciliation idempotent.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from app.db.enums import FieldOwner, LicenseStatus, LicenseTerm, ProviderStatus
from app.db.models import DEFAULT_PLAN, DEFAULT_PRODUCT
from app.services.license_validator import ExternalLicenseRecord

EXTERNAL_KEY_PREFIX = "EXT-"
DEFAULT_EXTERNAL_DBA = "External License"

FIELD_OWNERSHIP: dict[str, FieldOwner] = {
    # provider-owned
    "dba": FieldOwner.EXTERNAL,
    "zip": FieldOwner.EXTERNAL,
    "status": FieldOwner.EXTERNAL,
    "cancel_date": FieldOwner.EXTERNAL,
    "starts_at": FieldOwner.EXTERNAL,
    "due_date": FieldOwner.EXTERNAL,
    "last_payment": FieldOwner.EXTERNAL,
    "last_active": FieldOwner.EXTERNAL,
    "sms_balance": FieldOwner.EXTERNAL,
    "sms_purchased": FieldOwner.EXTERNAL,
    "sms_sent": FieldOwner.EXTERNAL,
    "plan": FieldOwner.EXTERNAL,
    # seeded once
    "notes": FieldOwner.SEEDED,
    # dashboard-owned
    "key": FieldOwner.DASHBOARD,
    "product": FieldOwner.DASHBOARD,
    "term": FieldOwner.DASHBOARD,
    "seats_total": FieldOwner.DASHBOARD,
    "seats_used": FieldOwner.DASHBOARD,
    "agents": FieldOwner.DASHBOARD,
    "agents_name": FieldOwner.DASHBOARD,
    "agents_cost": FieldOwner.DASHBOARD,
}

EXTERNAL_FIELDS = tuple(k for k, v in FIELD_OWNERSHIP.items() if v is FieldOwner.EXTERNAL)
SEEDED_FIELDS = tuple(k for k, v in FIELD_OWNERSHIP.items() if v is FieldOwner.SEEDED)

# Package flag -> plan label, in display order
PLAN_LABELS: tuple[tuple[str, str], ...] = (
    ("basic", "Basic"),
    ("print_check", "Print Check"),
    ("staff_performance", "Staff Performance"),
    ("sms_package_6000", "SMS Package 6000"),
)

MONEY_FIELDS = frozenset({"last_payment", "sms_balance"})

DASHBOARD_DEFAULTS: dict[str, Any] = {
    "product": DEFAULT_PRODUCT,
    "term": LicenseTerm.MONTHLY.value,
    "seats_total": 1,
    "seats_used": 0,
    "agents": 0,
    "agents_name": [],
    "agents_cost": 0.0,
}


def plan_label(package: dict[str, bool]) -> str | None:
    """Human-readable plan from package flags, or None when no flags are known."""
    if not package:
        return None
    labels = [label for flag, label in PLAN_LABELS if package.get(flag)]
    return ", ".join(labels) if labels else DEFAULT_PLAN


def map_status(status: ProviderStatus | None) -> LicenseStatus | None:
    if status is ProviderStatus.ACTIVE:
        return LicenseStatus.ACTIVE
    if status is ProviderStatus.INACTIVE:
        return LicenseStatus.CANCEL
    return None


def generate_license_key(appid: str) -> str:
    return f"{EXTERNAL_KEY_PREFIX}{appid}"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def external_values(
    record: ExternalLicenseRecord,
    *,
    current_cancel_date: date | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """
    Externally-owned internal values derived from a provider record.

    Attributes the provider left empty are omitted so they never blank out
    existing data. ``cancel_date`` keeps an existing value, otherwise falls
    back to the last activity date, then today.
    """
    values: dict[str, Any] = {
        "last_payment": record.monthly_fee,
        "sms_balance": record.sms_balance,
        "sms_purchased": record.sms_purchased,
        "sms_sent": record.sms_sent,
    }
    optional = {
        "dba": record.dba,
        "zip": record.zip,
        "starts_at": record.activate_date,
        "due_date": record.coming_expired,
        "last_active": record.last_active,
        "plan": plan_label(record.package),
    }
    values.update({k: v for k, v in optional.items() if v is not None})

    status = map_status(record.status)
    if status is not None:
        values["status"] = status.value
        if status is LicenseStatus.CANCEL:
            if current_cancel_date is not None:
                values["cancel_date"] = current_cancel_date
            elif record.last_active is not None:
                values["cancel_date"] = record.last_active.date()
            else:
                values["cancel_date"] = today or _today()
        else:
            values["cancel_date"] = None
    return values


def _same(field: str, old: Any, new: Any) -> bool:
    if field in MONEY_FIELDS:
        return round(float(old or 0), 2) == round(float(new or 0), 2)
    return old == new


def plan_changes(current: Any, record: ExternalLicenseRecord, *, today: date | None = None) -> dict[str, Any]:
    """
    Externally-owned values that differ from ``current`` (an internal license).

    A revoked license keeps its status; the dashboard revoked it on purpose.
    """
    values = external_values(
        record,
        current_cancel_date=getattr(current, "cancel_date", None),
        today=today,
    )
    if getattr(current, "status", None) == LicenseStatus.REVOKED.value:
        values.pop("status", None)
        values.pop("cancel_date", None)

    return {
        field: value
        for field, value in values.items()
        if not _same(field, getattr(current, field, None), value)
    }


def new_license_values(record: ExternalLicenseRecord, *, today: date | None = None) -> dict[str, Any]:
    """Full create payload for a provider record with no internal match."""
    today = today or _today()
    values: dict[str, Any] = dict(DASHBOARD_DEFAULTS)
    values["agents_name"] = []
    values.update(
        {
            "key": generate_license_key(record.appid),
            "appid": record.appid,
            "plan": DEFAULT_PLAN,
            "dba": record.dba or record.email_license or DEFAULT_EXTERNAL_DBA,
            "starts_at": record.activate_date or today,
            "status": LicenseStatus.ACTIVE.value,
            "notes": record.note,
        }
    )
    values.update(external_values(record, today=today))
    return values
