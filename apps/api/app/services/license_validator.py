"""Validation and normalization of raw provider license records.

Raw provider payloads are loosely typed mappings with inconsistent key
casing. ``normalize_license`` turns one into a frozen
``ExternalLicenseRecord``; nothing downstream of this module sees the raw
mapping. ``validate_batch`` never raises: bad records become
``RejectedRecord`` entries and the rest of the page carries on.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import ProviderStatus
from app.services.license_sync_errors import RecordRejected
from app.types import JsonObject, RawProviderRecord

logger = logging.getLogger(__name__)

ZIP_MAX_LENGTH = 10
IDENTIFIER_MAX_LENGTH = 100

# canonical name -> accepted provider spellings, in lookup order
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "appid": ("appid", "appId", "AppId", "APPID"),
    "countid": ("countid", "countId", "CountId"),
    "mid": ("mid", "MID", "Mid"),
    "dba": ("dba", "DBA", "Dba"),
    "zip": ("zip", "Zip", "ZIP"),
    "status": ("status", "Status"),
    "license_type": ("license_type", "licenseType", "License_type"),
    "activate_date": ("ActivateDate", "activateDate", "activate_date"),
    "coming_expired": ("Coming_expired", "coming_expired", "comingExpired"),
    "monthly_fee": ("monthlyFee", "monthly_fee", "MonthlyFee"),
    "sms_balance": ("smsBalance", "sms_balance", "SmsBalance"),
    "sms_purchased": ("smsPurchased", "sms_purchased", "SmsPurchased"),
    "sms_sent": ("smsSent", "sms_sent", "SmsSent"),
    "package": ("Package", "package"),
    "note": ("Note", "note"),
    "email_license": ("Email_license", "emailLicense", "email_license"),
    "sendbat_workspace": ("Sendbat_workspace", "sendbatWorkspace", "sendbat_workspace"),
    "last_active": ("lastActive", "last_active", "LastActive"),
}

_ACTIVE_TOKENS = {"1", "active", "true"}
_INACTIVE_TOKENS = {"0", "inactive", "false", "cancel", "canceled", "cancelled"}

_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d", "%m-%d-%Y")


@dataclass(frozen=True)
class ExternalLicenseRecord:
    """Canonical, typed provider license."""

    appid: str
    countid: int | None = None
    mid: str | None = None
    dba: str | None = None
    zip: str | None = None
    status: ProviderStatus | None = None
    license_type: str | None = None
    activate_date: date | None = None
    coming_expired: date | None = None
    monthly_fee: float = 0.0
    sms_balance: float = 0.0
    sms_purchased: int = 0
    sms_sent: int = 0
    package: dict[str, bool] = field(default_factory=dict)
    note: str | None = None
    email_license: str | None = None
    sendbat_workspace: str | None = None
    last_active: datetime | None = None

    def to_row(self) -> JsonObject:
        """Column values for the external_licenses table."""
        return {
            "appid": self.appid,
            "countid": self.countid,
            "mid": self.mid,
            "dba": self.dba,
            "zip": self.zip,
            "status": int(self.status) if self.status is not None else None,
            "license_type": self.license_type,
            "activate_date": self.activate_date,
            "coming_expired": self.coming_expired,
            "monthly_fee": self.monthly_fee,
            "sms_balance": self.sms_balance,
            "sms_purchased": self.sms_purchased,
            "sms_sent": self.sms_sent,
            "package": dict(self.package),
            "note": self.note,
            "email_license": self.email_license,
            "sendbat_workspace": self.sendbat_workspace,
            "last_active": self.last_active,
        }


@dataclass
class RejectedRecord:
    """A raw record that failed validation, with the reason."""

    index: int
    reason: str
    record: Any = None

    @property
    def appid(self) -> str | None:
        if isinstance(self.record, Mapping):
            value = _pick(self.record, "appid")
            if value not in (None, ""):
                return str(value)
        return None

    def as_dict(self) -> JsonObject:
        return {"index": self.index, "appid": self.appid, "reason": self.reason}


@dataclass
class ValidationBatch:
    valid: list[ExternalLicenseRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)


# =============================================================================
# Field coercion
# =============================================================================


def _pick(raw: Mapping, name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if alias in raw:
            return raw[alias]
    return None


def _clean_str(value: Any, max_length: int) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        value = str(value).lower()
    text = str(value).strip()
    if not text:
        return None
    return text[:max_length]


def _to_number(value: Any, name: str, appid: str) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError, OverflowError):
        logger.debug("Unparseable %s %r for %s, defaulting to 0", name, value, appid)
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    if number < 0:
        logger.warning(
            "Negative %s for appid %s clamped to 0",
            name,
            appid,
            extra=build_log_context(appid=appid),
        )
        return 0.0
    return number


def _to_money(value: Any, name: str, appid: str) -> float:
    return round(_to_number(value, name, appid), 2)


def _to_count(value: Any, name: str, appid: str) -> int:
    return int(_to_number(value, name, appid))


def _to_optional_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def normalize_status(value: Any) -> ProviderStatus | None:
    """Map provider status codes to ``ProviderStatus``; unknown codes map to None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return ProviderStatus.ACTIVE if value else ProviderStatus.INACTIVE
    if isinstance(value, (int, float)):
        if value == 1:
            return ProviderStatus.ACTIVE
        if value == 0:
            return ProviderStatus.INACTIVE
        return None
    token = str(value).strip().lower()
    if token in _ACTIVE_TOKENS:
        return ProviderStatus.ACTIVE
    if token in _INACTIVE_TOKENS:
        return ProviderStatus.INACTIVE
    return None


def parse_date(value: Any) -> date | None:
    """Parse MM/DD/YYYY, ISO dates and ISO datetimes; anything else is None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    parsed = parse_datetime(text)
    return parsed.date() if parsed else None


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO datetime (``Z`` suffix allowed) or a date; result is UTC-aware."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            only_date = None
            for fmt in _DATE_FORMATS:
                try:
                    only_date = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if only_date is None:
                return None
            parsed = only_date
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # e.g. 0001-01-01 with a positive offset falls before datetime.min in UTC
        return None


def normalize_package(value: Any) -> dict[str, bool]:
    """Package entitlements as ``{flag: bool}`` from a dict, list or JSON string."""
    if value is None:
        return {}
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return {}
        try:
            value = json.loads(text)
        except ValueError:
            value = [part for part in text.split(",") if part.strip()]
    if isinstance(value, Mapping):
        return {str(k).strip().lower(): bool(v) for k, v in value.items() if str(k).strip()}
    if isinstance(value, (list, tuple)):
        return {str(item).strip().lower(): True for item in value if str(item).strip()}
    return {}


# =============================================================================
# Public API
# =============================================================================


def normalize_license(raw: RawProviderRecord, *, max_field_length: int | None = None) -> ExternalLicenseRecord:
    """Normalize one raw provider record or raise ``RecordRejected``."""
    if not isinstance(raw, Mapping):
        raise RecordRejected("record is not an object")

    limit = max_field_length or settings.LICENSE_SYNC_MAX_FIELD_LENGTH
    appid = _clean_str(_pick(raw, "appid"), IDENTIFIER_MAX_LENGTH)
    if not appid:
        raise RecordRejected("missing appid")

    raw_status = _pick(raw, "status")
    status = normalize_status(raw_status)
    if status is None and raw_status not in (None, ""):
        logger.warning(
            "Unknown provider status %r for appid %s",
            raw_status,
            appid,
            extra=build_log_context(appid=appid),
        )

    activate_date = parse_date(_pick(raw, "activate_date"))
    coming_expired = parse_date(_pick(raw, "coming_expired"))
    if activate_date and coming_expired and coming_expired <= activate_date:
        raise RecordRejected("expiration date must be after activation date")

    return ExternalLicenseRecord(
        appid=appid,
        countid=_to_optional_int(_pick(raw, "countid")),
        mid=_clean_str(_pick(raw, "mid"), IDENTIFIER_MAX_LENGTH),
        dba=_clean_str(_pick(raw, "dba"), min(limit, 255)),
        zip=_clean_str(_pick(raw, "zip"), ZIP_MAX_LENGTH),
        status=status,
        license_type=_clean_str(_pick(raw, "license_type"), 50),
        activate_date=activate_date,
        coming_expired=coming_expired,
        monthly_fee=_to_money(_pick(raw, "monthly_fee"), "monthly_fee", appid),
        sms_balance=_to_money(_pick(raw, "sms_balance"), "sms_balance", appid),
        sms_purchased=_to_count(_pick(raw, "sms_purchased"), "sms_purchased", appid),
        sms_sent=_to_count(_pick(raw, "sms_sent"), "sms_sent", appid),
        package=normalize_package(_pick(raw, "package")),
        note=_clean_str(_pick(raw, "note"), limit),
        email_license=_clean_str(_pick(raw, "email_license"), 255),
        sendbat_workspace=_clean_str(_pick(raw, "sendbat_workspace"), 255),
        last_active=parse_datetime(_pick(raw, "last_active")),
    )


def validate_batch(
    raws: Iterable[RawProviderRecord],
    *,
    start_index: int = 0,
    correlation_id: str | None = None,
) -> ValidationBatch:
    """Split raw records into normalized records and rejections."""
    batch = ValidationBatch()
    for offset, raw in enumerate(raws):
        index = start_index + offset
        try:
            batch.valid.append(normalize_license(raw))
            continue
        except RecordRejected as exc:
            reason = exc.reason
        except Exception as exc:
            # Any coercion failure rejects this record only
            logger.debug("Normalizer failed on record #%s", index, exc_info=True)
            reason = f"unprocessable record: {exc.__class__.__name__}"

        rejected = RejectedRecord(index=index, reason=reason, record=raw)
        batch.rejected.append(rejected)
        logger.warning(
            "Rejected provider record #%s: %s",
            index,
            reason,
            extra=build_log_context(correlation_id=correlation_id, appid=rejected.appid),
        )
    return batch
