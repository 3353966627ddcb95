"""Read-time enrichment of internal licenses from the staging table.

When an internal license shows ``sms_balance == 0`` but its staging row has a
positive balance, the response carries the staging value. The stored row is
never modified. Every substitution is counted and logged: a steady stream of
fallbacks means the staging -> internal path is dropping balances.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from opentelemetry import metrics
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.models import License
from app.schemas.license import LicenseRead
from app.services import external_license_service

logger = logging.getLogger(__name__)

SOURCE_INTERNAL = "internal"
SOURCE_EXTERNAL = "external"

_meter = metrics.get_meter(__name__)
_fallback_counter = _meter.create_counter(
    "license.enrichment.sms_balance_fallback",
    unit="1",
    description="Responses where sms_balance was taken from external_licenses",
)

_lock = threading.Lock()
_fallback_count = 0


def get_fallback_count() -> int:
    """Fallbacks served since process start."""
    with _lock:
        return _fallback_count


def reset_fallback_count() -> None:
    global _fallback_count
    with _lock:
        _fallback_count = 0


def _record_fallback(appid: str, internal_value: float, external_value: float) -> None:
    global _fallback_count
    with _lock:
        _fallback_count += 1
    _fallback_counter.add(1, {"field": "sms_balance"})
    logger.warning(
        "sms_balance enrichment fallback for appid %s (internal=%s, external=%s)",
        appid,
        internal_value,
        external_value,
        extra=build_log_context(appid=appid),
    )


def enrich_licenses(db: Session, licenses: Iterable[License]) -> list[LicenseRead]:
    """Serialize licenses, substituting stale zero balances from staging."""
    items = [LicenseRead.model_validate(license) for license in licenses]
    candidates = [item.appid for item in items if item.appid and not item.sms_balance]
    if not candidates:
        return items

    staging = external_license_service.get_by_appids(db, candidates)
    for item in items:
        if item.sms_balance or not item.appid:
            continue
        row = staging.get(item.appid)
        if row is None:
            continue
        external_balance = float(row.sms_balance or 0)
        if external_balance > 0:
            _record_fallback(item.appid, item.sms_balance, external_balance)
            item.sms_balance = external_balance
            item.sms_balance_source = SOURCE_EXTERNAL
    return items


def enrich_license(db: Session, license: License) -> LicenseRead:
    return enrich_licenses(db, [license])[0]
