"""SQLAlchemy ORM models."""

from app.db.models.external_licenses import ExternalLicense
from app.db.models.license_sync import SYNC_STATE_ROW_ID, LicenseSyncRun, LicenseSyncState
from app.db.models.licenses import DEFAULT_PLAN, DEFAULT_PRODUCT, License, SmsPayment

__all__ = [
    "DEFAULT_PLAN",
    "DEFAULT_PRODUCT",
    "ExternalLicense",
    "License",
    "LicenseSyncRun",
    "LicenseSyncState",
    "SYNC_STATE_ROW_ID",
    "SmsPayment",
]
