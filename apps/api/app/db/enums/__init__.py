"""Enum definitions for application constants."""

from app.db.enums.license_sync import SyncOutcome, SyncState, SyncTrigger
from app.db.enums.licenses import (
    ExternalSyncStatus,
    FieldOwner,
    LicenseStatus,
    LicenseTerm,
    ProviderStatus,
)

DEFAULT_LICENSE_STATUS = LicenseStatus.ACTIVE
DEFAULT_LICENSE_TERM = LicenseTerm.MONTHLY

__all__ = [
    "DEFAULT_LICENSE_STATUS",
    "DEFAULT_LICENSE_TERM",
    "ExternalSyncStatus",
    "FieldOwner",
    "LicenseStatus",
    "LicenseTerm",
    "ProviderStatus",
    "SyncOutcome",
    "SyncState",
    "SyncTrigger",
]
