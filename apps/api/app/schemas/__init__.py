"""Pydantic schemas for API request/response models."""

from app.schemas.external_license import (
    ExternalLicenseListResponse,
    ExternalLicenseRead,
    ExternalLicenseStats,
)
from app.schemas.license import (
    DashboardMetricsRead,
    LicenseBulkUpdateRequest,
    LicenseBulkUpdateResponse,
    LicenseCreate,
    LicenseListResponse,
    LicenseRead,
    LicenseUpdate,
    SmsPaymentCreate,
    SmsPaymentRead,
)
from app.schemas.license_sync import (
    ProviderHealthRead,
    SyncResetResponse,
    SyncRunRead,
    SyncStatusRead,
    SyncTriggerResponse,
)

__all__ = [
    # Staging
    "ExternalLicenseListResponse",
    "ExternalLicenseRead",
    "ExternalLicenseStats",
    # Licenses
    "DashboardMetricsRead",
    "LicenseBulkUpdateRequest",
    "LicenseBulkUpdateResponse",
    "LicenseCreate",
    "LicenseListResponse",
    "LicenseRead",
    "LicenseUpdate",
    "SmsPaymentCreate",
    "SmsPaymentRead",
    # Sync
    "ProviderHealthRead",
    "SyncResetResponse",
    "SyncRunRead",
    "SyncStatusRead",
    "SyncTriggerResponse",
]
