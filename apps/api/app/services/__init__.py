"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access
from app.services import cache_service
from app.services import license_validator
from app.services import license_provider_client
from app.services import external_license_service
from app.services import license_merge
from app.services import reconciliation_service
from app.services import enrichment_service
from app.services import license_service
from app.services import dashboard_metrics_service
from app.services import sync_state_service
from app.services import license_sync_service

__all__ = [
    "cache_service",
    "license_validator",
    "license_provider_client",
    "external_license_service",
    "license_merge",
    "reconciliation_service",
    "enrichment_service",
    "license_service",
    "dashboard_metrics_service",
    "sync_state_service",
    "license_sync_service",
]
