"""API routers."""

from app.routers.external_licenses import router as external_licenses_router
from app.routers.internal import router as internal_router
from app.routers.license_sync import router as license_sync_router
from app.routers.licenses import router as licenses_router

__all__ = [
    "external_licenses_router",
    "internal_router",
    "license_sync_router",
    "licenses_router",
]
