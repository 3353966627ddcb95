"""FastAPI dependencies for database access and the sync pipeline."""

from typing import Callable, Generator

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.license_provider_client import LicenseProviderClient
from app.services.license_sync_service import default_provider_factory


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """
    Session factory for work that outlives the request (background syncs).

    Background tasks must not reuse the request session, which is closed
    once the response is sent.
    """
    return SessionLocal


def get_license_provider_factory() -> Callable[..., LicenseProviderClient]:
    """Builds the provider client; overridden in tests with a mock transport."""
    return default_provider_factory
