"""Errors raised by the license sync pipeline."""

from __future__ import annotations


class LicenseSyncError(Exception):
    """Base class for sync pipeline errors."""


class ProviderConfigError(LicenseSyncError):
    """Provider URL or API key is not configured."""


class ProviderFetchError(LicenseSyncError):
    """Provider request failed after the retry budget (network, 5xx, timeout, bad body)."""

    def __init__(self, message: str, *, status_code: int | None = None, page: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.page = page


class RecordRejected(LicenseSyncError):
    """A raw provider record failed validation."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SyncAlreadyRunningError(LicenseSyncError):
    """Another sync run holds the running state."""
