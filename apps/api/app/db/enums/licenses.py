"""License-related enums."""

from enum import Enum, IntEnum


class LicenseStatus(str, Enum):
    """Lifecycle status of an internal license."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    REVOKED = "revoked"  # soft delete
    CANCEL = "cancel"
    PENDING = "pending"


class LicenseTerm(str, Enum):
    """Billing term."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class ProviderStatus(IntEnum):
    """Canonical provider status code after normalization."""

    INACTIVE = 0
    ACTIVE = 1


class ExternalSyncStatus(str, Enum):
    """Per-row sync marker on staging and internal rows."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class FieldOwner(str, Enum):
    """
    Which side owns an internal license attribute.

    - EXTERNAL: overwritten by every sync
    - SEEDED: copied from the provider on create only, dashboard-owned afterwards
    - DASHBOARD: never written by sync
    """

    EXTERNAL = "external"
    SEEDED = "seeded"
    DASHBOARD = "dashboard"
