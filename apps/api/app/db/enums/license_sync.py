"""License sync run enums."""

from enum import Enum


class SyncState(str, Enum):
    """State of the process-wide sync lock row."""

    IDLE = "idle"
    RUNNING = "running"


class SyncOutcome(str, Enum):
    """Terminal result of a sync run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncTrigger(str, Enum):
    """What started a sync run."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    CRON = "cron"  # /internal/scheduled/license-sync
    CLI = "cli"
