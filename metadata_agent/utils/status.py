"""Scheduler state and cycle outcome enumerations."""

from enum import Enum


class SchedulerState(Enum):
    """Lifecycle of the collection scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    COLLECTING = "collecting"
    UPLOADING = "uploading"
    STOPPED = "stopped"


class CycleOutcome(Enum):
    """How a collect-then-upload cycle ended."""

    SUCCESS = "success"
    COLLECTION_FAILED = "collection_failed"
    UPLOAD_FAILED = "upload_failed"

    @property
    def healthy(self) -> bool:
        """True when the cycle delivered its payload."""
        return self is CycleOutcome.SUCCESS
