"""Cycle result record kept by the scheduler."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import time
from .status import CycleOutcome


@dataclass
class CycleResult:
    """Outcome of one collect-then-upload cycle."""

    outcome: CycleOutcome
    started_at: datetime
    duration_secs: float
    sections: List[str] = field(default_factory=list)  # Payload sections included
    error: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        """Set timestamp if not provided."""
        if self.timestamp is None:
            self.timestamp = time.time()

    def to_dict(self) -> dict:
        """Plain representation for logs and health reporting."""
        return {
            "outcome": self.outcome.value,
            "started_at": self.started_at.isoformat(),
            "duration_secs": round(self.duration_secs, 3),
            "sections": list(self.sections),
            "error": self.error,
            "error_type": self.error_type,
        }
