"""Timeline event value object."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class TimelineEventStatus(Enum):
    """Display state of a timeline entry."""
    COMPLETED = "completed"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    FAILED = "failed"


@dataclass(frozen=True)
class TimelineEvent:
    """Immutable entry of a booking's progress narrative."""

    event_type: str
    title: str
    description: str
    status: TimelineEventStatus
    timestamp: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        """Events without a timestamp have not happened yet."""
        return self.timestamp is None
