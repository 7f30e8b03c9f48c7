"""Reminder task data model and time helpers."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from dateutil.parser import parse as parse_datetime

from .kinds import ReminderKind


class TaskStatus(Enum):
    """Lifecycle states of a reminder task."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass
class ReminderTask:
    """A single scheduled reminder for one subject and kind."""
    id: str
    subject_id: str
    kind: ReminderKind
    scheduled_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RenderedReminder:
    """User-facing content for a reminder notification."""
    title: str
    message: str


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Reject naive datetimes and normalise aware ones to UTC.

    Raises:
        ValueError: If value has no tzinfo
    """
    if value.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {value.isoformat()}")
    return value.astimezone(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Fixed-width ISO 8601 UTC string, safe for lexical comparison in SQL."""
    return ensure_aware(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a stored timestamp, treating naive values as UTC."""
    parsed = value if isinstance(value, datetime) else parse_datetime(value)

    # Ensure timezone aware
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
