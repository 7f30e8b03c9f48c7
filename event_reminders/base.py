"""Base classes for the engine's external collaborators."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterable

from .kinds import ReminderKind
from .models import ReminderTask, RenderedReminder, TaskStatus


class TaskStore(ABC):
    """Durable table of reminder tasks keyed by (subject, kind).

    Implementations must raise TaskStoreError when the backing store
    cannot be reached.
    """

    @abstractmethod
    async def upsert_task(
        self,
        subject_id: str,
        kind: ReminderKind,
        scheduled_at: datetime
    ) -> ReminderTask:
        """Create or update the pending task for (subject_id, kind).

        Returns:
            The pending task as stored
        """

    @abstractmethod
    async def set_status(self, task_id: str, status: TaskStatus) -> bool:
        """Move a pending task to a terminal status.

        Returns:
            True if the row was pending and has been updated
        """

    @abstractmethod
    async def get_task(self, task_id: str) -> ReminderTask | None:
        """Fetch a single task by id."""

    @abstractmethod
    async def find_pending_due_between(self, start: datetime, end: datetime) -> list[ReminderTask]:
        """Pending tasks with start <= scheduled_at <= end, earliest first."""

    @abstractmethod
    async def find_pending_for(self, subject_id: str) -> list[ReminderTask]:
        """Pending tasks for one subject, earliest first."""

    @abstractmethod
    async def cancel_pending_for(self, subject_id: str) -> int:
        """Mark every pending task of a subject cancelled.

        Returns:
            Number of tasks cancelled
        """

    @abstractmethod
    async def cancel_pending_due_before(self, cutoff: datetime) -> int:
        """Mark pending tasks with scheduled_at < cutoff cancelled.

        Used for tasks that were due so long ago no sweep will pick them up.

        Returns:
            Number of tasks cancelled
        """

    @abstractmethod
    async def delete_terminal_older_than(self, age: timedelta) -> int:
        """Delete completed/failed/cancelled tasks last updated before now - age.

        Returns:
            Number of rows deleted
        """


class SubjectDataAccess(ABC):
    """Read access to the subjects (events) reminders are scheduled for.

    Lookups for a subject that no longer exists raise SubjectNotFoundError.
    """

    @abstractmethod
    async def get_trigger_instant(self, subject_id: str) -> datetime:
        """Current trigger instant (event start time)."""

    @abstractmethod
    async def get_current_recipients(self, subject_id: str) -> list[str]:
        """Ids of the users registered for the subject right now."""

    async def get_title(self, subject_id: str) -> str:
        """Display title used when rendering reminder content."""
        return subject_id


class NotificationDispatcher(ABC):
    """Persists user-facing reminder notifications."""

    @abstractmethod
    async def deliver(
        self,
        subject_id: str,
        kind: ReminderKind,
        recipients: list[str],
        content: RenderedReminder
    ) -> None:
        """Deliver one notification per recipient.

        Raises:
            DispatchError: If delivery failed
        """

    @abstractmethod
    async def delete_unread_for_subject_and_kinds(
        self,
        subject_id: str,
        kinds: Iterable[ReminderKind]
    ) -> int:
        """Delete unread notifications for a subject tagged with any of kinds.

        Returns:
            Number of notifications deleted
        """
