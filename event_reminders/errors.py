"""Exception types raised by the reminder engine and its collaborators."""


class ReminderEngineError(Exception):
    """Base class for reminder engine errors."""


class TaskStoreError(ReminderEngineError):
    """The task store could not be read or written."""


class SubjectNotFoundError(ReminderEngineError):
    """The subject no longer exists (e.g. the event was deleted)."""

    def __init__(self, subject_id: str):
        super().__init__(f"Subject {subject_id} not found")
        self.subject_id = subject_id


class DispatchError(ReminderEngineError):
    """The notification dispatcher failed to deliver a reminder."""


class ConfigurationError(ReminderEngineError):
    """Invalid or incomplete engine configuration."""
