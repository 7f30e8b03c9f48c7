"""Scheduled event reminder delivery.

Plans 24h/2h/1h/starting reminders for events, sweeps the task store on a
coarse period, arms precise APScheduler timers and delivers to the event's
registrants at firing time.
"""

from .base import NotificationDispatcher, SubjectDataAccess, TaskStore
from .engine import ReminderEngine
from .errors import (
    ConfigurationError,
    DispatchError,
    ReminderEngineError,
    SubjectNotFoundError,
    TaskStoreError,
)
from .execution import ExecutionScheduler
from .inbox import Notification, SQLiteNotificationInbox
from .kinds import ReminderKind
from .models import ReminderTask, RenderedReminder, TaskStatus
from .planner import ReminderPlanner
from .rendering import render_reminder
from .store import SQLiteTaskStore
from .supersession import clear_subject, supersede
from .sweep import PeriodicJob, SweepScheduler

__all__ = [
    "ReminderEngine",
    "ReminderPlanner",
    "SweepScheduler",
    "PeriodicJob",
    "ExecutionScheduler",
    "supersede",
    "clear_subject",
    "render_reminder",
    "ReminderKind",
    "ReminderTask",
    "RenderedReminder",
    "TaskStatus",
    "TaskStore",
    "SubjectDataAccess",
    "NotificationDispatcher",
    "SQLiteTaskStore",
    "SQLiteNotificationInbox",
    "Notification",
    "ReminderEngineError",
    "TaskStoreError",
    "SubjectNotFoundError",
    "DispatchError",
    "ConfigurationError",
]
