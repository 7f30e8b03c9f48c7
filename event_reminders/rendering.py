"""Reminder notification content."""

from .kinds import ReminderKind
from .models import RenderedReminder

_MESSAGES = {
    ReminderKind.DAY_BEFORE: 'Reminder: The event "{title}" is starting in 24 hours!',
    ReminderKind.TWO_HOURS: 'Reminder: The event "{title}" is starting in 2 hours!',
    ReminderKind.ONE_HOUR: 'Reminder: The event "{title}" is starting in 1 hour!',
    ReminderKind.STARTING: 'The event "{title}" is starting soon!',
}


def render_reminder(kind: ReminderKind, title: str) -> RenderedReminder:
    """Build the notification title and message for a reminder kind."""
    return RenderedReminder(
        title=f"Event Reminder: {title}",
        message=_MESSAGES[kind].format(title=title),
    )
