"""Supersession of older reminder notifications.

Reminders are a decaying staircase: when a finer reminder is delivered,
unread notifications for every coarser kind of the same subject are
removed. Both operations are best effort and never raise.
"""

from .base import NotificationDispatcher
from .kinds import ReminderKind
from .logger import logger


async def supersede(
    dispatcher: NotificationDispatcher,
    subject_id: str,
    firing_kind: ReminderKind
) -> int:
    """Delete unread notifications of kinds coarser than firing_kind.

    Args:
        dispatcher: Notification dispatcher owning the notifications
        subject_id: Subject the reminder is for
        firing_kind: Kind about to be delivered

    Returns:
        Number of notifications deleted (0 on error)
    """
    older_kinds = firing_kind.coarser_kinds()
    if not older_kinds:
        return 0

    try:
        deleted = await dispatcher.delete_unread_for_subject_and_kinds(subject_id, older_kinds)
    except Exception as e:
        # Cleanup failures must not prevent the new notification
        logger.error(f"Error cleaning up older reminders for subject {subject_id}: {e}")
        return 0

    if deleted > 0:
        logger.info(
            f"Cleaned up {deleted} older reminder notifications for subject {subject_id} "
            f"when issuing {firing_kind.value} reminder"
        )
    return deleted


async def clear_subject(dispatcher: NotificationDispatcher, subject_id: str) -> int:
    """Delete every unread reminder notification for a subject.

    Used when the subject's trigger instant changes or it is cancelled.

    Returns:
        Number of notifications deleted (0 on error)
    """
    try:
        deleted = await dispatcher.delete_unread_for_subject_and_kinds(subject_id, ReminderKind.ordered())
    except Exception as e:
        logger.error(f"Error deleting pending reminder notifications for subject {subject_id}: {e}")
        return 0

    if deleted > 0:
        logger.info(f"Deleted {deleted} pending reminder notifications for subject {subject_id}")
    return deleted
