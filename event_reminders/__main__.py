"""Run the reminder engine as a standalone service.

Subjects are read from Supabase (events + event_registrations); the task
store and notification inbox backends come from configuration.
"""

import asyncio
import sys

from . import config
from .engine import ReminderEngine
from .errors import ConfigurationError
from .inbox import SQLiteNotificationInbox
from .logger import logger
from .store import SQLiteTaskStore
from .supabase import SupabaseNotifications, SupabaseSubjects, SupabaseTaskStore


def build_engine() -> ReminderEngine:
    """Build an engine from environment configuration.

    Raises:
        ConfigurationError: On unknown backends or missing Supabase settings
    """
    if config.TASK_STORE_BACKEND == "sqlite":
        store = SQLiteTaskStore()
    elif config.TASK_STORE_BACKEND == "supabase":
        store = SupabaseTaskStore()
    else:
        raise ConfigurationError(f"Unknown TASK_STORE_BACKEND: {config.TASK_STORE_BACKEND}")

    if config.NOTIFICATION_BACKEND == "sqlite":
        dispatcher = SQLiteNotificationInbox()
    elif config.NOTIFICATION_BACKEND == "supabase":
        dispatcher = SupabaseNotifications()
    else:
        raise ConfigurationError(f"Unknown NOTIFICATION_BACKEND: {config.NOTIFICATION_BACKEND}")

    return ReminderEngine(store, SupabaseSubjects(), dispatcher)


async def main() -> None:
    engine = build_engine()
    engine.install_signal_handlers()
    await engine.start()
    logger.info(f"Reminder service running: {engine.status()}")
    await engine.wait_closed()
    logger.info("Reminder service stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(1)
