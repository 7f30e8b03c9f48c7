"""SQLite notification inbox.

Local dispatcher that stores one notification row per recipient. Rows are
tagged with the reminder kind they were generated for so older reminders
can be superseded.
"""

import asyncio
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import config
from .base import NotificationDispatcher
from .errors import DispatchError
from .kinds import ReminderKind
from .logger import logger
from .models import RenderedReminder, parse_timestamp, to_timestamp, utc_now


@dataclass
class Notification:
    """A reminder notification in a user's inbox."""
    id: str
    user_id: str
    subject_id: str
    kind: ReminderKind
    title: str
    message: str
    is_read: bool
    created_at: datetime


class SQLiteNotificationInbox(NotificationDispatcher):
    """Notification dispatcher backed by a local SQLite file."""

    def __init__(self, db_path: Optional[str] = None, clock: Callable = utc_now):
        self.db_path = db_path or config.NOTIFICATION_DB
        self.clock = clock
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is not None:
            return self._connection

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                is_read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_subject ON notifications(subject_id, kind, is_read);
            CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at);
        """)
        self._connection.commit()
        logger.info(f"Notification inbox initialized: {self.db_path}")
        return self._connection

    @contextmanager
    def _transaction(self):
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    async def deliver(self, subject_id, kind, recipients, content: RenderedReminder):
        rows = [
            (uuid.uuid4().hex, user_id, subject_id, kind.value,
             content.title, content.message, to_timestamp(self.clock()))
            for user_id in recipients
        ]
        try:
            await asyncio.to_thread(self._insert, rows)
        except sqlite3.Error as e:
            raise DispatchError(f"Failed to store {kind.value} notifications for {subject_id}: {e}") from e

        logger.info(f"Delivered {kind.value} notification for subject {subject_id} to {len(recipients)} users")

    def _insert(self, rows: list[tuple]) -> None:
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO notifications
                (id, user_id, subject_id, kind, title, message, is_read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                """,
                rows
            )

    async def delete_unread_for_subject_and_kinds(self, subject_id, kinds: Iterable[ReminderKind]):
        kind_values = [k.value for k in kinds]
        if not kind_values:
            return 0
        return await asyncio.to_thread(self._delete_unread, subject_id, kind_values)

    def _delete_unread(self, subject_id: str, kind_values: list[str]) -> int:
        placeholders = ", ".join("?" for _ in kind_values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM notifications WHERE subject_id = ? AND is_read = 0 AND kind IN ({placeholders})",
                (subject_id, *kind_values)
            )
            return cursor.rowcount

    def mark_read(self, notification_id: str) -> bool:
        """Mark a notification as read."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ?",
                (notification_id,)
            )
            return cursor.rowcount > 0

    def list_for_subject(self, subject_id: str) -> list[Notification]:
        """All notifications for a subject, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE subject_id = ? ORDER BY created_at ASC",
                (subject_id,)
            ).fetchall()
        return [_row_to_notification(row) for row in rows]

    def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """A user's notifications, newest first."""
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC"

        with self._transaction() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [_row_to_notification(row) for row in rows]


def _row_to_notification(row: sqlite3.Row) -> Notification:
    return Notification(
        id=row["id"],
        user_id=row["user_id"],
        subject_id=row["subject_id"],
        kind=ReminderKind(row["kind"]),
        title=row["title"],
        message=row["message"],
        is_read=bool(row["is_read"]),
        created_at=parse_timestamp(row["created_at"]),
    )
