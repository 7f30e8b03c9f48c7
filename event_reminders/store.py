"""SQLite task store for reminder tasks.

Local persistence for the reminder engine. One row per task; a partial
unique index guarantees at most one pending task per (subject, kind)
while leaving completed/failed/cancelled history rows alone.

Queries run in a worker thread (asyncio.to_thread) so a slow disk never
stalls the timers sharing the event loop.
"""

import asyncio
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from . import config
from .base import TaskStore
from .errors import TaskStoreError
from .kinds import ReminderKind
from .logger import logger
from .models import (
    TERMINAL_STATUSES,
    ReminderTask,
    TaskStatus,
    parse_timestamp,
    to_timestamp,
    utc_now,
)

_COLUMNS = "id, subject_id, kind, scheduled_at, status, created_at, updated_at"


class SQLiteTaskStore(TaskStore):
    """Task store backed by a local SQLite file in WAL mode."""

    def __init__(self, db_path: Optional[str] = None, clock: Callable = utc_now):
        """Initialize store.

        Args:
            db_path: SQLite file path (default from config)
            clock: Returns the current aware UTC datetime
        """
        self.db_path = db_path or config.TASK_STORE_DB
        self.clock = clock
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        # Ensure data directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # Used from asyncio.to_thread workers
                timeout=10.0
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA busy_timeout=5000")
            _init_schema(self._connection)
        except sqlite3.Error as e:
            self._connection = None
            raise TaskStoreError(f"Failed to open task store {self.db_path}: {e}") from e

        logger.info(f"Task store initialized: {self.db_path}")
        return self._connection

    @contextmanager
    def _transaction(self):
        """Serialized transaction on the shared connection."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise TaskStoreError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    async def upsert_task(self, subject_id, kind, scheduled_at):
        task = await asyncio.to_thread(self._upsert_task, subject_id, kind, scheduled_at)
        logger.debug(f"Upserted task {task.id} ({kind.value}) for subject {subject_id} at {task.scheduled_at}")
        return task

    def _upsert_task(self, subject_id: str, kind: ReminderKind, scheduled_at: datetime) -> ReminderTask:
        now = to_timestamp(self.clock())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO reminder_tasks
                (id, subject_id, kind, scheduled_at, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'pending', ?, ?)
                ON CONFLICT (subject_id, kind) WHERE status = 'pending'
                DO UPDATE SET scheduled_at = excluded.scheduled_at,
                              updated_at = excluded.updated_at
                """,
                (uuid.uuid4().hex, subject_id, kind.value, to_timestamp(scheduled_at), now, now)
            )
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM reminder_tasks "
                "WHERE subject_id = ? AND kind = ? AND status = 'pending'",
                (subject_id, kind.value)
            ).fetchone()
        return _row_to_task(row)

    async def set_status(self, task_id, status):
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE reminder_tasks SET status = ?, updated_at = ? "
            "WHERE id = ? AND status = 'pending'",
            (status.value, to_timestamp(self.clock()), task_id)
        ) > 0

        if updated:
            logger.info(f"Marked task {task_id} as {status.value}")
        else:
            logger.warning(f"Task {task_id} not pending, status {status.value} not applied")
        return updated

    async def get_task(self, task_id):
        rows = await asyncio.to_thread(
            self._select,
            f"SELECT {_COLUMNS} FROM reminder_tasks WHERE id = ?",
            (task_id,)
        )
        return rows[0] if rows else None

    async def find_pending_due_between(self, start, end):
        return await asyncio.to_thread(
            self._select,
            f"SELECT {_COLUMNS} FROM reminder_tasks "
            "WHERE status = 'pending' AND scheduled_at BETWEEN ? AND ? "
            "ORDER BY scheduled_at ASC",
            (to_timestamp(start), to_timestamp(end))
        )

    async def find_pending_for(self, subject_id):
        return await asyncio.to_thread(
            self._select,
            f"SELECT {_COLUMNS} FROM reminder_tasks "
            "WHERE subject_id = ? AND status = 'pending' "
            "ORDER BY scheduled_at ASC",
            (subject_id,)
        )

    async def cancel_pending_for(self, subject_id):
        cancelled = await asyncio.to_thread(
            self._execute,
            "UPDATE reminder_tasks SET status = 'cancelled', updated_at = ? "
            "WHERE subject_id = ? AND status = 'pending'",
            (to_timestamp(self.clock()), subject_id)
        )
        logger.info(f"Cancelled {cancelled} scheduled tasks for subject {subject_id}")
        return cancelled

    async def cancel_pending_due_before(self, cutoff):
        expired = await asyncio.to_thread(
            self._execute,
            "UPDATE reminder_tasks SET status = 'cancelled', updated_at = ? "
            "WHERE status = 'pending' AND scheduled_at < ?",
            (to_timestamp(self.clock()), to_timestamp(cutoff))
        )
        if expired:
            logger.warning(f"Expired {expired} pending tasks due before {cutoff}")
        return expired

    async def delete_terminal_older_than(self, age: timedelta):
        cutoff = to_timestamp(self.clock() - age)
        placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
        deleted = await asyncio.to_thread(
            self._execute,
            f"DELETE FROM reminder_tasks WHERE updated_at < ? AND status IN ({placeholders})",
            (cutoff, *(s.value for s in TERMINAL_STATUSES))
        )
        logger.info(f"Cleaned up {deleted} old scheduled task records")
        return deleted

    def _select(self, query: str, params: tuple) -> list[ReminderTask]:
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_task(row) for row in rows]

    def _execute(self, query: str, params: tuple) -> int:
        """Run a write statement and return the affected row count."""
        with self._transaction() as conn:
            return conn.execute(query, params).rowcount

    def get_stats(self) -> dict:
        """Task counts by status."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM reminder_tasks GROUP BY status"
            ).fetchall()
        stats = {status.value: 0 for status in TaskStatus}
        stats.update({row["status"]: row["count"] for row in rows})
        return stats


def _init_schema(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS reminder_tasks (
            id TEXT PRIMARY KEY,
            subject_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            scheduled_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        -- At most one pending task per (subject, kind)
        CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_pending_subject_kind
            ON reminder_tasks(subject_id, kind) WHERE status = 'pending';
        CREATE INDEX IF NOT EXISTS idx_tasks_status_scheduled ON reminder_tasks(status, scheduled_at);
        CREATE INDEX IF NOT EXISTS idx_tasks_updated ON reminder_tasks(updated_at);
    """)
    conn.commit()


def _row_to_task(row: sqlite3.Row) -> ReminderTask:
    return ReminderTask(
        id=row["id"],
        subject_id=row["subject_id"],
        kind=ReminderKind(row["kind"]),
        scheduled_at=parse_timestamp(row["scheduled_at"]),
        status=TaskStatus(row["status"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )
