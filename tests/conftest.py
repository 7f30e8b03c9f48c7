"""Pytest configuration and fixtures."""

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from event_reminders.base import NotificationDispatcher, SubjectDataAccess
from event_reminders.errors import DispatchError, SubjectNotFoundError
from event_reminders.inbox import SQLiteNotificationInbox
from event_reminders.store import SQLiteTaskStore

T0 = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeSubjects(SubjectDataAccess):
    """In-memory events and registrations."""

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.lookup_error: Exception | None = None

    def add(self, subject_id: str, start_time: datetime, recipients=(), title: str = "Fleet Week"):
        self.events[subject_id] = {
            "start_time": start_time,
            "recipients": list(recipients),
            "title": title,
        }

    def _get(self, subject_id):
        if self.lookup_error is not None:
            raise self.lookup_error
        if subject_id not in self.events:
            raise SubjectNotFoundError(subject_id)
        return self.events[subject_id]

    async def get_trigger_instant(self, subject_id):
        return self._get(subject_id)["start_time"]

    async def get_current_recipients(self, subject_id):
        return list(self._get(subject_id)["recipients"])

    async def get_title(self, subject_id):
        return self._get(subject_id)["title"]


class RecordingDispatcher(NotificationDispatcher):
    """Records deliveries; optionally fails them."""

    def __init__(self):
        self.deliveries: list[tuple] = []
        self.deleted: list[tuple] = []
        self.fail_with: Exception | None = None
        self.delete_error: Exception | None = None

    async def deliver(self, subject_id, kind, recipients, content):
        if self.fail_with is not None:
            raise self.fail_with
        self.deliveries.append((subject_id, kind, list(recipients), content))

    async def delete_unread_for_subject_and_kinds(self, subject_id, kinds):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append((subject_id, list(kinds)))
        return 0


def _temp_db(suffix: str) -> str:
    fd, temp_path = tempfile.mkstemp(suffix=suffix)
    os.close(fd)
    return temp_path


def _unlink(temp_path: str) -> None:
    for path in (temp_path, temp_path + "-wal", temp_path + "-shm"):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def task_store(clock):
    """Fresh SQLite task store per test."""
    temp_path = _temp_db("_reminder_tasks.db")
    store = SQLiteTaskStore(db_path=temp_path, clock=clock)

    yield store

    store.close()
    _unlink(temp_path)


@pytest.fixture
def real_clock_store():
    """Task store using wall-clock time, for tests that wait on real timers."""
    temp_path = _temp_db("_reminder_tasks_rt.db")
    store = SQLiteTaskStore(db_path=temp_path)

    yield store

    store.close()
    _unlink(temp_path)


@pytest.fixture
def inbox(clock):
    """Fresh SQLite notification inbox per test."""
    temp_path = _temp_db("_notifications.db")
    notifications = SQLiteNotificationInbox(db_path=temp_path, clock=clock)

    yield notifications

    notifications.close()
    _unlink(temp_path)


@pytest.fixture
def subjects():
    return FakeSubjects()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest_asyncio.fixture
async def scheduler():
    """Running APScheduler bound to the test's event loop."""
    sched = AsyncIOScheduler(timezone="UTC")
    sched.start()

    yield sched

    if sched.running:
        sched.shutdown(wait=False)


@pytest.fixture
def failing_dispatcher(dispatcher):
    dispatcher.fail_with = DispatchError("notification table unavailable")
    return dispatcher
