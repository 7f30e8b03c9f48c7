"""Supabase persistence for reminder tasks, subjects and notifications.

Talks to the PostgREST API with httpx. Expected tables:

- reminder_tasks (id, subject_id, kind, scheduled_at, status, created_at, updated_at)
  with a unique index on (subject_id, kind) WHERE status = 'pending'
- events (id, title, start_time) and event_registrations (event_id, user_id)
- notifications (id, user_id, subject_id, kind, title, message, is_read, created_at)
"""

import uuid
from datetime import timedelta
from typing import Callable, Iterable, Optional

import httpx

from . import config
from .base import NotificationDispatcher, SubjectDataAccess, TaskStore
from .errors import ConfigurationError, DispatchError, SubjectNotFoundError, TaskStoreError
from .kinds import ReminderKind
from .logger import logger
from .models import (
    TERMINAL_STATUSES,
    ReminderTask,
    RenderedReminder,
    TaskStatus,
    parse_timestamp,
    to_timestamp,
    utc_now,
)


class SupabaseRest:
    """Thin PostgREST client shared by the Supabase collaborators."""

    error_class: type[Exception] = TaskStoreError

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        """Initialize client.

        Args:
            url: Supabase project URL (default from config)
            key: Supabase service key (default from config)
            client: Shared httpx client; a short-lived one is used per call if omitted
            timeout: Request timeout in seconds (default from config)
        """
        self.url = (url or config.SUPABASE_URL or "").rstrip("/")
        self.key = key or config.SUPABASE_KEY
        if not self.url or not self.key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
        self.timeout = timeout or config.SUPABASE_TIMEOUT_SECONDS
        self._client = client

    def _headers(self) -> dict:
        """Get headers for Supabase API calls."""
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation"
        }

    async def _request(self, method: str, table: str, params=None, json=None) -> list[dict]:
        """Send a request to /rest/v1/<table> and return the JSON rows.

        Raises:
            error_class: On transport errors or non-2xx responses
        """
        url = f"{self.url}/rest/v1/{table}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, params=params, json=json,
                    headers=self._headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(
                        method, url, params=params, json=json,
                        headers=self._headers(), timeout=self.timeout
                    )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self.error_class(f"Supabase {method} {table} failed: {e}") from e

        if not response.content:
            return []
        return response.json()


class SupabaseTaskStore(SupabaseRest, TaskStore):
    """Task store backed by the reminder_tasks table."""

    table = "reminder_tasks"

    def __init__(self, *args, clock: Callable = utc_now, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock

    async def upsert_task(self, subject_id, kind, scheduled_at):
        # PostgREST cannot target a partial unique index with on_conflict,
        # so update the pending row if there is one, otherwise insert.
        now = to_timestamp(self.clock())
        existing = await self._request("GET", self.table, params={
            "subject_id": f"eq.{subject_id}",
            "kind": f"eq.{kind.value}",
            "status": "eq.pending",
            "select": "*",
        })

        if existing:
            rows = await self._request("PATCH", self.table, params={
                "id": f"eq.{existing[0]['id']}",
                "status": "eq.pending",
            }, json={"scheduled_at": to_timestamp(scheduled_at), "updated_at": now})
        else:
            rows = await self._request("POST", self.table, json={
                "id": uuid.uuid4().hex,
                "subject_id": subject_id,
                "kind": kind.value,
                "scheduled_at": to_timestamp(scheduled_at),
                "status": TaskStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
            })

        if not rows:
            raise TaskStoreError(f"Upsert of {kind.value} task for subject {subject_id} returned no row")
        return _row_to_task(rows[0])

    async def set_status(self, task_id, status):
        rows = await self._request("PATCH", self.table, params={
            "id": f"eq.{task_id}",
            "status": "eq.pending",
        }, json={"status": status.value, "updated_at": to_timestamp(self.clock())})

        if rows:
            logger.info(f"Marked task {task_id} as {status.value}")
        else:
            logger.warning(f"Task {task_id} not pending, status {status.value} not applied")
        return bool(rows)

    async def get_task(self, task_id):
        rows = await self._request("GET", self.table, params={"id": f"eq.{task_id}", "select": "*"})
        return _row_to_task(rows[0]) if rows else None

    async def find_pending_due_between(self, start, end):
        rows = await self._request("GET", self.table, params=[
            ("status", "eq.pending"),
            ("scheduled_at", f"gte.{to_timestamp(start)}"),
            ("scheduled_at", f"lte.{to_timestamp(end)}"),
            ("order", "scheduled_at.asc"),
            ("select", "*"),
        ])
        return [_row_to_task(row) for row in rows]

    async def find_pending_for(self, subject_id):
        rows = await self._request("GET", self.table, params={
            "subject_id": f"eq.{subject_id}",
            "status": "eq.pending",
            "order": "scheduled_at.asc",
            "select": "*",
        })
        return [_row_to_task(row) for row in rows]

    async def cancel_pending_for(self, subject_id):
        rows = await self._request("PATCH", self.table, params={
            "subject_id": f"eq.{subject_id}",
            "status": "eq.pending",
        }, json={"status": TaskStatus.CANCELLED.value, "updated_at": to_timestamp(self.clock())})

        logger.info(f"Cancelled {len(rows)} scheduled tasks for subject {subject_id}")
        return len(rows)

    async def cancel_pending_due_before(self, cutoff):
        rows = await self._request("PATCH", self.table, params={
            "status": "eq.pending",
            "scheduled_at": f"lt.{to_timestamp(cutoff)}",
        }, json={"status": TaskStatus.CANCELLED.value, "updated_at": to_timestamp(self.clock())})

        if rows:
            logger.warning(f"Expired {len(rows)} pending tasks due before {cutoff}")
        return len(rows)

    async def delete_terminal_older_than(self, age: timedelta):
        statuses = ",".join(s.value for s in TERMINAL_STATUSES)
        rows = await self._request("DELETE", self.table, params={
            "status": f"in.({statuses})",
            "updated_at": f"lt.{to_timestamp(self.clock() - age)}",
        })

        logger.info(f"Cleaned up {len(rows)} old scheduled task records")
        return len(rows)


class SupabaseSubjects(SupabaseRest, SubjectDataAccess):
    """Event lookups against the events and event_registrations tables."""

    events_table = "events"
    registrations_table = "event_registrations"

    async def _get_event(self, subject_id: str) -> dict:
        rows = await self._request("GET", self.events_table, params={
            "id": f"eq.{subject_id}",
            "select": "id,title,start_time",
        })
        if not rows:
            raise SubjectNotFoundError(subject_id)
        return rows[0]

    async def get_trigger_instant(self, subject_id):
        event = await self._get_event(subject_id)
        return parse_timestamp(event["start_time"])

    async def get_current_recipients(self, subject_id):
        await self._get_event(subject_id)
        rows = await self._request("GET", self.registrations_table, params={
            "event_id": f"eq.{subject_id}",
            "select": "user_id",
        })
        return [str(row["user_id"]) for row in rows]

    async def get_title(self, subject_id):
        event = await self._get_event(subject_id)
        return event.get("title") or subject_id


class SupabaseNotifications(SupabaseRest, NotificationDispatcher):
    """Notification dispatcher writing to the notifications table."""

    error_class = DispatchError
    table = "notifications"

    def __init__(self, *args, clock: Callable = utc_now, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock

    async def deliver(self, subject_id, kind, recipients, content: RenderedReminder):
        created_at = to_timestamp(self.clock())
        await self._request("POST", self.table, json=[
            {
                "id": uuid.uuid4().hex,
                "user_id": user_id,
                "subject_id": subject_id,
                "kind": kind.value,
                "title": content.title,
                "message": content.message,
                "is_read": False,
                "created_at": created_at,
            }
            for user_id in recipients
        ])
        logger.info(f"Delivered {kind.value} notification for subject {subject_id} to {len(recipients)} users")

    async def delete_unread_for_subject_and_kinds(self, subject_id, kinds: Iterable[ReminderKind]):
        kind_values = ",".join(k.value for k in kinds)
        if not kind_values:
            return 0

        rows = await self._request("DELETE", self.table, params={
            "subject_id": f"eq.{subject_id}",
            "is_read": "eq.false",
            "kind": f"in.({kind_values})",
        })
        return len(rows)


def _row_to_task(row: dict) -> ReminderTask:
    return ReminderTask(
        id=row["id"],
        subject_id=str(row["subject_id"]),
        kind=ReminderKind(row["kind"]),
        scheduled_at=parse_timestamp(row["scheduled_at"]),
        status=TaskStatus(row["status"]),
        created_at=parse_timestamp(row["created_at"]) if row.get("created_at") else None,
        updated_at=parse_timestamp(row["updated_at"]) if row.get("updated_at") else None,
    )
