"""Precise per-task timers and reminder delivery.

Each pending task discovered by a sweep (or planned close to its due time)
gets one APScheduler date job. The armed map is the only thing preventing
overlapping sweeps from delivering the same reminder twice, so the
check-and-insert in arm() never awaits in between.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from .base import NotificationDispatcher, SubjectDataAccess, TaskStore
from .errors import SubjectNotFoundError
from .logger import logger
from .models import ReminderTask, TaskStatus, utc_now
from .rendering import render_reminder
from .supersession import supersede

JOB_PREFIX = "reminder:"

# A fired task whose row now points further out than this is re-armed
RESCHEDULE_TOLERANCE = timedelta(seconds=1)


class ExecutionScheduler:
    """Arms one in-process timer per task and delivers reminders when they fire."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        store: TaskStore,
        subjects: SubjectDataAccess,
        dispatcher: NotificationDispatcher,
        clock: Callable = utc_now
    ):
        """Initialize execution scheduler.

        Args:
            scheduler: APScheduler instance providing the timers
            store: Task store used to refresh and finish tasks
            subjects: Source of live recipients and titles
            dispatcher: Notification dispatcher
            clock: Returns the current aware UTC datetime
        """
        self.scheduler = scheduler
        self.store = store
        self.subjects = subjects
        self.dispatcher = dispatcher
        self.clock = clock

        self._armed: dict[str, str] = {}  # task_id -> job_id
        self._armed_at: dict[str, datetime] = {}  # task_id -> scheduled_at the timer was armed for
        self._by_subject: dict[str, set[str]] = {}  # subject_id -> task_ids
        self._in_flight: set[str] = set()
        self._accepting = True

    def is_armed(self, task_id: str) -> bool:
        return task_id in self._armed

    def armed_task_ids(self) -> list[str]:
        return list(self._armed)

    def in_flight_task_ids(self) -> list[str]:
        return list(self._in_flight)

    def open(self) -> None:
        """Accept arm requests again after a shutdown."""
        self._accepting = True

    async def arm(self, task: ReminderTask) -> bool:
        """Arm a timer for a task, or run it now if already due.

        Idempotent: a task that is executing, or already armed for the same
        instant, is skipped. An armed task whose scheduled_at changed (the
        row was re-planned) has its timer replaced.

        Returns:
            True if a timer was created or replaced, or the task was executed
        """
        if not self._accepting:
            logger.debug(f"Shutting down, not arming task {task.id}")
            return False

        if task.id in self._in_flight:
            logger.debug(f"Task {task.id} already executing, skipping")
            return False

        if task.id in self._armed:
            armed_at = self._armed_at.get(task.id)
            if armed_at == task.scheduled_at:
                logger.debug(f"Task {task.id} already scheduled, skipping")
                return False
            logger.info(f"Task {task.id} moved from {armed_at} to {task.scheduled_at}, replacing timer")
            self._drop(task.id)

        delay = (task.scheduled_at - self.clock()).total_seconds()

        if delay <= 0:
            # Overdue (e.g. process was down past the due time) - late beats dropped
            logger.info(f"Task {task.id} ({task.kind.value}) overdue by {-delay:.0f}s, executing now")
            await self._run(task)
            return True

        job_id = f"{JOB_PREFIX}{task.id}"
        self.scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=utc_now() + timedelta(seconds=delay)),
            args=[task.id],
            id=job_id,
            name=f"reminder:{task.kind.value}:{task.subject_id}",
            replace_existing=True,
            misfire_grace_time=None
        )
        self._armed[task.id] = job_id
        self._armed_at[task.id] = task.scheduled_at
        self._by_subject.setdefault(task.subject_id, set()).add(task.id)

        logger.info(
            f"Scheduled task {task.id} ({task.kind.value}) for subject {task.subject_id} "
            f"in {round(delay / 60)} minutes"
        )
        return True

    async def schedule_immediately(self, tasks: Iterable[ReminderTask]) -> int:
        """Arm tasks without waiting for the next sweep.

        Returns:
            Number of tasks armed or executed
        """
        tasks = list(tasks)
        logger.info(f"Scheduling {len(tasks)} tasks immediately")
        armed = 0
        for task in tasks:
            if await self.arm(task):
                armed += 1
        return armed

    def disarm(self, subject_id: str) -> int:
        """Remove all armed timers for a subject.

        Executions that already started are left to finish.

        Returns:
            Number of timers removed
        """
        removed = 0
        for task_id in list(self._by_subject.get(subject_id, ())):
            if self._drop(task_id):
                removed += 1
        return removed

    def shutdown(self) -> int:
        """Stop accepting work and clear every armed timer without running it.

        Returns:
            Number of timers cleared
        """
        self._accepting = False
        cleared = 0
        for task_id, job_id in list(self._armed.items()):
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass
            cleared += 1
            logger.info(f"Cleared timer: {job_id}")
        self._armed.clear()
        self._armed_at.clear()
        self._by_subject.clear()
        return cleared

    def _drop(self, task_id: str) -> bool:
        """Remove a task's timer job and forget it.

        Returns:
            True if the task was armed
        """
        job_id = self._armed.get(task_id)
        self._release(task_id)
        if job_id is None:
            return False
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            pass  # Fired between lookup and removal
        logger.info(f"Cleared timer: {job_id}")
        return True

    def _release(self, task_id: str) -> None:
        """Forget the armed entry for a task."""
        self._armed.pop(task_id, None)
        self._armed_at.pop(task_id, None)
        for subject_id, task_ids in list(self._by_subject.items()):
            if task_id in task_ids:
                task_ids.discard(task_id)
                if not task_ids:
                    del self._by_subject[subject_id]
                break

    async def _fire(self, task_id: str) -> None:
        """Timer callback - runs inside APScheduler's asyncio executor."""
        # Drop our own key first so the task can't be double-armed mid-fire
        self._release(task_id)
        self._in_flight.add(task_id)
        rearm = None
        try:
            task = await self.store.get_task(task_id)
            if task is None or task.status is not TaskStatus.PENDING:
                logger.info(f"Task {task_id} no longer pending, skipping")
            elif task.scheduled_at - self.clock() > RESCHEDULE_TOLERANCE:
                rearm = task
            else:
                await self.execute(task)
        except Exception as e:
            logger.error(f"Failed to execute task {task_id}: {e}")
        finally:
            self._in_flight.discard(task_id)

        if rearm is not None:
            logger.info(f"Task {task_id} moved to {rearm.scheduled_at}, re-arming")
            await self.arm(rearm)

    async def _run(self, task: ReminderTask) -> TaskStatus:
        self._in_flight.add(task.id)
        try:
            return await self.execute(task)
        finally:
            self._in_flight.discard(task.id)

    async def execute(self, task: ReminderTask) -> TaskStatus:
        """Deliver a reminder to the subject's current recipients.

        Recipients are looked up now, not at planning time, since
        registrations change. Failures are recorded, never retried.

        Returns:
            The terminal status recorded for the task
        """
        try:
            recipients = await self.subjects.get_current_recipients(task.subject_id)
            title = await self.subjects.get_title(task.subject_id) if recipients else None
        except SubjectNotFoundError:
            logger.warning(f"Subject {task.subject_id} not found, skipping notification")
            return await self._finish(task, TaskStatus.COMPLETED)
        except Exception as e:
            logger.error(f"Error loading recipients for subject {task.subject_id}: {e}")
            return await self._finish(task, TaskStatus.FAILED)

        if not recipients:
            logger.info(f"No registrations for subject {task.subject_id}, skipping notification")
            return await self._finish(task, TaskStatus.COMPLETED)

        content = render_reminder(task.kind, title)
        await supersede(self.dispatcher, task.subject_id, task.kind)

        try:
            await self.dispatcher.deliver(task.subject_id, task.kind, recipients, content)
        except Exception as e:
            logger.error(f"Error sending {task.kind.value} reminder for subject {task.subject_id}: {e}")
            return await self._finish(task, TaskStatus.FAILED)

        logger.info(
            f"Executed {task.kind.value} reminder for subject {task.subject_id}, "
            f"notified {len(recipients)} users"
        )
        return await self._finish(task, TaskStatus.COMPLETED)

    async def _finish(self, task: ReminderTask, status: TaskStatus) -> TaskStatus:
        try:
            await self.store.set_status(task.id, status)
        except Exception as e:
            logger.error(f"Failed to mark task {task.id} as {status.value}: {e}")
        task.status = status
        return status
