"""Reminder engine - the entry points the host service calls.

The host constructs one ReminderEngine and passes it to whatever needs to
plan or reschedule reminders; there is no module-level instance.

    engine = ReminderEngine(store, subjects, dispatcher)
    await engine.start()
    await engine.on_subject_created(event_id, start_time)
"""

import asyncio
import signal
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .base import NotificationDispatcher, SubjectDataAccess, TaskStore
from .errors import SubjectNotFoundError
from .execution import ExecutionScheduler
from .logger import logger
from .models import ReminderTask, utc_now
from .planner import ReminderPlanner
from .supersession import clear_subject
from .sweep import SweepScheduler


class ReminderEngine:
    """Plans, sweeps and fires event reminders."""

    def __init__(
        self,
        store: TaskStore,
        subjects: SubjectDataAccess,
        dispatcher: NotificationDispatcher,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable = utc_now,
        **sweep_options
    ):
        """Initialize engine.

        Args:
            store: Task store
            subjects: Subject data access
            dispatcher: Notification dispatcher
            scheduler: APScheduler instance to share; one is created if omitted
            clock: Returns the current aware UTC datetime
            **sweep_options: interval_minutes, window_minutes, lookback_minutes,
                retention_days overrides for SweepScheduler
        """
        self.store = store
        self.subjects = subjects
        self.dispatcher = dispatcher
        self.clock = clock

        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

        self.execution = ExecutionScheduler(self.scheduler, store, subjects, dispatcher, clock=clock)
        self.planner = ReminderPlanner(store, self.execution, clock=clock)
        self.sweep = SweepScheduler(self.scheduler, store, self.execution, clock=clock, **sweep_options)

        self._running = False
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start periodic ticking and run one sweep immediately."""
        if self._running:
            return

        self.execution.open()
        if not self.scheduler.running:
            self.scheduler.start()
        self.sweep.register()
        self._running = True
        self._stopped.clear()
        logger.info("Reminder engine started")

        # Pick up anything due during a restart without waiting a full period
        await self.sweep.run_sweep_now()

    async def stop(self) -> None:
        """Stop ticking and clear armed timers without running them.

        Tasks that are still pending are rediscovered by the next process's sweep.
        """
        if not self._running:
            return

        self._running = False
        self.sweep.unregister()
        cleared = self.execution.shutdown()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info(f"Reminder engine stopped ({cleared} timers cleared)")
        self._stopped.set()

    async def wait_closed(self) -> None:
        """Block until stop() has been called."""
        await self._stopped.wait()

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Stop the engine gracefully on SIGINT/SIGTERM."""
        loop = loop or asyncio.get_running_loop()

        def _handle(sig):
            logger.info(f"{sig.name} received, stopping scheduled tasks...")
            loop.create_task(self.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _handle, sig)
            except NotImplementedError:
                # Windows event loops don't support add_signal_handler
                signal.signal(sig, lambda signum, frame, s=sig: loop.call_soon_threadsafe(_handle, s))

    async def on_subject_created(self, subject_id: str, trigger_at: datetime) -> list[ReminderTask]:
        """Plan reminders for a new subject.

        Raises:
            TaskStoreError: If planning failed; the caller decides what that means
        """
        tasks = await self.planner.plan(subject_id, trigger_at)
        await self._schedule_if_due_soon(subject_id, tasks)
        return tasks

    async def on_subject_rescheduled(self, subject_id: str, new_trigger_at: datetime) -> list[ReminderTask]:
        """Replace a subject's reminders after its trigger instant changed."""
        logger.info(f"Subject {subject_id} moved to {new_trigger_at}, updating scheduled tasks")
        await self.planner.cancel(subject_id)
        await clear_subject(self.dispatcher, subject_id)
        tasks = await self.planner.plan(subject_id, new_trigger_at)
        await self._schedule_if_due_soon(subject_id, tasks)
        return tasks

    async def on_subject_cancelled(self, subject_id: str) -> int:
        """Cancel all future reminders of a subject.

        Returns:
            Number of tasks cancelled
        """
        cancelled = await self.planner.cancel(subject_id)
        await clear_subject(self.dispatcher, subject_id)
        return cancelled

    async def refresh_subject(self, subject_id: str) -> list[ReminderTask]:
        """Re-read a subject's trigger instant and reschedule if it drifted.

        Used when the start time may have been changed outside the host's
        update path. A subject that no longer exists is cancelled.
        """
        try:
            trigger_at = await self.subjects.get_trigger_instant(subject_id)
        except SubjectNotFoundError:
            await self.on_subject_cancelled(subject_id)
            return []

        expected = self.planner.candidate_instants(trigger_at)
        pending = await self.store.find_pending_for(subject_id)
        if {t.kind: t.scheduled_at for t in pending} == expected:
            return pending

        return await self.on_subject_rescheduled(subject_id, trigger_at)

    async def _schedule_if_due_soon(self, subject_id: str, tasks: list[ReminderTask]) -> None:
        """Arm tasks the next sweep tick would discover too late."""
        horizon = self.clock() + self.sweep.window
        due_soon = [t for t in tasks if t.scheduled_at <= horizon]
        if due_soon:
            logger.info(f"Found {len(due_soon)} immediate tasks for subject {subject_id}")
            await self.execution.schedule_immediately(due_soon)

    async def run_sweep_now(self) -> int:
        """Manual sweep trigger for tooling and tests."""
        return await self.sweep.run_sweep_now()

    async def run_retention_now(self) -> int:
        """Manual retention trigger for tooling and tests."""
        return await self.sweep.run_retention_now()

    def status(self) -> dict:
        """Snapshot of periodic jobs and armed timers."""
        return {
            "running": self._running,
            "periodic_jobs": self.sweep.get_job_status(),
            "armed_tasks": len(self.execution.armed_task_ids()),
            "in_flight_tasks": len(self.execution.in_flight_task_ids()),
            "last_sweep_at": self.sweep.last_sweep_at.isoformat() if self.sweep.last_sweep_at else None,
            "last_sweep_count": self.sweep.last_sweep_count,
        }
