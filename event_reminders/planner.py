"""Reminder planning - turns a trigger instant into pending tasks."""

from datetime import datetime
from typing import Callable

from .base import TaskStore
from .execution import ExecutionScheduler
from .kinds import ReminderKind
from .logger import logger
from .models import ReminderTask, ensure_aware, utc_now


class ReminderPlanner:
    """Creates, replaces and cancels the reminder tasks of a subject."""

    def __init__(self, store: TaskStore, execution: ExecutionScheduler, clock: Callable = utc_now):
        self.store = store
        self.execution = execution
        self.clock = clock

    def candidate_instants(self, trigger_at: datetime) -> dict[ReminderKind, datetime]:
        """Future reminder instants for a trigger instant.

        Instants at or before now are skipped rather than delivered late:
        a "24 hours to go" reminder two minutes before the event is wrong.
        """
        trigger_at = ensure_aware(trigger_at)
        now = self.clock()
        instants = {}
        for kind in ReminderKind.ordered():
            scheduled_at = trigger_at - kind.offset
            if scheduled_at > now:
                instants[kind] = scheduled_at
        return instants

    async def plan(self, subject_id: str, trigger_at: datetime) -> list[ReminderTask]:
        """Upsert pending tasks for every future reminder of a subject.

        Args:
            subject_id: Subject (event) id
            trigger_at: Aware trigger instant (event start time)

        Returns:
            The pending tasks as stored, earliest first

        Raises:
            ValueError: If trigger_at is naive
            TaskStoreError: If the store is unreachable
        """
        instants = self.candidate_instants(trigger_at)

        tasks = []
        for kind, scheduled_at in instants.items():
            tasks.append(await self.store.upsert_task(subject_id, kind, scheduled_at))

        skipped = len(ReminderKind.ordered()) - len(tasks)
        if tasks:
            logger.info(
                f"Created {len(tasks)} scheduled tasks for subject {subject_id} "
                f"(skipped {skipped} past-due tasks)"
            )
        else:
            logger.info(f"Subject {subject_id} is in the past or too close, no tasks created")
        return sorted(tasks, key=lambda t: t.scheduled_at)

    async def cancel(self, subject_id: str) -> int:
        """Cancel pending tasks of a subject and disarm their timers.

        A reminder that has already started delivering is not rolled back.

        Returns:
            Number of tasks cancelled in the store
        """
        cleared = self.execution.disarm(subject_id)
        if cleared:
            logger.info(f"Disarmed {cleared} timers for subject {subject_id}")
        return await self.store.cancel_pending_for(subject_id)
