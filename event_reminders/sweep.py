"""Periodic sweep and retention jobs.

The sweep is deliberately coarse: it only has to find each task once
before it is due, the execution scheduler provides the precision.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config
from .base import TaskStore
from .errors import ConfigurationError
from .execution import ExecutionScheduler
from .logger import logger
from .models import utc_now


@dataclass
class PeriodicJob:
    """A named periodic job driven by the shared scheduler."""
    name: str
    trigger: BaseTrigger
    handler: Callable[[], Awaitable]


class SweepScheduler:
    """Discovers soon-due tasks and cleans up old ones on a fixed period."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        store: TaskStore,
        execution: ExecutionScheduler,
        clock: Callable = utc_now,
        interval_minutes: Optional[int] = None,
        window_minutes: Optional[int] = None,
        lookback_minutes: Optional[int] = None,
        retention_days: Optional[int] = None
    ):
        """Initialize sweep scheduler.

        Args:
            scheduler: APScheduler instance shared with the execution scheduler
            store: Task store to sweep
            execution: Receives every discovered task
            clock: Returns the current aware UTC datetime
            interval_minutes: Sweep period (default from config)
            window_minutes: How far ahead a sweep looks (default from config)
            lookback_minutes: How far back a sweep looks for overdue tasks (default from config)
            retention_days: Age after which terminal tasks are deleted (default from config)

        Raises:
            ConfigurationError: If the window is shorter than the interval
        """
        self.scheduler = scheduler
        self.store = store
        self.execution = execution
        self.clock = clock

        self.interval = timedelta(minutes=interval_minutes or config.SWEEP_INTERVAL_MINUTES)
        self.window = timedelta(minutes=window_minutes or config.SWEEP_WINDOW_MINUTES)
        self.lookback = timedelta(
            minutes=lookback_minutes if lookback_minutes is not None else config.SWEEP_LOOKBACK_MINUTES
        )
        self.retention = timedelta(days=retention_days or config.RETENTION_DAYS)

        if self.window < self.interval:
            raise ConfigurationError(
                f"Sweep window ({self.window}) must cover the sweep interval ({self.interval})"
            )

        self.jobs = [
            PeriodicJob(
                name="sweep",
                trigger=IntervalTrigger(seconds=self.interval.total_seconds()),
                handler=self.run_sweep_now,
            ),
            PeriodicJob(
                name="retention",
                trigger=CronTrigger(
                    day_of_week=config.RETENTION_DAY_OF_WEEK,
                    hour=config.RETENTION_HOUR,
                    minute=0,
                    timezone="UTC",
                ),
                handler=self.run_retention_now,
            ),
        ]

        # Track registered job IDs for removal on stop
        self._job_ids: list[str] = []

        # Last run info for status reporting
        self.last_sweep_at = None
        self.last_sweep_count = 0

    def register(self) -> None:
        """Register the periodic jobs with the scheduler."""
        for job in self.jobs:
            job_id = f"periodic:{job.name}"
            self.scheduler.add_job(
                job.handler,
                job.trigger,
                id=job_id,
                name=job.name,
                replace_existing=True,
                coalesce=True,
                max_instances=1
            )
            self._job_ids.append(job_id)
            logger.info(f"Started scheduled task: {job.name}")

    def unregister(self) -> None:
        """Remove the periodic jobs so no further ticks run."""
        for job_id in self._job_ids:
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass  # Job may not exist
            logger.info(f"Stopped scheduled task: {job_id}")
        self._job_ids.clear()

    async def run_sweep_now(self) -> int:
        """Find pending tasks due soon and hand them to the execution scheduler.

        Errors are logged; the next tick retries.

        Returns:
            Number of tasks handed to arm()
        """
        now = self.clock()
        try:
            due_tasks = await self.store.find_pending_due_between(now - self.lookback, now + self.window)
        except Exception as e:
            logger.error(f"Error processing due tasks: {e}")
            return 0

        logger.info(f"Found {len(due_tasks)} tasks due in the next {int(self.window.total_seconds() // 60)} minutes")

        handed = 0
        for task in due_tasks:
            try:
                await self.execution.arm(task)
                handed += 1
            except Exception as e:
                logger.error(f"Error scheduling task execution for {task.id}: {e}")

        self.last_sweep_at = now
        self.last_sweep_count = handed
        return handed

    async def run_retention_now(self) -> int:
        """Expire stranded pending tasks, then delete old terminal ones.

        A pending task due before the sweep lookback can no longer be
        discovered, so it is cancelled and ages out like any other row.
        Best effort, never raises.

        Returns:
            Number of rows deleted
        """
        try:
            await self.store.cancel_pending_due_before(self.clock() - self.lookback)
            return await self.store.delete_terminal_older_than(self.retention)
        except Exception as e:
            logger.error(f"Error in cleanup task: {e}")
            return 0

    def get_job_status(self) -> dict[str, Optional[str]]:
        """Next run time of each registered periodic job."""
        status = {}
        for job in self.jobs:
            scheduled = self.scheduler.get_job(f"periodic:{job.name}")
            next_run = getattr(scheduled, "next_run_time", None) if scheduled else None
            status[job.name] = next_run.isoformat() if next_run else None
        return status
