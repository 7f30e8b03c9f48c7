"""Tests for the execution scheduler - timers, dedup and delivery outcomes."""

import asyncio
from datetime import timedelta

import pytest

from conftest import T0
from event_reminders.execution import ExecutionScheduler
from event_reminders.kinds import ReminderKind
from event_reminders.models import TaskStatus, utc_now


@pytest.fixture
def execution(scheduler, task_store, subjects, dispatcher, clock):
    return ExecutionScheduler(scheduler, task_store, subjects, dispatcher, clock=clock)


@pytest.fixture
def realtime_execution(scheduler, real_clock_store, subjects, dispatcher):
    return ExecutionScheduler(scheduler, real_clock_store, subjects, dispatcher)


@pytest.mark.asyncio
async def test_arm_twice_creates_one_timer_and_one_delivery(
    realtime_execution, real_clock_store, scheduler, subjects, dispatcher
):
    """Repeated arm requests for the same task are no-ops."""
    subjects.add("evt-1", utc_now() + timedelta(hours=1), recipients=["u1", "u2"])
    task = await real_clock_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, utc_now() + timedelta(seconds=0.2))

    assert await realtime_execution.arm(task) is True
    assert await realtime_execution.arm(task) is False
    assert realtime_execution.armed_task_ids() == [task.id]
    assert len(scheduler.get_jobs()) == 1

    await asyncio.sleep(0.8)

    assert len(dispatcher.deliveries) == 1
    assert dispatcher.deliveries[0][2] == ["u1", "u2"]
    assert realtime_execution.armed_task_ids() == []
    assert (await real_clock_store.get_task(task.id)).status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_timer_uses_recipients_at_firing_time(
    realtime_execution, real_clock_store, subjects, dispatcher
):
    """Registrations that change after arming are honoured."""
    subjects.add("evt-1", utc_now() + timedelta(hours=1), recipients=["u1"])
    task = await real_clock_store.upsert_task("evt-1", ReminderKind.STARTING, utc_now() + timedelta(seconds=0.2))
    await realtime_execution.arm(task)

    subjects.events["evt-1"]["recipients"] = ["u1", "u3"]
    await asyncio.sleep(0.8)

    assert dispatcher.deliveries[0][2] == ["u1", "u3"]


@pytest.mark.asyncio
async def test_overdue_task_executes_immediately(execution, task_store, subjects, dispatcher, clock):
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, T0 - timedelta(minutes=20))

    assert await execution.arm(task) is True

    # Delivered inline, no timer left behind
    assert len(dispatcher.deliveries) == 1
    assert execution.armed_task_ids() == []
    assert (await task_store.get_task(task.id)).status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_empty_recipients_completes_without_dispatch(execution, task_store, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=[])
    task = await task_store.upsert_task("evt-1", ReminderKind.TWO_HOURS, T0)

    status = await execution.execute(task)

    assert status is TaskStatus.COMPLETED
    assert dispatcher.deliveries == []
    assert dispatcher.deleted == []
    assert (await task_store.get_task(task.id)).status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_deleted_subject_completes_without_dispatch(execution, task_store, dispatcher):
    task = await task_store.upsert_task("gone", ReminderKind.TWO_HOURS, T0)

    status = await execution.execute(task)

    assert status is TaskStatus.COMPLETED
    assert dispatcher.deliveries == []


@pytest.mark.asyncio
async def test_recipient_lookup_error_fails_task(execution, task_store, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    subjects.lookup_error = ConnectionError("database is locked")
    task = await task_store.upsert_task("evt-1", ReminderKind.TWO_HOURS, T0)

    status = await execution.execute(task)

    assert status is TaskStatus.FAILED
    assert dispatcher.deliveries == []


@pytest.mark.asyncio
async def test_dispatch_failure_fails_task_without_retry(execution, task_store, subjects, failing_dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, T0 - timedelta(seconds=1))

    await execution.arm(task)

    assert (await task_store.get_task(task.id)).status is TaskStatus.FAILED

    # A later sweep rediscovering the row finds nothing pending
    assert await task_store.find_pending_due_between(T0 - timedelta(hours=1), T0 + timedelta(hours=1)) == []


@pytest.mark.asyncio
async def test_supersession_runs_before_delivery(execution, task_store, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, T0)

    await execution.execute(task)

    assert dispatcher.deleted == [("evt-1", [ReminderKind.DAY_BEFORE, ReminderKind.TWO_HOURS])]


@pytest.mark.asyncio
async def test_supersession_failure_does_not_block_delivery(execution, task_store, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    dispatcher.delete_error = RuntimeError("notification table locked")
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0)

    status = await execution.execute(task)

    assert status is TaskStatus.COMPLETED
    assert len(dispatcher.deliveries) == 1


@pytest.mark.asyncio
async def test_disarm_removes_only_subject_timers(execution, task_store, scheduler):
    a = await task_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, T0 + timedelta(hours=1))
    b = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(hours=2))
    c = await task_store.upsert_task("evt-2", ReminderKind.STARTING, T0 + timedelta(hours=2))
    for task in (a, b, c):
        await execution.arm(task)

    removed = execution.disarm("evt-1")

    assert removed == 2
    assert execution.armed_task_ids() == [c.id]
    assert [job.id for job in scheduler.get_jobs()] == [f"reminder:{c.id}"]
    assert execution.disarm("evt-1") == 0


@pytest.mark.asyncio
async def test_cancelled_before_firing_does_not_deliver(
    realtime_execution, real_clock_store, subjects, dispatcher
):
    subjects.add("evt-1", utc_now() + timedelta(hours=1), recipients=["u1"])
    task = await real_clock_store.upsert_task("evt-1", ReminderKind.STARTING, utc_now() + timedelta(seconds=0.2))
    await realtime_execution.arm(task)

    realtime_execution.disarm("evt-1")
    await real_clock_store.cancel_pending_for("evt-1")
    await asyncio.sleep(0.6)

    assert dispatcher.deliveries == []


@pytest.mark.asyncio
async def test_fire_skips_task_cancelled_in_store(execution, task_store, subjects, dispatcher):
    """A timer that slipped past disarm still checks the stored status."""
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0)
    await task_store.cancel_pending_for("evt-1")

    await execution._fire(task.id)

    assert dispatcher.deliveries == []
    assert (await task_store.get_task(task.id)).status is TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_fire_rearms_task_moved_later(execution, task_store, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0)
    await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(hours=2))

    await execution._fire(task.id)

    assert dispatcher.deliveries == []
    assert execution.is_armed(task.id)


@pytest.mark.asyncio
async def test_arm_skipped_while_task_in_flight(execution, task_store, subjects, dispatcher):
    """A sweep rediscovering a task mid-delivery must not deliver it again."""
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0)
    rearm_results = []

    original_deliver = dispatcher.deliver

    async def deliver_and_rearm(*args, **kwargs):
        rearm_results.append(await execution.arm(task))
        await original_deliver(*args, **kwargs)

    dispatcher.deliver = deliver_and_rearm

    await execution.arm(task)

    assert rearm_results == [False]
    assert len(dispatcher.deliveries) == 1


@pytest.mark.asyncio
async def test_schedule_immediately_arms_each_task(execution, task_store):
    tasks = [
        await task_store.upsert_task("evt-1", ReminderKind.ONE_HOUR, T0 + timedelta(minutes=10)),
        await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=70)),
    ]

    armed = await execution.schedule_immediately(tasks + tasks)

    assert armed == 2
    assert sorted(execution.armed_task_ids()) == sorted(t.id for t in tasks)


@pytest.mark.asyncio
async def test_shutdown_clears_timers_without_running_them(execution, task_store, scheduler, dispatcher):
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=10))
    await execution.arm(task)

    cleared = execution.shutdown()

    assert cleared == 1
    assert execution.armed_task_ids() == []
    assert scheduler.get_jobs() == []
    assert dispatcher.deliveries == []
    assert await execution.arm(task) is False
    assert (await task_store.get_task(task.id)).status is TaskStatus.PENDING


@pytest.mark.asyncio
async def test_arm_replaces_timer_when_task_moved_earlier(execution, task_store, scheduler):
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=20))
    await execution.arm(task)
    first_run = scheduler.get_job(f"reminder:{task.id}").trigger.run_date

    moved = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=5))

    assert moved.id == task.id
    assert await execution.arm(moved) is True
    assert execution.armed_task_ids() == [task.id]
    jobs = [job for job in scheduler.get_jobs() if job.id.startswith("reminder:")]
    assert len(jobs) == 1
    assert first_run - jobs[0].trigger.run_date > timedelta(minutes=14)


@pytest.mark.asyncio
async def test_arm_moved_into_past_executes_now(execution, task_store, scheduler, subjects, dispatcher):
    subjects.add("evt-1", T0, recipients=["u1"])
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=20))
    await execution.arm(task)

    moved = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 - timedelta(minutes=1))
    await execution.arm(moved)

    assert len(dispatcher.deliveries) == 1
    assert execution.armed_task_ids() == []
    assert scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_rearm_with_same_instant_keeps_timer(execution, task_store, scheduler):
    task = await task_store.upsert_task("evt-1", ReminderKind.STARTING, T0 + timedelta(minutes=20))
    await execution.arm(task)
    job = scheduler.get_job(f"reminder:{task.id}")

    same = await task_store.get_task(task.id)

    assert await execution.arm(same) is False
    assert scheduler.get_job(f"reminder:{task.id}").trigger.run_date == job.trigger.run_date
