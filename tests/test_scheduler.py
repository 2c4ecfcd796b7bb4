import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chatagent.db import Database
from chatagent.dispatcher import SCHEDULED_MESSAGE_PREFIX, ExecutionDispatcher
from chatagent.errors import InvalidSchedule, TaskNotFound
from chatagent.gate import ConfirmationGate
from chatagent.ledger import InvocationLedger
from chatagent.models import AtTrigger, CronTrigger, ToolCallState, ToolCallStatus
from chatagent.scheduler import TaskScheduler
from chatagent.tools.base import Tool, ToolContext
from chatagent.tools.registry import ToolRegistry
from chatagent.tools.schedule_tools import ExecuteTaskTool

START = datetime(2026, 10, 19, 12, 0, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class CountingTool(Tool):
    description = "Counts invocations."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"description": {"type": "string"}},
    }

    def __init__(self, name: str, requires_confirmation: bool = False, fail: bool = False) -> None:
        self.name = name
        self.requires_confirmation = requires_confirmation
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("backend down")
        return f"done {kwargs.get('description')}"


def _scheduler(tmp_path, tools: list[Tool], clock: FakeClock) -> tuple[Database, TaskScheduler]:
    db = Database(tmp_path / "agent.db")
    db.initialize()
    registry = ToolRegistry(tools)
    ledger = InvocationLedger(db)
    gate = ConfirmationGate(registry, ledger, ExecutionDispatcher(db, registry, ledger), clock=clock)
    return db, TaskScheduler(db=db, gate=gate, clock=clock)


@pytest.mark.asyncio
async def test_at_task_is_listed_then_removed_after_firing(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    when = START + timedelta(hours=1)

    task_id = scheduler.schedule(AtTrigger(when=when), "executeTask", "ping", "conv-1")

    tasks = scheduler.list("conv-1")
    assert [(task.id, task.next_fire_at) for task in tasks] == [(task_id, when)]

    assert await scheduler.fire_due(clock.advance(minutes=59)) == []
    states = await scheduler.fire_due(clock.advance(minutes=1))

    assert states == [ToolCallState.executed("Running scheduled task: ping")]
    assert scheduler.list("conv-1") == []


@pytest.mark.asyncio
async def test_delayed_zero_fires_exactly_once(tmp_path):
    clock = FakeClock(START)
    tool = CountingTool("executeTask")
    db, scheduler = _scheduler(tmp_path, [tool], clock)

    scheduler.schedule({"type": "delayed", "delayInSeconds": 0}, "executeTask", "ping", "conv-1")
    first = await scheduler.fire_due(clock.advance(seconds=0))
    second = await scheduler.fire_due(clock.advance(seconds=0))

    assert first == [ToolCallState.executed("done ping")]
    assert second == []
    assert tool.calls == [{"description": "ping"}]
    assert db.list_scheduled_tasks() == []


@pytest.mark.asyncio
async def test_cron_advances_each_firing_and_cancel_is_permanent(tmp_path):
    clock = FakeClock(START)
    tool = CountingTool("executeTask")
    _, scheduler = _scheduler(tmp_path, [tool], clock)

    task_id = scheduler.schedule({"type": "cron", "cron": "* * * * *"}, "executeTask", "tick", "conv-1")
    first_fire = scheduler.get(task_id).next_fire_at
    assert first_fire == datetime(2026, 10, 19, 12, 1, tzinfo=timezone.utc)

    await scheduler.fire_due(clock.advance(seconds=30))
    second_fire = scheduler.get(task_id).next_fire_at
    assert second_fire == first_fire + timedelta(minutes=1)

    await scheduler.fire_due(clock.advance(minutes=1))
    assert scheduler.get(task_id).next_fire_at == second_fire + timedelta(minutes=1)
    assert len(tool.calls) == 2

    scheduler.cancel(task_id)
    assert await scheduler.fire_due(clock.advance(minutes=5)) == []
    assert scheduler.list() == []
    assert len(tool.calls) == 2


@pytest.mark.asyncio
async def test_missed_cron_occurrences_are_skipped(tmp_path):
    clock = FakeClock(START)
    tool = CountingTool("executeTask")
    _, scheduler = _scheduler(tmp_path, [tool], clock)
    task_id = scheduler.schedule(CronTrigger(expression="* * * * *"), "executeTask", "tick", "conv-1")

    now = clock.advance(minutes=10)
    await scheduler.fire_due(now)

    assert len(tool.calls) == 1
    assert scheduler.get(task_id).next_fire_at == datetime(2026, 10, 19, 12, 11, tzinfo=timezone.utc)


def test_invalid_schedules_persist_nothing(tmp_path):
    clock = FakeClock(START)
    db, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)

    with pytest.raises(InvalidSchedule):
        scheduler.schedule(AtTrigger(when=START - timedelta(hours=1)), "executeTask", "late", "conv-1")
    with pytest.raises(InvalidSchedule):
        scheduler.schedule({"type": "cron", "cron": "every day"}, "executeTask", "x", "conv-1")
    with pytest.raises(InvalidSchedule):
        scheduler.schedule({"type": "delayed", "delayInSeconds": 5}, "executeTask", object(), "conv-1")

    assert db.list_scheduled_tasks() == []


def test_cancel_unknown_id_leaves_store_unchanged(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    task_id = scheduler.schedule({"type": "delayed", "delayInSeconds": 60}, "executeTask", "x", "conv-1")

    with pytest.raises(TaskNotFound):
        scheduler.cancel("task-does-not-exist")

    assert [task.id for task in scheduler.list()] == [task_id]


def test_list_is_ordered_by_next_fire_time(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    late = scheduler.schedule({"type": "delayed", "delayInSeconds": 600}, "executeTask", "late", "conv-1")
    early = scheduler.schedule({"type": "delayed", "delayInSeconds": 60}, "executeTask", "early", "conv-1")
    other = scheduler.schedule({"type": "delayed", "delayInSeconds": 1}, "executeTask", "other", "conv-2")

    assert [task.id for task in scheduler.list("conv-1")] == [early, late]
    assert [task.id for task in scheduler.list()] == [other, early, late]


@pytest.mark.asyncio
async def test_tasks_survive_restart(tmp_path):
    clock = FakeClock(START)
    tool = CountingTool("executeTask")
    db, scheduler = _scheduler(tmp_path, [tool], clock)
    task_id = scheduler.schedule({"type": "delayed", "delayInSeconds": 30}, "executeTask", "persist", "conv-1")

    registry = ToolRegistry([tool])
    ledger = InvocationLedger(db)
    gate = ConfirmationGate(registry, ledger, ExecutionDispatcher(db, registry, ledger), clock=clock)
    restarted = TaskScheduler(db=db, gate=gate, clock=clock)

    assert [task.id for task in restarted.list()] == [task_id]
    states = await restarted.fire_due(clock.advance(seconds=30))
    assert states == [ToolCallState.executed("done persist")]


@pytest.mark.asyncio
async def test_scheduled_sensitive_action_waits_for_confirmation(tmp_path):
    clock = FakeClock(START)
    tool = CountingTool("createBooking", requires_confirmation=True)
    db, scheduler = _scheduler(tmp_path, [tool], clock)
    scheduler.schedule({"type": "delayed", "delayInSeconds": 0}, "createBooking", {"description": "weekly"}, "conv-1")

    states = await scheduler.fire_due(clock())

    assert [state.status for state in states] == [ToolCallStatus.PENDING]
    assert tool.calls == []
    pending = InvocationLedger(db).pending("conv-1")
    assert [call.origin for call in pending] == ["scheduler"]
    assert db.get_transcript("conv-1")[-1]["content"].startswith(SCHEDULED_MESSAGE_PREFIX)


@pytest.mark.asyncio
async def test_failing_action_is_recorded_and_other_tasks_still_fire(tmp_path):
    clock = FakeClock(START)
    broken = CountingTool("getAllBookings", fail=True)
    working = CountingTool("executeTask")
    db, scheduler = _scheduler(tmp_path, [broken, working], clock)
    failing_id = scheduler.schedule({"type": "delayed", "delayInSeconds": 1}, "getAllBookings", "x", "conv-1")
    scheduler.schedule({"type": "delayed", "delayInSeconds": 2}, "executeTask", "y", "conv-1")

    states = await scheduler.fire_due(clock.advance(seconds=5))

    assert [state.status for state in states] == [ToolCallStatus.FAILED, ToolCallStatus.EXECUTED]
    assert scheduler.get(failing_id) is None
    transcript = [entry["content"] for entry in db.get_transcript("conv-1")]
    assert transcript == [
        f"{SCHEDULED_MESSAGE_PREFIX}getAllBookings failed: backend down",
        f"{SCHEDULED_MESSAGE_PREFIX}executeTask -> done y",
    ]


@pytest.mark.asyncio
async def test_invalid_payload_for_action_is_reported(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    scheduler.schedule({"type": "delayed", "delayInSeconds": 0}, "executeTask", {"unexpected": 1}, "conv-1")

    states = await scheduler.fire_due(clock())

    assert [state.status for state in states] == [ToolCallStatus.FAILED]
    assert scheduler.list() == []


@pytest.mark.asyncio
async def test_cancel_conversation_drops_only_its_tasks(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    scheduler.schedule({"type": "delayed", "delayInSeconds": 5}, "executeTask", "a", "conv-1")
    kept = scheduler.schedule({"type": "delayed", "delayInSeconds": 5}, "executeTask", "b", "conv-2")

    assert scheduler.cancel_conversation("conv-1") == 1
    assert await scheduler.fire_due(clock.advance(seconds=5)) == [
        ToolCallState.executed("Running scheduled task: b")
    ]
    assert scheduler.get(kept) is None


@pytest.mark.asyncio
async def test_run_forever_fires_newly_scheduled_task(tmp_path):
    db = Database(tmp_path / "agent.db")
    db.initialize()
    registry = ToolRegistry([ExecuteTaskTool()])
    ledger = InvocationLedger(db)
    gate = ConfirmationGate(registry, ledger, ExecutionDispatcher(db, registry, ledger))
    scheduler = TaskScheduler(db=db, gate=gate, poll_interval_seconds=5.0)

    loop_task = asyncio.create_task(scheduler.run_forever())
    await asyncio.sleep(0.05)
    scheduler.schedule({"type": "delayed", "delayInSeconds": 0}, "executeTask", "wake", "conv-1")

    for _ in range(100):
        if db.get_transcript("conv-1"):
            break
        await asyncio.sleep(0.02)

    scheduler.stop()
    await asyncio.wait_for(loop_task, timeout=2)

    assert [entry["content"] for entry in db.get_transcript("conv-1")] == [
        f"{SCHEDULED_MESSAGE_PREFIX}executeTask -> Running scheduled task: wake"
    ]
    assert scheduler.list() == []


class BlockingTool(Tool):
    name = "slow"
    description = "Waits until released."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"description": {"type": "string"}},
    }

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        self.started.set()
        await self.release.wait()
        return "slow done"


@pytest.mark.asyncio
async def test_six_field_cron_keeps_seconds_first_wire_form(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)

    from_wire = scheduler.schedule({"type": "cron", "cron": "0 0 9 * * *"}, "executeTask", "daily", "conv-1")
    from_trigger = scheduler.schedule(CronTrigger(expression="0 9 * * * 0"), "executeTask", "daily", "conv-1")

    expected = datetime(2026, 10, 20, 9, 0, 0, tzinfo=timezone.utc)
    for task_id in (from_wire, from_trigger):
        task = scheduler.get(task_id)
        assert task.trigger == CronTrigger(expression="0 9 * * * 0")
        assert task.next_fire_at == expected
        assert task.describe()["trigger"] == "0 0 9 * * *"


@pytest.mark.asyncio
async def test_cancel_during_earlier_action_stops_later_firings(tmp_path):
    clock = FakeClock(START)
    slow = BlockingTool()
    counter = CountingTool("count")
    _, scheduler = _scheduler(tmp_path, [slow, counter], clock)
    scheduler.schedule({"type": "delayed", "delayInSeconds": 1}, "slow", "a", "conv-1")
    one_shot = scheduler.schedule({"type": "delayed", "delayInSeconds": 20}, "count", "b", "conv-1")
    cron = scheduler.schedule({"type": "cron", "cron": "* * * * *"}, "count", "c", "conv-1")
    clock.advance(seconds=40)

    firing = asyncio.create_task(scheduler.fire_due())
    await asyncio.wait_for(slow.started.wait(), timeout=5)
    scheduler.cancel(one_shot)
    scheduler.cancel(cron)
    slow.release.set()
    states = await asyncio.wait_for(firing, timeout=5)

    assert [state.status for state in states] == [ToolCallStatus.EXECUTED]
    assert counter.calls == []
    assert scheduler.list() == []


def test_cancel_removes_index_entries(tmp_path):
    clock = FakeClock(START)
    _, scheduler = _scheduler(tmp_path, [ExecuteTaskTool()], clock)
    far = AtTrigger(when=START + timedelta(days=365))
    first = scheduler.schedule(far, "executeTask", "a", "conv-1")
    scheduler.schedule(far, "executeTask", "b", "conv-1")
    scheduler.schedule(far, "executeTask", "c", "conv-2")

    scheduler.cancel(first)
    assert scheduler.index_size() == 2

    assert scheduler.cancel_conversation("conv-1") == 1
    assert scheduler.index_size() == 1
