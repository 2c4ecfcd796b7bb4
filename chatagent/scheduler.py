"""Durable scheduler for one-shot, delayed and cron tool calls.

Tasks live in SQLite and are mirrored in an in-memory min-heap keyed by
next fire time. A single dispatch loop pops due tasks and feeds them
through the confirmation gate as if the model had just called the action.
"""

from __future__ import annotations

import asyncio
import heapq
import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from chatagent.db import Database
from chatagent.dispatcher import SCHEDULED_MESSAGE_PREFIX
from chatagent.errors import ArgumentValidationError, InvalidSchedule, MissingContextError, TaskNotFound
from chatagent.models import CronTrigger, ScheduledTask, ToolCallState, Trigger
from chatagent.tools.base import ToolContext
from chatagent.triggers import (
    first_fire_time,
    next_cron_occurrence,
    parse_trigger,
    trigger_from_row,
    trigger_to_row,
)

if TYPE_CHECKING:
    from chatagent.gate import ConfirmationGate

LOGGER = logging.getLogger(__name__)


class TaskScheduler:
    """Owns the task index and the dispatch loop that fires due tasks."""

    def __init__(
        self,
        db: Database,
        gate: ConfirmationGate,
        clock: Callable[[], datetime] | None = None,
        poll_interval_seconds: float = 30.0,
        past_tolerance_seconds: float = 5.0,
    ) -> None:
        self._db = db
        self._gate = gate
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._poll_interval_seconds = poll_interval_seconds
        self._past_tolerance = timedelta(seconds=past_tolerance_seconds)
        # Guards the heap and every store write that touches task rows.
        self._lock = threading.Lock()
        self._heap: list[tuple[datetime, str]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._reload()

    def _reload(self) -> None:
        with self._lock:
            self._heap = [(row["next_fire_at"], row["id"]) for row in self._db.list_scheduled_tasks()]
            heapq.heapify(self._heap)
        if self._heap:
            LOGGER.info("Loaded %d scheduled tasks from store", len(self._heap))

    def schedule(
        self,
        trigger: Trigger | dict[str, Any],
        action_name: str,
        payload: Any,
        conversation_id: str,
    ) -> str:
        """Validate and persist a task. Returns the task id."""

        parsed = parse_trigger(trigger)
        next_fire_at = first_fire_time(parsed, self._clock(), self._past_tolerance)
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise InvalidSchedule(f"Task payload is not JSON serializable: {exc}") from exc

        task_id = f"task-{uuid.uuid4().hex}"
        trigger_type, trigger_value = trigger_to_row(parsed)
        with self._lock:
            self._db.insert_scheduled_task(
                task_id=task_id,
                conversation_id=conversation_id,
                action_name=action_name,
                payload=payload,
                trigger_type=trigger_type,
                trigger_value=trigger_value,
                next_fire_at=next_fire_at,
            )
            heapq.heappush(self._heap, (next_fire_at, task_id))
        LOGGER.info(
            "Scheduled %s task %s for %s (action=%s, conversation=%s)",
            trigger_type,
            task_id,
            next_fire_at.isoformat(),
            action_name,
            conversation_id,
        )
        self._notify()
        return task_id

    def get(self, task_id: str) -> ScheduledTask | None:
        row = self._db.get_scheduled_task(task_id)
        return _task_from_row(row) if row else None

    def list(self, conversation_id: str | None = None) -> list[ScheduledTask]:
        return [_task_from_row(row) for row in self._db.list_scheduled_tasks(conversation_id)]

    def cancel(self, task_id: str) -> None:
        """Remove a task. A firing whose action already started still completes."""

        with self._lock:
            if not self._db.delete_scheduled_task(task_id):
                raise TaskNotFound(f"No scheduled task with id {task_id}")
            self._drop_from_heap({task_id})
        LOGGER.info("Cancelled scheduled task %s", task_id)

    def cancel_conversation(self, conversation_id: str) -> int:
        with self._lock:
            dropped = {
                row["id"]
                for row in self._db.list_scheduled_tasks(conversation_id)
                if self._db.delete_scheduled_task(row["id"])
            }
            self._drop_from_heap(dropped)
        removed = len(dropped)
        if removed:
            LOGGER.info("Cancelled %d scheduled tasks for conversation %s", removed, conversation_id)
        return removed

    def _drop_from_heap(self, task_ids: set[str]) -> None:
        # Caller holds the lock.
        if task_ids:
            self._heap = [entry for entry in self._heap if entry[1] not in task_ids]
            heapq.heapify(self._heap)

    def index_size(self) -> int:
        with self._lock:
            return len(self._heap)

    async def fire_due(self, now: datetime | None = None) -> list[ToolCallState]:
        """Fire every task due at or before ``now``, oldest first.

        Tasks are claimed one at a time, so a cancel that lands while an
        earlier action is still running stops the later firing.
        """

        now = now or self._clock()
        states: list[ToolCallState] = []
        while True:
            task = self._claim_next(now)
            if task is None:
                return states
            states.append(await self._fire(task))

    def _claim_next(self, now: datetime) -> ScheduledTask | None:
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                fire_at, task_id = heapq.heappop(self._heap)
                row = self._db.get_scheduled_task(task_id)
                if row is None or row["next_fire_at"] != fire_at:
                    continue  # cancelled or superseded
                task = _task_from_row(row)
                if isinstance(task.trigger, CronTrigger):
                    # Missed occurrences are skipped, not replayed.
                    following = next_cron_occurrence(task.trigger.expression, now)
                    self._db.update_task_next_fire(task_id, following)
                    heapq.heappush(self._heap, (following, task_id))
                else:
                    self._db.delete_scheduled_task(task_id)
                return task
        return None

    async def _fire(self, task: ScheduledTask) -> ToolCallState:
        LOGGER.info("Firing scheduled task %s (action=%s)", task.id, task.action_name)
        arguments = task.payload if isinstance(task.payload, dict) else {"description": task.payload}
        context = ToolContext(conversation_id=task.conversation_id, db=self._db, scheduler=self)
        try:
            call = self._gate.build_call(
                task.conversation_id, task.action_name, arguments, origin="scheduler"
            )
        except ArgumentValidationError as exc:
            LOGGER.warning("Scheduled task %s has invalid arguments: %s", task.id, exc)
            self._db.add_message(
                task.conversation_id,
                role="assistant",
                content=f"{SCHEDULED_MESSAGE_PREFIX}{task.action_name} failed: {exc}",
                origin="scheduler",
            )
            return ToolCallState.failed(str(exc))

        try:
            return await self._gate.submit(call, context)
        except MissingContextError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Scheduled task %s could not be submitted", task.id)
            return ToolCallState.failed(str(exc))

    def seconds_until_next(self) -> float:
        with self._lock:
            if not self._heap:
                return self._poll_interval_seconds
            delta = (self._heap[0][0] - self._clock()).total_seconds()
        return min(max(delta, 0.0), self._poll_interval_seconds)

    async def run_forever(self) -> None:
        """Run the dispatch loop until stop() is called."""

        self._loop = asyncio.get_running_loop()
        while not self._stop_event.is_set():
            self._wakeup.clear()
            try:
                await self.fire_due()
            except MissingContextError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduler dispatch pass failed")
            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.seconds_until_next())
            except asyncio.TimeoutError:
                pass
        self._loop = None

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
        self._notify()

    def _notify(self) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._wakeup.set)


def _task_from_row(row: dict[str, Any]) -> ScheduledTask:
    return ScheduledTask(
        id=row["id"],
        conversation_id=row["conversation_id"],
        action_name=row["action_name"],
        payload=row["payload"],
        trigger=trigger_from_row(row["trigger_type"], row["trigger_value"]),
        next_fire_at=row["next_fire_at"],
        created_at=row["created_at"],
    )
