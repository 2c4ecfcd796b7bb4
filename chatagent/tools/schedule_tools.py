"""Tools that let the model manage its own scheduled tasks."""

from __future__ import annotations

from typing import Any

from chatagent.errors import TaskNotFound
from chatagent.tools.base import Tool, ToolContext
from chatagent.triggers import TRIGGER_JSON_SCHEMA, parse_trigger

EXECUTE_TASK_ACTION = "executeTask"


class ScheduleTaskTool(Tool):
    """Register a future ``executeTask`` call for this conversation."""

    name = "scheduleTask"
    description = "Schedule a task to be executed at a later time, after a delay, or on a cron schedule."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "when": TRIGGER_JSON_SCHEMA,
            "description": {"type": "string", "description": "What to do when the task fires."},
        },
        "required": ["when", "description"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any]:
        scheduler = context.require_scheduler()
        trigger = parse_trigger(kwargs["when"])
        task_id = scheduler.schedule(trigger, EXECUTE_TASK_ACTION, kwargs["description"], context.conversation_id)
        task = scheduler.get(task_id)
        next_fire = task.next_fire_at.isoformat() if task else None
        return {
            "taskId": task_id,
            "message": f'Task scheduled for type "{trigger.kind}", next run at {next_fire}',
        }


class GetScheduledTasksTool(Tool):
    name = "getScheduledTasks"
    description = "List all tasks that have been scheduled in this conversation."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> list[dict[str, Any]] | str:
        tasks = context.require_scheduler().list(context.conversation_id)
        if not tasks:
            return "No scheduled tasks found."
        return [task.describe() for task in tasks]


class CancelScheduledTaskTool(Tool):
    name = "cancelScheduledTask"
    description = "Cancel a scheduled task using its ID."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "taskId": {"type": "string", "description": "The ID of the task to cancel."},
        },
        "required": ["taskId"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        scheduler = context.require_scheduler()
        task_id = kwargs["taskId"]
        task = scheduler.get(task_id)
        # Tasks of other conversations are invisible here.
        if task is None or task.conversation_id != context.conversation_id:
            raise TaskNotFound(f"No scheduled task with id {task_id}")
        scheduler.cancel(task_id)
        return f"Task {task_id} has been successfully canceled."


class ExecuteTaskTool(Tool):
    """Target action of tasks created by scheduleTask."""

    name = EXECUTE_TASK_ACTION
    description = "Run a previously scheduled task. Invoked by the scheduler."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "description": {"type": "string"},
        },
        "required": ["description"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        return f"Running scheduled task: {kwargs['description']}"
