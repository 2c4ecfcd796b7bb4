"""Command dispatcher for @-prefixed messages.

Commands bypass the LLM and talk to the confirmation gate and scheduler
directly. An unrecognised @command returns None, letting it fall through to
the LLM.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from chatagent.errors import AlreadyResolved, UnknownCall
from chatagent.models import ApprovalDecision, ApprovalOutcome, Message, ToolCallState, ToolCallStatus
from chatagent.tools.base import ToolContext

if TYPE_CHECKING:
    from chatagent.db import Database
    from chatagent.gate import ConfirmationGate
    from chatagent.scheduler import TaskScheduler

LOGGER = logging.getLogger(__name__)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split an @-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid @command.
    """
    text = text.strip()
    if not text.startswith("@"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


def format_state(tool_name: str, state: ToolCallState) -> str:
    if state.status is ToolCallStatus.EXECUTED:
        result = state.result if isinstance(state.result, str) else json.dumps(state.result, default=str)
        return f"{tool_name} executed: {result}"
    if state.status is ToolCallStatus.FAILED:
        return f"{tool_name} failed: {state.error}"
    if state.status is ToolCallStatus.REJECTED:
        return f"{tool_name} was rejected and did not run."
    return f"{tool_name} is {state.status.value}."


class CommandDispatcher:
    """Routes @-prefixed messages to approval and task handlers.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(
        self,
        gate: ConfirmationGate,
        db: Database,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self._gate = gate
        self._db = db
        self._scheduler = scheduler

    async def dispatch(self, message: Message) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(message.text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command in ("approve", "yes"):
            return await self._handle_decision(args, message, ApprovalOutcome.YES)
        if command in ("reject", "no"):
            return await self._handle_decision(args, message, ApprovalOutcome.NO)
        if command == "pending":
            return self._handle_pending(message.conversation_id)
        if command == "tasks":
            return self._handle_tasks(message.conversation_id)
        if command == "cancel":
            return self._handle_cancel(args, message.conversation_id)
        if command == "clear":
            return self._handle_clear(message.conversation_id)
        return None

    async def _handle_decision(self, args: list[str], message: Message, outcome: ApprovalOutcome) -> str:
        pending = self._gate.pending(message.conversation_id)
        if args:
            call_id = args[0]
        elif len(pending) == 1:
            call_id = pending[0].id
        else:
            verb = "approve" if outcome is ApprovalOutcome.YES else "reject"
            return f"Usage: @{verb} <call id>\n" + self._handle_pending(message.conversation_id)

        context = ToolContext(conversation_id=message.conversation_id, db=self._db, scheduler=self._scheduler)
        try:
            state = await self._gate.resolve(ApprovalDecision(call_id, outcome), context)
        except UnknownCall:
            return f"No tool call with id {call_id}."
        except AlreadyResolved:
            return f"Tool call {call_id} has already been resolved."

        tool_name = next((call.tool_name for call in pending if call.id == call_id), call_id)
        return format_state(tool_name, state)

    def _handle_pending(self, conversation_id: str) -> str:
        pending = self._gate.pending(conversation_id)
        if not pending:
            return "No tool calls are awaiting confirmation."
        lines = [f"- {call.id}: {call.tool_name} {json.dumps(call.arguments)}" for call in pending]
        return "Awaiting confirmation:\n" + "\n".join(lines)

    def _handle_tasks(self, conversation_id: str) -> str:
        if self._scheduler is None:
            return "Task scheduling is not available."
        tasks = self._scheduler.list(conversation_id)
        if not tasks:
            return "No scheduled tasks found."
        lines = [
            f"- {task.id}: {task.action_name} ({task.trigger.kind}) next at {task.next_fire_at.isoformat()}"
            for task in tasks
        ]
        return "Scheduled tasks:\n" + "\n".join(lines)

    def _handle_cancel(self, args: list[str], conversation_id: str) -> str:
        if self._scheduler is None:
            return "Task scheduling is not available."
        if not args:
            return "Usage: @cancel <task id>"
        task_id = args[0]
        task = self._scheduler.get(task_id)
        if task is None or task.conversation_id != conversation_id:
            return f"No scheduled task with id {task_id}."
        self._scheduler.cancel(task_id)
        return f"Task {task_id} has been canceled."

    def _handle_clear(self, conversation_id: str) -> str:
        self._db.clear_history(conversation_id)
        return "Conversation history cleared."
