"""Runs approved or unconditional tool calls and records the outcome."""

from __future__ import annotations

import json
import logging

from chatagent.db import Database
from chatagent.errors import MissingContextError, UnknownTool
from chatagent.ledger import InvocationLedger
from chatagent.models import ToolCall, ToolCallState, ToolCallStatus
from chatagent.tools.base import ToolContext
from chatagent.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

SCHEDULED_MESSAGE_PREFIX = "scheduled message: "


class ExecutionDispatcher:
    """Makes exactly one execution attempt per call, never retries."""

    def __init__(self, db: Database, tool_registry: ToolRegistry, ledger: InvocationLedger) -> None:
        self._db = db
        self._tool_registry = tool_registry
        self._ledger = ledger

    async def run(self, call: ToolCall, context: ToolContext) -> ToolCallState:
        state = await self._execute(call, context)

        # Only the approved -> terminal edge is ours; a cleared conversation
        # leaves nothing to update.
        if not self._ledger.transition(call.id, ToolCallStatus.APPROVED, state):
            LOGGER.warning("Tool call %s was no longer approved when %s finished", call.id, call.tool_name)

        self.record_scheduled(call, state)
        return state

    def record_scheduled(self, call: ToolCall, state: ToolCallState) -> None:
        """Append a tagged transcript entry for a scheduler-originated call."""

        if call.origin != "scheduler":
            return
        self._db.add_message(
            call.conversation_id,
            role="assistant",
            content=SCHEDULED_MESSAGE_PREFIX + describe_outcome(call, state),
            origin="scheduler",
        )

    async def _execute(self, call: ToolCall, context: ToolContext) -> ToolCallState:
        try:
            tool = self._tool_registry.get(call.tool_name)
        except UnknownTool as exc:
            LOGGER.warning("Dispatch of %s failed: %s", call.id, exc)
            return ToolCallState.failed(str(exc))

        try:
            result = await tool.run(context, **call.arguments)
        except MissingContextError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s failed for call %s: %s", call.tool_name, call.id, exc)
            return ToolCallState.failed(str(exc) or type(exc).__name__)

        LOGGER.info("Tool %s executed for call %s", call.tool_name, call.id)
        return ToolCallState.executed(result)


def describe_outcome(call: ToolCall, state: ToolCallState) -> str:
    if state.status is ToolCallStatus.EXECUTED:
        result = state.result if isinstance(state.result, str) else json.dumps(state.result, default=str)
        return f"{call.tool_name} -> {result}"
    if state.status is ToolCallStatus.FAILED:
        return f"{call.tool_name} failed: {state.error}"
    if state.status is ToolCallStatus.PENDING:
        return f"{call.tool_name} is awaiting confirmation (call {call.id})"
    return f"{call.tool_name} is {state.status.value}"
