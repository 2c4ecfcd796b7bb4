"""Confirmation gate for sensitive tool calls.

Calls to tools that do not require confirmation are dispatched straight
away. Calls to sensitive tools are parked as pending in the invocation
ledger until a single approval decision resolves them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from chatagent.dispatcher import ExecutionDispatcher
from chatagent.errors import AlreadyResolved, UnknownCall
from chatagent.ledger import InvocationLedger
from chatagent.models import ApprovalDecision, ApprovalOutcome, ToolCall, ToolCallState, ToolCallStatus
from chatagent.tools.base import ToolContext
from chatagent.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


class ConfirmationGate:
    """Decides per call whether it runs now or waits for a human."""

    def __init__(
        self,
        tool_registry: ToolRegistry,
        ledger: InvocationLedger,
        dispatcher: ExecutionDispatcher,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tool_registry = tool_registry
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_call(
        self,
        conversation_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        call_id: str | None = None,
        origin: str = "model",
    ) -> ToolCall:
        """Validate raw arguments and freeze them into a ToolCall.

        Raises ArgumentValidationError for arguments that do not fit the
        schema. Unknown tool names pass through so the dispatcher can report
        them as a failed execution.
        """

        validated = arguments
        if tool_name in self._tool_registry:
            validated = self._tool_registry.validate(tool_name, arguments)
        if not call_id or self._ledger.get(call_id) is not None:
            call_id = f"call-{uuid.uuid4().hex}"
        return ToolCall(
            id=call_id,
            tool_name=tool_name,
            arguments=validated,
            conversation_id=conversation_id,
            created_at=self._clock(),
            origin=origin,
        )

    async def submit(self, call: ToolCall, context: ToolContext) -> ToolCallState:
        if self._tool_registry.requires_confirmation(call.tool_name):
            state = ToolCallState.pending()
            self._ledger.record(call, state)
            LOGGER.info("Tool call %s (%s) awaiting confirmation", call.id, call.tool_name)
            self._dispatcher.record_scheduled(call, state)
            return state

        self._ledger.record(call, ToolCallState.approved())
        return await self._dispatcher.run(call, context)

    async def resolve(self, decision: ApprovalDecision, context: ToolContext) -> ToolCallState:
        entry = self._ledger.get(decision.tool_call_id)
        if entry is None:
            raise UnknownCall(f"No tool call with id {decision.tool_call_id}")
        call, state = entry
        if call.conversation_id != context.conversation_id:
            raise UnknownCall(f"No tool call with id {decision.tool_call_id} in this conversation")
        if state.status is not ToolCallStatus.PENDING:
            raise AlreadyResolved(f"Tool call {call.id} is already {state.status.value}")

        if decision.outcome is ApprovalOutcome.NO:
            rejected = ToolCallState.rejected()
            if not self._ledger.transition(call.id, ToolCallStatus.PENDING, rejected):
                raise AlreadyResolved(f"Tool call {call.id} was resolved concurrently")
            LOGGER.info("Tool call %s (%s) rejected", call.id, call.tool_name)
            return rejected

        if not self._ledger.transition(call.id, ToolCallStatus.PENDING, ToolCallState.approved()):
            raise AlreadyResolved(f"Tool call {call.id} was resolved concurrently")
        LOGGER.info("Tool call %s (%s) approved", call.id, call.tool_name)
        return await self._dispatcher.run(call, context)

    def pending(self, conversation_id: str) -> list[ToolCall]:
        return self._ledger.pending(conversation_id)
