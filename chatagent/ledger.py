"""Per-conversation record of tool-call requests and their resolution."""

from __future__ import annotations

from typing import Any

from chatagent.db import Database
from chatagent.models import ToolCall, ToolCallState, ToolCallStatus


class InvocationLedger:
    """Typed view over the ``tool_calls`` table.

    Every state change goes through :meth:`transition`, a compare-and-set on
    the stored status, so concurrent resolvers of the same call cannot both
    win.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def record(self, call: ToolCall, state: ToolCallState) -> None:
        self._db.insert_tool_call(
            call_id=call.id,
            conversation_id=call.conversation_id,
            tool_name=call.tool_name,
            arguments=call.arguments,
            origin=call.origin,
            status=state.status.value,
            created_at=call.created_at,
        )

    def get(self, call_id: str) -> tuple[ToolCall, ToolCallState] | None:
        row = self._db.get_tool_call(call_id)
        if row is None:
            return None
        return _call_from_row(row), _state_from_row(row)

    def state(self, call_id: str) -> ToolCallState | None:
        entry = self.get(call_id)
        return entry[1] if entry else None

    def transition(self, call_id: str, expected: ToolCallStatus, new_state: ToolCallState) -> bool:
        if expected.is_terminal:
            return False
        return self._db.transition_tool_call(
            call_id,
            expected_status=expected.value,
            new_status=new_state.status.value,
            result=new_state.result,
            error=new_state.error,
        )

    def list(
        self, conversation_id: str, status: ToolCallStatus | None = None
    ) -> list[tuple[ToolCall, ToolCallState]]:
        rows = self._db.list_tool_calls(conversation_id, status.value if status else None)
        return [(_call_from_row(row), _state_from_row(row)) for row in rows]

    def pending(self, conversation_id: str) -> list[ToolCall]:
        return [call for call, _ in self.list(conversation_id, ToolCallStatus.PENDING)]


def _call_from_row(row: dict[str, Any]) -> ToolCall:
    return ToolCall(
        id=row["id"],
        tool_name=row["tool_name"],
        arguments=row["arguments"],
        conversation_id=row["conversation_id"],
        created_at=row["created_at"],
        origin=row["origin"],
    )


def _state_from_row(row: dict[str, Any]) -> ToolCallState:
    return ToolCallState(ToolCallStatus(row["status"]), result=row["result"], error=row["error"])
