"""Core domain models used across layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class Message:
    """Inbound user message normalized for runtime usage."""

    conversation_id: str
    sender_id: str
    text: str
    timestamp: datetime
    message_id: str | None = None


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    raw: dict[str, Any] | None = None


class ToolCallStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ToolCallStatus.REJECTED, ToolCallStatus.EXECUTED, ToolCallStatus.FAILED}
)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A single tool-call request. Immutable once created."""

    id: str
    tool_name: str
    arguments: dict[str, Any]
    conversation_id: str
    created_at: datetime
    origin: str = "model"


@dataclass(frozen=True, slots=True)
class ToolCallState:
    """Resolution state of a tool call."""

    status: ToolCallStatus
    result: Any = None
    error: str | None = None

    @classmethod
    def pending(cls) -> ToolCallState:
        return cls(ToolCallStatus.PENDING)

    @classmethod
    def approved(cls) -> ToolCallState:
        return cls(ToolCallStatus.APPROVED)

    @classmethod
    def rejected(cls) -> ToolCallState:
        return cls(ToolCallStatus.REJECTED)

    @classmethod
    def executed(cls, result: Any) -> ToolCallState:
        return cls(ToolCallStatus.EXECUTED, result=result)

    @classmethod
    def failed(cls, error: str) -> ToolCallState:
        return cls(ToolCallStatus.FAILED, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ApprovalOutcome(str, enum.Enum):
    YES = "yes"
    NO = "no"

    @classmethod
    def parse(cls, raw: str) -> ApprovalOutcome:
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValueError(f"Approval outcome must be 'yes' or 'no', got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    """Human decision for one pending tool call."""

    tool_call_id: str
    outcome: ApprovalOutcome


@dataclass(frozen=True, slots=True)
class AtTrigger:
    """Fire once at an absolute UTC time."""

    when: datetime
    kind = "scheduled"


@dataclass(frozen=True, slots=True)
class AfterTrigger:
    """Fire once after a delay, counted from scheduling time."""

    delay_seconds: int
    kind = "delayed"


@dataclass(frozen=True, slots=True)
class CronTrigger:
    """Fire on every occurrence of a cron expression until cancelled.

    ``expression`` is kept in croniter field order (seconds, if any, last).
    """

    expression: str
    kind = "cron"

    @property
    def wire_expression(self) -> str:
        """The expression as written on the wire, seconds first."""

        fields = self.expression.split()
        if len(fields) == 6:
            fields = fields[-1:] + fields[:-1]
        return " ".join(fields)


Trigger = AtTrigger | AfterTrigger | CronTrigger


@dataclass(slots=True)
class ScheduledTask:
    """Represents a persisted scheduled task."""

    id: str
    conversation_id: str
    action_name: str
    payload: Any
    trigger: Trigger
    next_fire_at: datetime
    created_at: datetime

    @property
    def is_recurring(self) -> bool:
        return isinstance(self.trigger, CronTrigger)

    def describe(self) -> dict[str, Any]:
        """JSON-friendly view handed back to the model."""

        if isinstance(self.trigger, AtTrigger):
            trigger_value: Any = self.trigger.when.isoformat()
        elif isinstance(self.trigger, AfterTrigger):
            trigger_value = self.trigger.delay_seconds
        else:
            trigger_value = self.trigger.wire_expression
        return {
            "id": self.id,
            "actionName": self.action_name,
            "payload": self.payload,
            "type": self.trigger.kind,
            "trigger": trigger_value,
            "nextFireAt": self.next_fire_at.isoformat(),
        }
