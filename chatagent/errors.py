"""Error taxonomy for the gate, scheduler and dispatcher."""

from __future__ import annotations


class AgentError(Exception):
    """Base class for recoverable agent errors."""


class ArgumentValidationError(AgentError, ValueError):
    """Tool arguments do not match the tool's parameter schema."""


class UnknownTool(AgentError, LookupError):
    """No capability is registered under the requested name."""


class UnknownCall(AgentError, LookupError):
    """An approval decision referenced a tool call that does not exist."""


class AlreadyResolved(AgentError):
    """An approval decision arrived for a call that is no longer pending."""


class TaskNotFound(AgentError, LookupError):
    """A scheduled task id is not in the task store."""


class InvalidSchedule(AgentError, ValueError):
    """A trigger specification cannot be scheduled."""


class MissingContextError(RuntimeError):
    """A component was used without the conversation or scheduler it needs.

    Programming error, never mapped to a failed result.
    """
