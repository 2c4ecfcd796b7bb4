"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from chatagent.errors import MissingContextError

if TYPE_CHECKING:
    from chatagent.db import Database
    from chatagent.scheduler import TaskScheduler


@dataclass(slots=True)
class ToolContext:
    """Handles a tool may need, passed explicitly on every run."""

    conversation_id: str
    db: Database | None = None
    scheduler: TaskScheduler | None = None

    def require_scheduler(self) -> TaskScheduler:
        if self.scheduler is None:
            raise MissingContextError("No task scheduler bound to this tool context")
        return self.scheduler

    def require_db(self) -> Database:
        if self.db is None:
            raise MissingContextError("No database bound to this tool context")
        return self.db


class Tool(ABC):
    """Base class for all agent tools.

    Tools with ``requires_confirmation`` set are parked by the confirmation
    gate until a human approves them.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    requires_confirmation: bool = False

    @abstractmethod
    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        """Execute tool with validated arguments."""
