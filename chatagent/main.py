"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone

from chatagent.agent_runtime import AgentRuntime
from chatagent.commands import CommandDispatcher
from chatagent.config import Settings, load_settings
from chatagent.db import Database
from chatagent.dispatcher import ExecutionDispatcher
from chatagent.gate import ConfirmationGate
from chatagent.ledger import InvocationLedger
from chatagent.llm.openrouter import OpenRouterProvider
from chatagent.models import Message
from chatagent.scheduler import TaskScheduler
from chatagent.tools.booking_tools import BookingApiClient, build_booking_registry
from chatagent.tools.registry import ToolRegistry
from chatagent.tools.schedule_tools import (
    CancelScheduledTaskTool,
    ExecuteTaskTool,
    GetScheduledTasksTool,
    ScheduleTaskTool,
)
from chatagent.tools.time_tool import GetLocalTimeTool

LOGGER = logging.getLogger(__name__)

CONSOLE_CONVERSATION_ID = "console"


def build_registry(settings: Settings) -> ToolRegistry:
    """Compose the closed tool set from its sub-registries."""

    core = ToolRegistry(
        [
            GetLocalTimeTool(),
            ScheduleTaskTool(),
            GetScheduledTasksTool(),
            CancelScheduledTaskTool(),
            ExecuteTaskTool(),
        ]
    )
    return core.merge(build_booking_registry(BookingApiClient.from_settings(settings)))


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    tools = build_registry(settings)
    ledger = InvocationLedger(db)
    gate = ConfirmationGate(tools, ledger, ExecutionDispatcher(db, tools, ledger))
    scheduler = TaskScheduler(
        db=db,
        gate=gate,
        poll_interval_seconds=settings.scheduler_poll_interval_seconds,
        past_tolerance_seconds=settings.schedule_past_tolerance_seconds,
    )
    runtime = AgentRuntime(
        db=db,
        llm=OpenRouterProvider(settings),
        tool_registry=tools,
        gate=gate,
        scheduler=scheduler,
        memory_window_messages=settings.memory_window_messages,
        request_timeout_seconds=settings.request_timeout_seconds,
        command_dispatcher=CommandDispatcher(gate=gate, db=db, scheduler=scheduler),
    )

    scheduler_task = asyncio.create_task(scheduler.run_forever(), name="task-scheduler")
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            try:
                reply = await runtime.handle_message(
                    Message(
                        conversation_id=CONSOLE_CONVERSATION_ID,
                        sender_id="console",
                        text=text,
                        timestamp=datetime.now(timezone.utc),
                    )
                )
            except asyncio.TimeoutError:
                LOGGER.warning("Model request timed out")
                continue
            print(reply, flush=True)
    finally:
        scheduler.stop()
        await scheduler_task
        LOGGER.info("Agent shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
