from typing import Any

import pytest

from chatagent.errors import ArgumentValidationError, UnknownTool
from chatagent.tools.base import Tool, ToolContext
from chatagent.tools.registry import ToolRegistry
from chatagent.tools.schedule_tools import ExecuteTaskTool
from chatagent.tools.time_tool import GetLocalTimeTool, resolve_zone


class EchoTool(Tool):
    name = "echo"
    description = "Echo the input."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "text": {"type": "string"},
            "count": {"type": "integer"},
        },
        "required": ["text"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        return kwargs


def test_registry_validates_arguments():
    registry = ToolRegistry([EchoTool()])

    assert registry.validate("echo", {"text": "hi", "count": "3"}) == {"text": "hi", "count": 3}
    assert registry.validate("echo", {"text": "hi"}) == {"text": "hi"}


def test_registry_rejects_missing_required_argument():
    registry = ToolRegistry([EchoTool()])

    with pytest.raises(ArgumentValidationError):
        registry.validate("echo", {"count": 1})


def test_registry_rejects_unexpected_argument():
    registry = ToolRegistry([EchoTool()])

    with pytest.raises(ArgumentValidationError, match="unexpected"):
        registry.validate("echo", {"text": "hi", "extra": True})


def test_validation_error_is_a_value_error():
    registry = ToolRegistry([EchoTool()])

    with pytest.raises(ValueError):
        registry.validate("echo", {"text": ["not", "a", "string"]})


def test_unknown_tool_lookup():
    registry = ToolRegistry()

    with pytest.raises(UnknownTool):
        registry.get("missing")
    assert "missing" not in registry
    assert registry.requires_confirmation("missing") is False


def test_merge_combines_sub_registries_and_rejects_duplicates():
    merged = ToolRegistry([EchoTool()]).merge(ToolRegistry([ExecuteTaskTool()]))

    assert merged.names() == ["echo", "executeTask"]
    assert [spec["function"]["name"] for spec in merged.list_tool_specs()] == ["echo", "executeTask"]
    with pytest.raises(ValueError):
        merged.merge(ToolRegistry([EchoTool()]))


@pytest.mark.asyncio
async def test_get_local_time_uses_injected_clock():
    from datetime import datetime, timezone

    tool = GetLocalTimeTool(clock=lambda: datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc))
    result = await tool.run(ToolContext(conversation_id="c"), location="Berlin")

    assert result["location"] == "Berlin"
    assert result["timezone"] == "Europe/Berlin"
    assert result["localTime"] == "10:00"


def test_resolve_zone_falls_back_to_utc():
    assert resolve_zone("new york") == "America/New_York"
    assert resolve_zone("Atlantis") == "UTC"
