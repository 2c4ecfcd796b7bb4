"""Registry of the closed set of tools the model may call."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError, create_model

from chatagent.errors import ArgumentValidationError, UnknownTool
from chatagent.tools.base import Tool


class ToolRegistry:
    """Explicit name -> tool mapping, fixed at composition time."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def merge(self, other: ToolRegistry) -> ToolRegistry:
        """Return a new registry holding the tools of both registries."""

        merged = ToolRegistry(list(self._tools.values()))
        for tool in other._tools.values():
            merged.register(tool)
        return merged

    def get(self, tool_name: str) -> Tool:
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {tool_name}")
        return tool

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def requires_confirmation(self, tool_name: str) -> bool:
        tool = self._tools.get(tool_name)
        return bool(tool is not None and tool.requires_confirmation)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    def validate(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate raw model arguments against the tool's parameter schema."""

        tool = self.get(tool_name)
        return _validate_json_schema(tool.name, tool.parameters_schema, arguments)


def _validate_json_schema(tool_name: str, schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ArgumentValidationError(f"Arguments for {tool_name} must be an object")
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    if schema.get("additionalProperties") is False:
        unexpected = sorted(set(payload) - set(props))
        if unexpected:
            raise ArgumentValidationError(
                f"Invalid input for tool {tool_name}: unexpected arguments {unexpected}"
            )

    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**{key: val for key, val in payload.items() if key in props})
    except ValidationError as exc:
        raise ArgumentValidationError(f"Invalid input for tool {tool_name}: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
