"""Local time lookup tool."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable
from zoneinfo import ZoneInfo, available_timezones

from chatagent.tools.base import Tool, ToolContext


class GetLocalTimeTool(Tool):
    """Returns the current time for a city or IANA zone name."""

    name = "getLocalTime"
    description = "Get the local time for a specified location."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "City name or IANA time zone."},
        },
        "required": ["location"],
        "additionalProperties": False,
    }

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, str]:
        location = str(kwargs["location"]).strip()
        zone_name = resolve_zone(location)
        now = self._clock().astimezone(ZoneInfo(zone_name) if zone_name != "UTC" else timezone.utc)
        return {
            "location": location,
            "timezone": zone_name,
            "localTime": now.strftime("%H:%M"),
            "isoTime": now.isoformat(),
        }


def resolve_zone(location: str) -> str:
    """Map a location to an IANA zone, falling back to UTC when unknown."""

    key = location.strip().replace(" ", "_").lower()
    return _zone_index().get(key, "UTC")


@lru_cache(maxsize=1)
def _zone_index() -> dict[str, str]:
    index: dict[str, str] = {}
    for zone in sorted(available_timezones()):
        index.setdefault(zone.lower(), zone)
        index.setdefault(zone.rsplit("/", 1)[-1].lower(), zone)
    return index
