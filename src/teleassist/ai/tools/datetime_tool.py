"""Current date/time tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from teleassist.ai.tools.base import Tool
from teleassist.errors import ToolExecutionError


def get_datetime(tz_name: str = "UTC", now: datetime | None = None) -> str:
    """Format the current time in an IANA timezone, e.g. ``Asia/Kolkata``."""
    try:
        zone = ZoneInfo(tz_name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise ToolExecutionError(
            "Invalid timezone. Use an IANA timezone like Asia/Kolkata or America/New_York."
        ) from e

    local = (now or datetime.now(timezone.utc)).astimezone(zone)
    hour = local.strftime("%I").lstrip("0") or "12"
    formatted = local.strftime(f"%A, %B {local.day}, %Y at {hour}:%M:%S %p %Z")
    return f"{formatted} ({tz_name.strip()})"


class DateTimeTool(Tool):
    @property
    def name(self) -> str:
        return "date_time"

    @property
    def description(self) -> str:
        return "Get the current date and time in a timezone."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone, e.g. Asia/Kolkata or America/New_York",
                },
            },
        }

    async def execute(self, **kwargs: Any) -> str:
        return get_datetime(str(kwargs.get("timezone") or "UTC"))
