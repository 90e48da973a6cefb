"""Tool registry: name-based dispatch that never raises."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from teleassist.ai.tools.base import Tool
from teleassist.log import get_logger

logger = get_logger(__name__)

_TOOL_TRIGGER_PATTERNS = (
    re.compile(r"\bcalculate\b"),
    re.compile(r"\bsolve\b"),
    re.compile(r"\bconvert\b"),
    re.compile(r"\btimezone\b"),
    re.compile(r"\btime in\b"),
    re.compile(r"\bsummarize\b"),
    re.compile(r"\brewrite\b"),
    re.compile(r"\bkey points?\b"),
    re.compile(r"[0-9]+\s*[+\-*/]\s*[0-9]+"),
)


def should_enable_tools(text: str) -> bool:
    """Cheap gate deciding whether tool schemas are offered to the model at all."""
    message = text.lower()
    return any(pattern.search(message) for pattern in _TOOL_TRIGGER_PATTERNS)


@dataclass(frozen=True)
class ExecutedTool:
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str = ""
    is_error: bool = False


def parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Tool arguments as a dict; anything unparsable becomes ``{}``."""
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def schemas(self) -> list[dict[str, Any]]:
        return [tool.to_api_dict() for tool in self._tools.values()]

    def discover_and_register(self) -> None:
        """Register all built-in tools."""
        from teleassist.ai.tools.calculator import CalculatorTool
        from teleassist.ai.tools.convert import UnitConvertTool
        from teleassist.ai.tools.datetime_tool import DateTimeTool
        from teleassist.ai.tools.text import KeyPointsTool, RewriteTool, SummarizeTool

        for tool in (
            CalculatorTool(),
            DateTimeTool(),
            UnitConvertTool(),
            SummarizeTool(),
            RewriteTool(),
            KeyPointsTool(),
        ):
            self.register(tool)

    async def execute(self, name: str, raw_arguments: str | dict[str, Any] | None) -> ExecutedTool:
        """Run a tool by exact name. Failures come back as ``is_error=True`` results."""
        arguments = parse_arguments(raw_arguments)
        tool = self._tools.get(name)
        if tool is None:
            return ExecutedTool(name=name, input=arguments, output=f"Unsupported tool: {name}", is_error=True)

        try:
            output = await tool.execute(**arguments)
        except Exception as e:
            logger.warning("tool_execution_error", tool=name, error=str(e))
            return ExecutedTool(name=name, input=arguments, output=str(e) or type(e).__name__, is_error=True)
        return ExecutedTool(name=name, input=arguments, output=output)
