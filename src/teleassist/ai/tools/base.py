"""Abstract tool interface for model tool calls."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for all model-callable tools.

    ``execute`` raises :class:`~teleassist.errors.ToolExecutionError` (or any
    other exception) on bad input; the registry turns that into an error result.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the completion API."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Run the tool and return a text result for the model."""
        ...

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the chat-completions ``tools`` entry format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def format_number(value: float) -> str:
    """Render integral floats without a trailing ``.0``."""
    if value == int(value) and abs(value) < 1e16:
        return str(int(value))
    return repr(value)
