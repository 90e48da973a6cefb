"""Request and result types exchanged with the completion API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ToolCall:
    """A function call requested by the model.

    While streaming, ``name`` and ``arguments_json`` grow fragment by fragment.
    """

    id: str = ""
    name: str = ""
    arguments_json: str = ""

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json},
        }

    @classmethod
    def from_api_dict(cls, data: dict[str, Any]) -> ToolCall:
        function = data.get("function") or {}
        return cls(
            id=data.get("id") or "",
            name=function.get("name") or "",
            arguments_json=function.get("arguments") or "",
        )


@dataclass
class ChatMessage:
    role: Role
    content: str
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_api_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            message["name"] = self.name
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            message["tool_calls"] = [call.to_api_dict() for call in self.tool_calls]
        return message


@dataclass(frozen=True)
class Usage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def from_api_dict(cls, data: dict[str, Any] | None) -> Optional[Usage]:
        if not data:
            return None
        return cls(
            prompt_tokens=data.get("prompt_tokens"),
            completion_tokens=data.get("completion_tokens"),
            total_tokens=data.get("total_tokens"),
        )


@dataclass
class CompletionRequest:
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.4
    max_tokens: int = 1200
    tools: Optional[list[dict[str, Any]]] = None
    tool_choice: Optional[Literal["none", "auto"]] = None

    def to_payload(self, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_api_dict() for message in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }
        if self.tools:
            payload["tools"] = self.tools
            if self.tool_choice:
                payload["tool_choice"] = self.tool_choice
        return payload


@dataclass
class CompletionResult:
    id: str
    model: str
    text: str
    finish_reason: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None
