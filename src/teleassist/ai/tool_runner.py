"""Bounded tool-call rounds run through single-shot completions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from teleassist.ai.client import CompletionClient
from teleassist.ai.tools.registry import ExecutedTool, ToolRegistry
from teleassist.ai.types import ChatMessage, CompletionRequest, ToolCall
from teleassist.log import get_logger

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 2


@dataclass
class ToolRoundsOutcome:
    """Messages extended with tool traffic, plus a final answer if the model gave one."""

    messages: list[ChatMessage]
    final_text: str | None = None
    executed: list[ExecutedTool] = field(default_factory=list)


async def run_tool_rounds(
    client: CompletionClient,
    tool_registry: ToolRegistry,
    messages: list[ChatMessage],
    model: str,
    temperature: float,
    max_tokens: int,
    max_rounds: int = MAX_TOOL_ROUNDS,
    cancel_event: asyncio.Event | None = None,
) -> ToolRoundsOutcome:
    """Let the model call tools for up to ``max_rounds`` rounds.

    A round without tool calls ends the loop and its text becomes
    ``final_text``. If every round asked for tools, ``final_text`` stays
    ``None`` and the caller streams the answer from the extended messages.
    """
    outcome = ToolRoundsOutcome(messages=list(messages))
    tool_defs = tool_registry.schemas()

    for round_index in range(max_rounds):
        decision = await client.complete(
            CompletionRequest(
                model=model,
                messages=outcome.messages,
                temperature=temperature,
                max_tokens=max_tokens,
                tools=tool_defs or None,
                tool_choice="auto",
            ),
            cancel_event=cancel_event,
        )

        if not decision.tool_calls:
            outcome.final_text = decision.text or None
            break

        outcome.messages.append(
            ChatMessage(role="assistant", content=decision.text or "", tool_calls=decision.tool_calls)
        )

        async def _execute_one(call: ToolCall) -> ExecutedTool:
            return await tool_registry.execute(call.name, call.arguments_json)

        results = await asyncio.gather(*(_execute_one(call) for call in decision.tool_calls))

        for call, executed in zip(decision.tool_calls, results):
            logger.info(
                "tool_execution",
                round=round_index,
                tool=executed.name,
                input=executed.input,
                is_error=executed.is_error,
            )
            outcome.executed.append(executed)
            outcome.messages.append(
                ChatMessage(role="tool", content=executed.output, name=call.name, tool_call_id=call.id)
            )

    return outcome
