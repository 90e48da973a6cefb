"""Turn handler: one user message in, one shaped reply out."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from teleassist.ai.client import CompletionClient
from teleassist.ai.moderation import moderate_input
from teleassist.ai.prompts import build_system_prompt
from teleassist.ai.router import (
    AMBIGUOUS_PYTHON_CLARIFICATION,
    CURRENT_EVENTS_DISCLAIMER,
    ModelRouter,
    RoutedModel,
    detect_intent,
)
from teleassist.ai.tool_runner import run_tool_rounds
from teleassist.ai.tools.registry import ExecutedTool, ToolRegistry, should_enable_tools
from teleassist.ai.types import ChatMessage, CompletionRequest
from teleassist.config import TurnConfig
from teleassist.core.locks import LockManager
from teleassist.core.rate_limit import RateLimiter
from teleassist.core.session import StreamRegistry
from teleassist.core.types import Intent, Verbosity
from teleassist.errors import (
    CompletionAborted,
    CompletionError,
    EmptyStreamError,
    RateLimitExceeded,
    describe_generation_error,
)
from teleassist.formatting.chunking import chunk_text
from teleassist.formatting.reply import format_professional_reply
from teleassist.log import get_logger
from teleassist.messenger.base import MessengerAdapter
from teleassist.messenger.models import OutgoingMessage

logger = get_logger(__name__)

THINKING_PLACEHOLDER = "Thinking..."
STOPPED_MARKER = "[stopped]"
INTERRUPTED_MARKER = "[interrupted: the model stopped responding before the answer was complete]"
GENERATION_FAILED_REPLY = "I hit an issue generating a reply. Please try again in a moment."
REPLAY_CHUNK_CHARS = 48
REPLAY_DELAY = 0.035


class TurnStatus(StrEnum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"
    BLOCKED = "blocked"
    CLARIFIED = "clarified"
    EMPTY = "empty"


@dataclass
class TurnRequest:
    """Everything one turn needs. History is supplied by the caller; nothing is persisted here."""

    chat_id: int
    text: str
    conversation_key: str = ""
    bucket_key: str | None = None
    model_key: str | None = None
    history: list[ChatMessage] = field(default_factory=list)
    verbosity: Verbosity = Verbosity.NORMAL
    style_prompt: str | None = None
    memories: dict[str, str] = field(default_factory=dict)
    summary: str | None = None
    temperature: float | None = None

    def __post_init__(self) -> None:
        if not self.conversation_key:
            self.conversation_key = str(self.chat_id)


@dataclass
class TurnResult:
    status: TurnStatus
    text: str
    intent: Intent | None = None
    model_id: str | None = None
    executed_tools: list[ExecutedTool] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _keep_partial(streamed: str, error: CompletionError) -> str:
    """Text already shown to the user survives a failure; otherwise explain the failure."""
    if streamed.strip():
        return f"{streamed.rstrip()}\n\n{INTERRUPTED_MARKER}"
    return describe_generation_error(error)


class _StreamPreview:
    """Accumulates streamed text and mirrors it into the placeholder message.

    Edits are throttled to one per ``interval`` seconds; the final edit
    always goes through.
    """

    def __init__(
        self,
        adapter: MessengerAdapter,
        chat_id: int,
        message_id: str,
        interval: float,
        limit: int,
    ):
        self.buffer = ""
        self._adapter = adapter
        self._chat_id = chat_id
        self._message_id = message_id
        self._interval = interval
        self._limit = limit
        self._last_edit = 0.0
        self._finalized = False

    async def append(self, delta: str) -> None:
        self.buffer += delta
        await self.flush()

    async def flush(self, force: bool = False) -> None:
        if self._finalized:
            return
        now = time.monotonic()
        if not force and now - self._last_edit < self._interval:
            return
        self._last_edit = now
        preview = self.buffer[: self._limit]
        if preview.strip():
            await self._edit(preview)

    async def finalize(self, text: str) -> None:
        self._finalized = True
        await self._edit(text)

    async def _edit(self, text: str) -> None:
        try:
            await self._adapter.edit_message(self._chat_id, self._message_id, text)
        except Exception as e:
            logger.warning("preview_edit_failed", chat_id=self._chat_id, error=str(e))


class TurnHandler:
    """Runs one turn under the chat lock.

    Order: rate limit, moderation, input truncation, intent detection,
    routing, optional tool rounds, streamed generation, shaping and
    chunked delivery. Lock and rate-limit failures propagate to the caller.
    """

    def __init__(
        self,
        adapter: MessengerAdapter,
        client: CompletionClient,
        lock_manager: LockManager,
        rate_limiter: RateLimiter,
        tool_registry: ToolRegistry,
        router: ModelRouter | None = None,
        streams: StreamRegistry | None = None,
        config: TurnConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        replay_delay: float = REPLAY_DELAY,
    ):
        self._adapter = adapter
        self._client = client
        self._locks = lock_manager
        self._rate_limiter = rate_limiter
        self._tools = tool_registry
        self._router = router or ModelRouter()
        self._streams = streams or StreamRegistry()
        self._config = config or TurnConfig()
        self._clock = clock
        self._replay_delay = replay_delay

    @property
    def streams(self) -> StreamRegistry:
        return self._streams

    async def handle(self, request: TurnRequest) -> TurnResult:
        return await self._locks.with_lock(request.chat_id, lambda: self._run_turn(request))

    async def _run_turn(self, request: TurnRequest) -> TurnResult:
        chat_id = request.chat_id

        if request.bucket_key:
            try:
                await self._rate_limiter.check(request.bucket_key)
            except RateLimitExceeded as e:
                wait = e.retry_after(self._clock())
                await self._send(chat_id, f"Rate limit reached. Please wait {wait} seconds and try again.")
                raise

        moderation = moderate_input(request.text)
        if moderation.blocked:
            logger.info("turn_blocked", chat_id=chat_id)
            message_id = await self._send(chat_id, moderation.reason or "")
            return TurnResult(TurnStatus.BLOCKED, moderation.reason or "", message_ids=[message_id])

        text = request.text.strip()[: self._config.max_input_chars]
        if not text:
            return TurnResult(TurnStatus.EMPTY, "")

        intent = detect_intent(text)
        if intent == Intent.AMBIGUOUS_PYTHON:
            message_id = await self._send(chat_id, AMBIGUOUS_PYTHON_CLARIFICATION)
            return TurnResult(
                TurnStatus.CLARIFIED, AMBIGUOUS_PYTHON_CLARIFICATION, intent=intent, message_ids=[message_id]
            )

        route = self._router.route(request.model_key, intent)
        messages = self._build_messages(request, text, intent)

        await self._adapter.send_typing_indicator(chat_id)
        placeholder_id = await self._send(chat_id, THINKING_PLACEHOLDER)
        preview = _StreamPreview(
            self._adapter,
            chat_id,
            placeholder_id,
            interval=self._config.stream_edit_interval,
            limit=self._config.chunk_size,
        )

        cancel_event = self._streams.begin(request.conversation_key)
        status = TurnStatus.COMPLETED
        executed: list[ExecutedTool] = []
        try:
            executed = await self._generate(request, text, route, messages, preview, cancel_event)
        except CompletionAborted as e:
            if e.cancelled:
                status = TurnStatus.STOPPED
                logger.info("turn_stopped", chat_id=chat_id, model=route.model_id)
            else:
                status = TurnStatus.FAILED
                logger.error("generation_timeout", chat_id=chat_id, model=route.model_id, chars=len(preview.buffer))
                preview.buffer = _keep_partial(preview.buffer, e)
        except CompletionError as e:
            status = TurnStatus.FAILED
            logger.error("generation_failed", chat_id=chat_id, model=route.model_id, status=e.status, error=str(e))
            preview.buffer = _keep_partial(preview.buffer, e)
        finally:
            self._streams.finish(request.conversation_key, cancel_event)

        output = preview.buffer
        if status == TurnStatus.STOPPED:
            output = f"{output.strip()}\n\n{STOPPED_MARKER}".strip()
        if not output.strip():
            output = GENERATION_FAILED_REPLY

        formatted = format_professional_reply(output)
        chunks = chunk_text(formatted, self._config.chunk_size) or [formatted]

        await preview.finalize(chunks[0])
        message_ids = [placeholder_id]
        for chunk in chunks[1:]:
            message_ids.append(await self._send(chat_id, chunk))

        logger.info(
            "turn_completed",
            chat_id=chat_id,
            status=status,
            intent=intent,
            model=route.model_id,
            auto_routed=route.auto_routed,
            tools=len(executed),
            chunks=len(chunks),
        )
        return TurnResult(
            status=status,
            text=formatted,
            intent=intent,
            model_id=route.model_id,
            executed_tools=executed,
            message_ids=message_ids,
        )

    def _build_messages(self, request: TurnRequest, text: str, intent: Intent) -> list[ChatMessage]:
        system_prompt = build_system_prompt(
            verbosity=request.verbosity,
            custom_style=request.style_prompt,
            memories=request.memories,
            current_events_mode=intent == Intent.CURRENT_EVENTS,
        )
        messages = [ChatMessage(role="system", content=system_prompt)]
        if request.summary and request.summary.strip():
            messages.append(ChatMessage(role="system", content=f"Conversation summary:\n{request.summary}"))
        if intent == Intent.CURRENT_EVENTS:
            messages.append(ChatMessage(role="system", content=CURRENT_EVENTS_DISCLAIMER))

        recent = self._config.recent_messages
        if recent > 0:
            messages.extend(request.history[-recent:])
        messages.append(ChatMessage(role="user", content=text))
        return messages

    async def _generate(
        self,
        request: TurnRequest,
        text: str,
        route: RoutedModel,
        messages: list[ChatMessage],
        preview: _StreamPreview,
        cancel_event: asyncio.Event,
    ) -> list[ExecutedTool]:
        """Fill ``preview.buffer`` with the answer. Returns the tools that ran."""
        executed: list[ExecutedTool] = []
        precomputed: str | None = None

        if should_enable_tools(text):
            outcome = await run_tool_rounds(
                self._client,
                self._tools,
                messages,
                model=route.model_id,
                temperature=route.temperature,
                max_tokens=min(self._config.max_output_tokens, self._config.tool_max_tokens),
                max_rounds=self._config.tool_rounds,
                cancel_event=cancel_event,
            )
            messages = outcome.messages
            executed = outcome.executed
            precomputed = outcome.final_text

        if precomputed:
            await self._replay(precomputed, preview.append, cancel_event)
            return executed

        final_request = CompletionRequest(
            model=route.model_id,
            messages=messages,
            temperature=request.temperature if request.temperature is not None else route.temperature,
            max_tokens=min(route.max_tokens, self._config.max_output_tokens),
        )

        try:
            result = await self._client.stream(final_request, on_delta=preview.append, cancel_event=cancel_event)
            if not preview.buffer.strip() and result.text.strip():
                preview.buffer = result.text
        except EmptyStreamError:
            logger.warning("stream_empty_body", chat_id=request.chat_id, model=route.model_id)

        if not preview.buffer.strip():
            backup = await self._client.complete(final_request, cancel_event=cancel_event)
            if backup.text.strip():
                preview.buffer = backup.text
        return executed

    async def _replay(
        self, text: str, on_delta: Callable[[str], Awaitable[None]], cancel_event: asyncio.Event
    ) -> None:
        """Feed an already complete answer through the preview in small pieces."""
        for start in range(0, len(text), REPLAY_CHUNK_CHARS):
            if cancel_event.is_set():
                raise CompletionAborted("cancelled")
            await on_delta(text[start : start + REPLAY_CHUNK_CHARS])
            if self._replay_delay > 0:
                await asyncio.sleep(self._replay_delay)

    async def _send(self, chat_id: int, text: str) -> str:
        return await self._adapter.send_message(OutgoingMessage(chat_id=chat_id, text=text))
