"""Resilient chat-completions client for the OpenRouter API.

Both entry points share the same attempt loop. The caller's cancel event races
every attempt from start to finish. The internal deadline only covers the wait
for response headers; once a stream is open, idle gaps between chunks are
bounded by httpx's read timeout instead, so a long answer that keeps arriving
is never cut off. Only HTTP statuses in
:data:`~teleassist.errors.RETRYABLE_STATUSES` are retried, with capped
exponential backoff plus jitter.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import random
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from teleassist.ai.types import CompletionRequest, CompletionResult, ToolCall, Usage
from teleassist.config import DEFAULT_OPENROUTER_BASE, OpenRouterConfig
from teleassist.errors import (
    CompletionAborted,
    CompletionError,
    EmptyStreamError,
    UpstreamHttpError,
    UpstreamTransportError,
)
from teleassist.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DeltaCallback = Callable[[str], Awaitable[None] | None]

DEFAULT_ENDPOINT = f"{DEFAULT_OPENROUTER_BASE}/chat/completions"
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_endpoint(base_url: str) -> str:
    """Turn a configured base URL into an absolute ``.../chat/completions`` endpoint."""
    raw = (base_url or "").strip()
    if not _SCHEME_RE.match(raw):
        raw = DEFAULT_OPENROUTER_BASE
    trimmed = raw.rstrip("/")
    candidate = trimmed if trimmed.endswith("/chat/completions") else f"{trimmed}/chat/completions"

    try:
        url = httpx.URL(candidate)
    except httpx.InvalidURL:
        return DEFAULT_ENDPOINT
    if not url.host:
        return DEFAULT_ENDPOINT
    return str(url)


def extract_text(content: Any) -> str:
    """Text from a content field that is either a string or a list of parts."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"] for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return None


class StreamAccumulator:
    """Incremental parser for a chat-completions ``text/event-stream`` body.

    Feed decoded text as it arrives; each call returns the new text fragments.
    Providers either send ``delta.content`` fragments or resend the cumulative
    ``message.content``. Only one of the two is expected from a given provider,
    and the snapshot path emits just the newly appended suffix.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._parts: list[str] = []
        self._snapshot = ""
        self.id = ""
        self.model = ""
        self.finish_reason: str | None = None
        self.usage: Usage | None = None
        self._tool_calls: dict[int, ToolCall] = {}

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk.replace("\r\n", "\n")
        *events, self._buffer = self._buffer.split("\n\n")
        deltas: list[str] = []
        for event in events:
            deltas.extend(self._handle_event(event))
        return deltas

    def close(self) -> list[str]:
        """Flush a trailing event that was not followed by a blank line."""
        remaining, self._buffer = self._buffer, ""
        if not remaining.strip():
            return []
        return self._handle_event(remaining)

    def tool_calls(self) -> list[ToolCall]:
        return [self._tool_calls[index] for index in sorted(self._tool_calls)]

    def result(self, fallback_model: str = "") -> CompletionResult:
        return CompletionResult(
            id=self.id,
            model=self.model or fallback_model,
            text=self.text,
            finish_reason=self.finish_reason,
            tool_calls=self.tool_calls(),
            usage=self.usage,
        )

    def _handle_event(self, event: str) -> list[str]:
        deltas: list[str] = []
        for line in event.split("\n"):
            line = line.strip()
            if not line.startswith("data:"):
                continue
            data = line[5:].strip()
            if not data or data == "[DONE]":
                continue
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            delta = self._handle_payload(payload)
            if delta:
                deltas.append(delta)
        return deltas

    def _handle_payload(self, payload: dict[str, Any]) -> str:
        self.id = self.id or str(payload.get("id") or "")
        self.model = self.model or str(payload.get("model") or "")
        if payload.get("usage"):
            self.usage = Usage.from_api_dict(payload["usage"])

        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        choice = choices[0]
        if choice.get("finish_reason"):
            self.finish_reason = choice["finish_reason"]

        delta = choice.get("delta") or {}
        emitted = extract_text(delta.get("content"))
        if not emitted:
            message = choice.get("message") or {}
            snapshot = message.get("content")
            if isinstance(snapshot, str) and len(snapshot) > len(self._snapshot):
                if snapshot.startswith(self._snapshot):
                    emitted = snapshot[len(self._snapshot) :]
                else:
                    logger.debug("stream_snapshot_diverged", seen=len(self._snapshot), got=len(snapshot))
                self._snapshot = snapshot

        for tool_delta in delta.get("tool_calls") or []:
            self._merge_tool_delta(tool_delta)

        if emitted:
            self._parts.append(emitted)
        return emitted

    def _merge_tool_delta(self, tool_delta: Any) -> None:
        if not isinstance(tool_delta, dict):
            return
        index = tool_delta.get("index") or 0
        call = self._tool_calls.setdefault(index, ToolCall())
        if tool_delta.get("id"):
            call.id = tool_delta["id"]
        function = tool_delta.get("function") or {}
        if function.get("name"):
            call.name += function["name"]
        if function.get("arguments"):
            call.arguments_json += function["arguments"]


class CompletionClient:
    """Chat-completions client with single-shot and streaming modes."""

    def __init__(self, config: OpenRouterConfig, http_client: httpx.AsyncClient | None = None):
        self._config = config
        self._endpoint = normalize_endpoint(config.base_url)
        self._timeout = config.timeout
        self._max_retries = config.max_retries
        self._retry_base_delay = config.retry_base_delay
        self._retry_max_delay = config.retry_max_delay
        self._retry_jitter = config.retry_jitter
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout, connect=config.connect_timeout)
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def complete(
        self, request: CompletionRequest, cancel_event: asyncio.Event | None = None
    ) -> CompletionResult:
        """Single-shot completion (``stream: false``)."""
        payload = request.to_payload(stream=False)
        logger.debug("completion_request", model=request.model, message_count=len(request.messages))

        # The JSON body arrives with the response, so the whole attempt stays under the deadline.
        body = await self._with_retry(lambda headers_received: self._post_json(payload), cancel_event)

        choices = body.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        result = CompletionResult(
            id=str(body.get("id") or ""),
            model=str(body.get("model") or request.model),
            text=extract_text(message.get("content")),
            finish_reason=choice.get("finish_reason"),
            tool_calls=[ToolCall.from_api_dict(call) for call in message.get("tool_calls") or []],
            usage=Usage.from_api_dict(body.get("usage")),
        )
        logger.debug(
            "completion_response",
            model=result.model,
            finish_reason=result.finish_reason,
            tool_calls=len(result.tool_calls),
        )
        return result

    async def stream(
        self,
        request: CompletionRequest,
        on_delta: DeltaCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompletionResult:
        """Streaming completion. Text fragments are forwarded to ``on_delta`` as they arrive."""
        payload = request.to_payload(stream=True)
        logger.debug("completion_stream_request", model=request.model, message_count=len(request.messages))

        result = await self._with_retry(
            lambda headers_received: self._read_stream(payload, request.model, on_delta, headers_received),
            cancel_event,
        )
        logger.debug(
            "completion_stream_done",
            model=result.model,
            finish_reason=result.finish_reason,
            chars=len(result.text),
            tool_calls=len(result.tool_calls),
        )
        return result

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._config.app_url or "https://localhost",
            "X-Title": self._config.title or "Telegram Chat Bot",
        }

    async def _post_json(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(self._endpoint, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise CompletionAborted("timeout", f"OpenRouter request timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"OpenRouter network error: {e}") from e

        raw = response.text
        body: Any = {}
        if raw:
            try:
                body = json.loads(raw)
            except json.JSONDecodeError as e:
                if response.is_success:
                    raise CompletionError("OpenRouter returned a response that is not valid JSON.") from e

        if not response.is_success:
            raise UpstreamHttpError(response.status_code, _error_message(body))
        return body if isinstance(body, dict) else {}

    async def _read_stream(
        self,
        payload: dict[str, Any],
        model: str,
        on_delta: DeltaCallback | None,
        headers_received: asyncio.Event,
    ) -> CompletionResult:
        accumulator = StreamAccumulator()
        received = False
        try:
            async with self._http.stream(
                "POST", self._endpoint, headers=self._headers(), json=payload
            ) as response:
                headers_received.set()
                if not response.is_success:
                    raw = (await response.aread()).decode("utf-8", errors="replace")
                    message = f"OpenRouter stream failed with status {response.status_code}"
                    try:
                        message = _error_message(json.loads(raw)) or message
                    except json.JSONDecodeError:
                        pass
                    raise UpstreamHttpError(response.status_code, message)

                async for chunk in response.aiter_text():
                    if not chunk:
                        continue
                    received = True
                    for delta in accumulator.feed(chunk):
                        await self._emit(on_delta, delta)
        except httpx.TimeoutException as e:
            raise CompletionAborted("timeout", f"OpenRouter stream timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"OpenRouter network error: {e}") from e

        if not received:
            raise EmptyStreamError("OpenRouter stream returned empty body.")
        for delta in accumulator.close():
            await self._emit(on_delta, delta)
        return accumulator.result(fallback_model=model)

    @staticmethod
    async def _emit(on_delta: DeltaCallback | None, delta: str) -> None:
        if on_delta is None or not delta:
            return
        try:
            outcome = on_delta(delta)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.debug("on_delta_failed", error=str(e))

    async def _with_retry(
        self, operation: Callable[[asyncio.Event], Awaitable[T]], cancel_event: asyncio.Event | None
    ) -> T:
        """Run ``operation`` until it succeeds or fails for good.

        ``operation`` receives a fresh event per attempt and sets it once the
        response headers are in; from then on only cancellation can end it early.
        """
        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CompletionAborted("cancelled")
            headers_received = asyncio.Event()
            try:
                return await self._guard(operation(headers_received), cancel_event, headers_received)
            except CompletionError as e:
                if not e.retryable or attempt >= self._max_retries:
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "completion_retry",
                    attempt=attempt,
                    status=e.status,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await self._backoff(delay, cancel_event)
                attempt += 1

    def backoff_delay(self, attempt: int) -> float:
        base = min(self._retry_max_delay, self._retry_base_delay * 2**attempt)
        return base + random.uniform(0, self._retry_jitter)

    @staticmethod
    async def _backoff(delay: float, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise CompletionAborted("cancelled")

    async def _guard(
        self,
        operation: Awaitable[T],
        cancel_event: asyncio.Event | None,
        headers_received: asyncio.Event | None = None,
    ) -> T:
        """Run one attempt until it finishes, the caller cancels, or the deadline passes.

        The deadline stops applying once ``headers_received`` is set.
        """
        task = asyncio.ensure_future(operation)
        waiters: set[asyncio.Future[Any]] = {task}
        cancelled: asyncio.Future[Any] | None = None
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)
        headers: asyncio.Future[Any] | None = None
        if headers_received is not None:
            headers = asyncio.ensure_future(headers_received.wait())

        try:
            first_phase = waiters | {headers} if headers is not None else waiters
            done, _ = await asyncio.wait(
                first_phase, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if headers is not None and headers in done and not done & waiters:
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = waiters | {headers} if headers is not None else waiters
            for waiter in pending:
                waiter.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if task in done:
            return task.result()
        if cancelled is not None and cancelled in done:
            logger.info("completion_cancelled")
            raise CompletionAborted("cancelled")
        logger.warning("completion_timeout", timeout=self._timeout)
        raise CompletionAborted("timeout", f"OpenRouter request timed out after {self._timeout:g}s.")
