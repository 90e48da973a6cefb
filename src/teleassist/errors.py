"""Error taxonomy for turn execution."""

from __future__ import annotations

import math
from datetime import datetime

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class TeleAssistError(Exception):
    """Base class for all teleassist errors."""


class LockAcquisitionTimeout(TeleAssistError):
    """The conversation lock could not be acquired within the max-wait bound."""

    def __init__(self, chat_id: int, max_wait: float):
        super().__init__(f"Could not acquire chat lock for chat={chat_id} within {max_wait:.1f}s")
        self.chat_id = chat_id
        self.max_wait = max_wait


class RateLimitExceeded(TeleAssistError):
    """The bucket has no remaining capacity in the current window."""

    def __init__(self, bucket_key: str, reset_at: datetime):
        super().__init__(f"Rate limit reached for bucket '{bucket_key}'")
        self.bucket_key = bucket_key
        self.reset_at = reset_at

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until capacity frees, never less than 1."""
        seconds = (self.reset_at - now).total_seconds()
        return max(math.ceil(seconds), 1)


class CompletionError(TeleAssistError):
    """Any failure talking to the completion API."""

    status: int | None = None

    @property
    def retryable(self) -> bool:
        return False


class UpstreamHttpError(CompletionError):
    """Non-2xx response from the completion API."""

    def __init__(self, status: int, message: str | None = None):
        super().__init__(message or f"OpenRouter request failed with status {status}")
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


class UpstreamTransportError(CompletionError):
    """The request never produced an HTTP response (DNS, connect, reset)."""


class EmptyStreamError(CompletionError):
    """A streaming response delivered no body at all."""


class CompletionAborted(CompletionError):
    """The request was aborted by the caller or by the internal timer.

    ``reason`` is ``"cancelled"`` for caller cancellation and ``"timeout"``
    for the internal deadline.
    """

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or f"OpenRouter request aborted ({reason}).")
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self.reason == "cancelled"


class ToolExecutionError(TeleAssistError):
    """Raised inside a tool; always converted into an error result by the registry."""


def describe_generation_error(error: BaseException) -> str:
    """Map a generation failure to a message suitable for the end user."""
    status = getattr(error, "status", None)
    normalized = str(error).lower()

    if status in (401, 403) or "unauthorized" in normalized:
        return "OpenRouter authentication failed. Please update OPENROUTER_API_KEY and restart."
    if status == 402 or any(
        marker in normalized
        for marker in ("insufficient credits", "insufficient_quota", "payment required", "billing")
    ):
        return (
            "OpenRouter credits are insufficient. Please add credits or switch to a free model, "
            "then try again."
        )
    if status == 429 or "rate limit" in normalized:
        return "OpenRouter rate limit is active right now. Please wait 30-60 seconds and retry."
    if isinstance(error, CompletionAborted) and error.reason == "timeout":
        return "The AI model took too long to respond. Please try again."
    if isinstance(error, UpstreamTransportError) or any(
        marker in normalized for marker in ("network", "connect", "reset by peer")
    ):
        return "Network issue while contacting OpenRouter. Please retry in a moment."
    return (
        "I could not reach the selected AI model right now. "
        "Please try /model auto and send your message again."
    )
