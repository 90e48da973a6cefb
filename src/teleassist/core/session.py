"""Conversation keys and the registry of in-flight streams."""

from __future__ import annotations

import asyncio

from teleassist.log import get_logger

logger = get_logger(__name__)


def conversation_key(chat_id: int | str, user_id: int | str | None = None, is_group: bool = False) -> str:
    """Group chats keep one conversation per member; private chats one per chat."""
    base = str(chat_id)
    if is_group and user_id:
        return f"{base}:{user_id}"
    return base


def rate_limit_key(user_id: int | str | None = None, chat_id: int | str | None = None) -> str | None:
    """Bucket key for rate limiting: per user when known, otherwise per chat."""
    if user_id:
        return f"user:{user_id}"
    if chat_id:
        return f"chat:{chat_id}"
    return None


class StreamRegistry:
    """Tracks one cancel event per conversation key.

    Starting a new stream for a key cancels the previous one, so a chat
    never has two generations racing to edit the same reply.
    """

    def __init__(self) -> None:
        self._active: dict[str, asyncio.Event] = {}

    def begin(self, key: str) -> asyncio.Event:
        previous = self._active.get(key)
        if previous is not None:
            previous.set()
            logger.info("stream_superseded", conversation_key=key)
        event = asyncio.Event()
        self._active[key] = event
        return event

    def stop(self, key: str) -> bool:
        """Cancel the active stream for ``key``. Returns False if none was running."""
        event = self._active.pop(key, None)
        if event is None:
            return False
        event.set()
        logger.info("stream_stopped", conversation_key=key)
        return True

    def finish(self, key: str, event: asyncio.Event) -> None:
        if self._active.get(key) is event:
            del self._active[key]

    def is_active(self, key: str) -> bool:
        return key in self._active
