"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from teleassist.messenger.models import IncomingMessage, OutgoingMessage


class MessengerAdapter(ABC):
    """Base class for messenger platform adapters.

    The turn handler only needs to send a message, edit one it sent earlier
    (for streamed previews) and show a typing indicator.
    """

    def __init__(self, config: dict | None = None):
        self.config = config or {}
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> str:
        """Send a message and return its platform message id."""
        ...

    @abstractmethod
    async def edit_message(self, chat_id: int, message_id: str, text: str) -> None:
        """Replace the text of a message previously sent by this adapter."""
        ...

    @abstractmethod
    async def send_typing_indicator(self, chat_id: int) -> None:
        """Show typing/processing indicator."""
        ...

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    async def dispatch(self, message: IncomingMessage) -> None:
        if self._message_callback is not None:
            await self._message_callback(message)

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...
