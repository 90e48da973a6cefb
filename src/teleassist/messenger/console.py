"""Terminal messenger adapter used by the CLI."""

from __future__ import annotations

import asyncio
import sys
from typing import Callable, TextIO

from teleassist.core.types import Platform
from teleassist.log import get_logger
from teleassist.messenger.base import MessengerAdapter
from teleassist.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

EXIT_COMMANDS = frozenset({"/quit", "/exit"})


class ConsoleAdapter(MessengerAdapter):
    """Keeps sent messages in memory and prints them on :meth:`flush`.

    Streaming previews edit the same message many times per turn; buffering
    until the turn ends means the terminal only shows the final text.
    """

    def __init__(
        self,
        config: dict | None = None,
        output: TextIO | None = None,
        reader: Callable[[str], str] = input,
        chat_id: int = 1,
        user_id: int = 1,
    ):
        super().__init__(config)
        self._output = output or sys.stdout
        self._reader = reader
        self.chat_id = chat_id
        self.user_id = user_id
        self.messages: dict[str, str] = {}
        self.typing_count = 0
        self._dirty: list[str] = []
        self._next_id = 0
        self._running = False

    @property
    def platform_name(self) -> str:
        return Platform.CONSOLE

    async def start(self) -> None:
        self._running = True
        logger.info("console_adapter_started", chat_id=self.chat_id)

    async def stop(self) -> None:
        self._running = False
        logger.info("console_adapter_stopped", chat_id=self.chat_id)

    async def send_message(self, message: OutgoingMessage) -> str:
        self._next_id += 1
        message_id = str(self._next_id)
        self.messages[message_id] = message.text
        self._dirty.append(message_id)
        return message_id

    async def edit_message(self, chat_id: int, message_id: str, text: str) -> None:
        if message_id not in self.messages:
            logger.warning("console_edit_unknown_message", chat_id=chat_id, message_id=message_id)
            return
        self.messages[message_id] = text
        if message_id not in self._dirty:
            self._dirty.append(message_id)

    async def send_typing_indicator(self, chat_id: int) -> None:
        self.typing_count += 1

    async def flush(self) -> None:
        """Print every message sent or edited since the previous flush."""
        for message_id in self._dirty:
            self._output.write(f"{self.messages[message_id]}\n\n")
        self._output.flush()
        self._dirty.clear()

    async def run(self, prompt: str = "you> ") -> None:
        """Read lines until EOF or an exit command, dispatching each as a message.

        Each message is handled in its own task so that a command such as
        ``/stop`` can reach a turn that is still streaming. Pending turns are
        awaited before returning.
        """
        if not self._running:
            await self.start()
        pending: set[asyncio.Task[None]] = set()
        try:
            while self._running:
                line = await asyncio.to_thread(self._read_line, prompt)
                if line is None:
                    break
                text = line.strip()
                if not text:
                    continue
                if text.lower() in EXIT_COMMANDS:
                    break
                message = IncomingMessage(
                    platform=Platform.CONSOLE,
                    chat_id=self.chat_id,
                    user_id=self.user_id,
                    user_display_name="console",
                    text=text,
                )
                task = asyncio.create_task(self._handle(message))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _handle(self, message: IncomingMessage) -> None:
        try:
            await self.dispatch(message)
        except Exception as e:
            logger.error("console_dispatch_failed", chat_id=message.chat_id, error=str(e))
        await self.flush()

    def _read_line(self, prompt: str) -> str | None:
        try:
            return self._reader(prompt)
        except EOFError:
            return None
