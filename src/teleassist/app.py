"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import httpx

from teleassist.ai.client import CompletionClient
from teleassist.ai.handler import TurnHandler, TurnRequest, TurnResult, TurnStatus
from teleassist.ai.models import AUTO_KEY, ModelRegistry
from teleassist.ai.router import ModelRouter
from teleassist.ai.tools.registry import ToolRegistry
from teleassist.ai.types import ChatMessage
from teleassist.config import AppConfig
from teleassist.core.locks import LockManager
from teleassist.core.rate_limit import RateLimiter
from teleassist.core.session import StreamRegistry, conversation_key, rate_limit_key
from teleassist.core.types import Verbosity
from teleassist.errors import LockAcquisitionTimeout, RateLimitExceeded
from teleassist.log import get_logger
from teleassist.messenger.base import MessengerAdapter
from teleassist.messenger.models import IncomingMessage, OutgoingMessage
from teleassist.storage.database import Database
from teleassist.storage.lock_repo import LockRepository
from teleassist.storage.rate_limit_repo import RateLimitRepository

logger = get_logger(__name__)

LOCK_BUSY_REPLY = "Another request in this chat is still running. Please try again shortly."
_HISTORY_STATUSES = frozenset({TurnStatus.COMPLETED, TurnStatus.STOPPED, TurnStatus.CLARIFIED})


@dataclass
class ChatSession:
    """Per-conversation settings and recent turns, kept in memory only."""

    history: deque[ChatMessage]
    model_key: str | None = None
    verbosity: Verbosity = Verbosity.NORMAL
    style_prompt: str | None = None
    memories: dict[str, str] = field(default_factory=dict)


class TeleAssistApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        adapter: MessengerAdapter,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.adapter = adapter
        self.db = Database(config.storage.db_path, config.storage.busy_timeout)
        self.lock_manager = LockManager(LockRepository(self.db), config.lock)
        self.rate_limiter = RateLimiter(RateLimitRepository(self.db), config.rate_limit)
        self.model_registry = ModelRegistry(config.models)
        self.router = ModelRouter(self.model_registry)
        self.tool_registry = ToolRegistry()
        self.client = CompletionClient(config.openrouter, http_client=http_client)
        self.streams = StreamRegistry()
        self.handler = TurnHandler(
            adapter=adapter,
            client=self.client,
            lock_manager=self.lock_manager,
            rate_limiter=self.rate_limiter,
            tool_registry=self.tool_registry,
            router=self.router,
            streams=self.streams,
            config=config.turn,
        )
        self._sessions: dict[str, ChatSession] = {}

    async def start(self) -> None:
        """Initialize and start all components."""
        await self.db.initialize()
        self.tool_registry.discover_and_register()
        self.adapter.on_message(self.handle_message)
        await self.adapter.start()
        logger.info(
            "teleassist_started",
            platform=self.adapter.platform_name,
            endpoint=self.client.endpoint,
            tools=len(self.tool_registry.all_tools()),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        try:
            await self.adapter.stop()
        except Exception as e:
            logger.error("adapter_stop_error", error=str(e))
        await self.client.aclose()
        await self.db.close()
        logger.info("teleassist_stopped")

    def session(self, key: str) -> ChatSession:
        session = self._sessions.get(key)
        if session is None:
            session = ChatSession(history=deque(maxlen=max(self.config.turn.recent_messages, 1)))
            self._sessions[key] = session
        return session

    async def handle_message(self, message: IncomingMessage) -> TurnResult | None:
        """Route commands, otherwise run a turn and remember it."""
        text = message.text.strip()
        if not text:
            return None

        key = conversation_key(message.chat_id, message.user_id, message.is_group)
        session = self.session(key)

        command, _, argument = text.partition(" ")
        match command.lower():
            case "/reset":
                session.history.clear()
                await self._reply(message.chat_id, "Conversation reset. Starting fresh.")
                return None
            case "/stop":
                stopped = self.streams.stop(key)
                await self._reply(
                    message.chat_id, "Stopped current response." if stopped else "No active stream to stop."
                )
                return None
            case "/model":
                await self._reply(message.chat_id, self._select_model(session, argument.strip()))
                return None

        request = TurnRequest(
            chat_id=message.chat_id,
            text=text,
            conversation_key=key,
            bucket_key=rate_limit_key(message.user_id, message.chat_id),
            model_key=session.model_key,
            history=list(session.history),
            verbosity=session.verbosity,
            style_prompt=session.style_prompt,
            memories=dict(session.memories),
        )
        try:
            result = await self.handler.handle(request)
        except RateLimitExceeded:
            return None
        except LockAcquisitionTimeout:
            await self._reply(message.chat_id, LOCK_BUSY_REPLY)
            return None

        if result.status in _HISTORY_STATUSES:
            session.history.append(ChatMessage(role="user", content=text))
            session.history.append(ChatMessage(role="assistant", content=result.text))
        return result

    def _select_model(self, session: ChatSession, choice: str) -> str:
        if not choice:
            current = session.model_key or AUTO_KEY
            lines = [f"Current model: {current}", "Available models:"]
            lines.extend(
                f"{profile.key} - {profile.label}: {profile.description}"
                for profile in self.model_registry.all()
            )
            lines.append("Any other value is used as a raw model id.")
            return "\n".join(lines)

        profile = self.model_registry.resolve(choice)
        if profile is not None and profile.key == AUTO_KEY:
            session.model_key = None
            return "Model set to auto routing."
        session.model_key = profile.key if profile else choice
        return f"Model set to {session.model_key}."

    async def _reply(self, chat_id: int, text: str) -> None:
        await self.adapter.send_message(OutgoingMessage(chat_id=chat_id, text=text))
