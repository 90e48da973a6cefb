"""Shared fixtures: temp SQLite database, fast configs and an in-memory adapter."""

import httpx
import pytest

from teleassist.config import LockConfig, OpenRouterConfig, RateLimitConfig, TurnConfig
from teleassist.messenger.base import MessengerAdapter
from teleassist.messenger.models import OutgoingMessage
from teleassist.storage.database import Database

ENDPOINT = "https://openrouter.test/api/v1/chat/completions"


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"), busy_timeout=10.0)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def fast_lock_config():
    return LockConfig(ttl=0.5, retry_delay=0.01, max_wait=2.0)


@pytest.fixture
def rate_limit_config():
    return RateLimitConfig(max_events=3, window=60.0)


@pytest.fixture
def openrouter_config():
    return OpenRouterConfig(
        api_key="sk-test",
        base_url="https://openrouter.test/api/v1",
        timeout=5.0,
        max_retries=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
    )


@pytest.fixture
def turn_config():
    return TurnConfig(stream_edit_interval=0.0, chunk_size=3500)


@pytest.fixture
async def httpx_client():
    client = httpx.AsyncClient()
    yield client
    await client.aclose()


class RecordingAdapter(MessengerAdapter):
    """Adapter that keeps every send and edit in memory."""

    def __init__(self):
        super().__init__()
        self.sent: list[tuple[str, str]] = []
        self.edits: list[tuple[str, str]] = []
        self.texts: dict[str, str] = {}
        self.typing = 0

    @property
    def platform_name(self) -> str:
        return "test"

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, message: OutgoingMessage) -> str:
        message_id = str(len(self.sent) + 1)
        self.sent.append((message_id, message.text))
        self.texts[message_id] = message.text
        return message_id

    async def edit_message(self, chat_id: int, message_id: str, text: str) -> None:
        self.edits.append((message_id, text))
        self.texts[message_id] = text

    async def send_typing_indicator(self, chat_id: int) -> None:
        self.typing += 1


@pytest.fixture
def adapter():
    return RecordingAdapter()
