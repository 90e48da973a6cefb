"""Tests for command routing and per-conversation sessions in the app."""

import json
from datetime import datetime, timedelta, timezone

import pytest
import respx

from teleassist.app import LOCK_BUSY_REPLY, TeleAssistApp
from teleassist.ai.handler import TurnStatus
from teleassist.config import AppConfig, LockConfig, RateLimitConfig, StorageConfig
from teleassist.core.types import Platform
from teleassist.messenger.models import IncomingMessage
from teleassist.storage.lock_repo import LockRepository
from teleassist.storage.models import ConversationLock

from conftest import ENDPOINT


def sse(text: str) -> str:
    event = {"choices": [{"delta": {"content": text}}]}
    return f"data: {json.dumps(event)}\n\ndata: [DONE]\n\n"


def incoming(text: str, chat_id: int = 5, user_id: int = 1, is_group: bool = False) -> IncomingMessage:
    return IncomingMessage(platform=Platform.CONSOLE, chat_id=chat_id, text=text, user_id=user_id, is_group=is_group)


@pytest.fixture
def build_app(tmp_path, adapter, openrouter_config, fast_lock_config, turn_config, httpx_client):
    async def _build(**overrides):
        config = AppConfig(
            openrouter=openrouter_config,
            lock=overrides.pop("lock", fast_lock_config),
            turn=turn_config,
            storage=StorageConfig(db_path=str(tmp_path / "app.db")),
            **overrides,
        )
        application = TeleAssistApp(config, adapter, http_client=httpx_client)
        await application.start()
        return application

    return _build


@pytest.fixture
async def app(build_app):
    application = await build_app()
    yield application
    await application.stop()


class TestCommands:
    @pytest.mark.asyncio
    async def test_model_listing(self, app, adapter):
        await app.handle_message(incoming("/model"))

        listing = adapter.sent[-1][1]
        assert listing.startswith("Current model: auto")
        assert "code - Code: Coding, debugging, and architecture." in listing

    @pytest.mark.asyncio
    async def test_model_selection(self, app, adapter):
        await app.handle_message(incoming("/model CODE"))
        assert adapter.sent[-1][1] == "Model set to code."
        assert app.session("5").model_key == "code"

        await app.handle_message(incoming("/model some/raw-model"))
        assert adapter.sent[-1][1] == "Model set to some/raw-model."
        assert app.session("5").model_key == "some/raw-model"

        await app.handle_message(incoming("/model auto"))
        assert adapter.sent[-1][1] == "Model set to auto routing."
        assert app.session("5").model_key is None

    @pytest.mark.asyncio
    async def test_stop_without_stream(self, app, adapter):
        await app.handle_message(incoming("/stop"))
        assert adapter.sent[-1][1] == "No active stream to stop."

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, app, adapter):
        assert await app.handle_message(incoming("   ")) is None
        assert adapter.sent == []

    @pytest.mark.asyncio
    async def test_group_members_have_separate_sessions(self, app):
        await app.handle_message(incoming("/model math", user_id=1, is_group=True))

        assert app.session("5:1").model_key == "math"
        assert app.session("5:2").model_key is None


class TestTurns:
    @pytest.mark.asyncio
    @respx.mock
    async def test_history_is_remembered_and_reset(self, app, adapter):
        route = respx.post(ENDPOINT).respond(200, content=sse("First answer."))

        await adapter.dispatch(incoming("hello"))
        result = await app.handle_message(incoming("and again"))

        assert result.status == TurnStatus.COMPLETED
        second = json.loads(route.calls.last.request.content)
        assert [m["content"] for m in second["messages"][1:]] == ["hello", "First answer.", "and again"]
        assert len(app.session("5").history) == 4

        await app.handle_message(incoming("/reset"))
        assert adapter.sent[-1][1] == "Conversation reset. Starting fresh."
        assert len(app.session("5").history) == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_selected_model_is_used(self, app):
        route = respx.post(ENDPOINT).respond(200, content=sse("ok"))

        await app.handle_message(incoming("/model some/raw-model"))
        await app.handle_message(incoming("hello"))

        assert json.loads(route.calls.last.request.content)["model"] == "some/raw-model"

    @pytest.mark.asyncio
    async def test_busy_lock_replies(self, build_app, adapter):
        application = await build_app(lock=LockConfig(ttl=0.1, retry_delay=0.01, max_wait=0.2))
        try:
            await LockRepository(application.db).try_insert(
                ConversationLock(chat_id=5, owner="busy", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
            )

            assert await application.handle_message(incoming("hello")) is None
            assert adapter.sent[-1][1] == LOCK_BUSY_REPLY
        finally:
            await application.stop()

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limited_turn_is_not_remembered(self, build_app, adapter):
        respx.post(ENDPOINT).respond(200, content=sse("ok"))
        application = await build_app(rate_limit=RateLimitConfig(max_events=1, window=60))
        try:
            await application.handle_message(incoming("hello"))
            assert await application.handle_message(incoming("hello again")) is None

            assert adapter.sent[-1][1].startswith("Rate limit reached.")
            assert len(application.session("5").history) == 2
        finally:
            await application.stop()
