"""Tests for the terminal adapter and conversation keys."""

import asyncio
import io

import pytest

from teleassist.core.session import StreamRegistry, conversation_key, rate_limit_key
from teleassist.messenger.console import ConsoleAdapter
from teleassist.messenger.models import OutgoingMessage


class TestConsoleAdapter:
    @pytest.mark.asyncio
    async def test_flush_prints_final_text_once(self):
        output = io.StringIO()
        adapter = ConsoleAdapter(output=output)

        message_id = await adapter.send_message(OutgoingMessage(chat_id=1, text="Thinking..."))
        await adapter.edit_message(1, message_id, "partial")
        await adapter.edit_message(1, message_id, "final answer")
        await adapter.flush()
        await adapter.flush()

        assert output.getvalue() == "final answer\n\n"

    @pytest.mark.asyncio
    async def test_edit_of_unknown_message_is_ignored(self):
        adapter = ConsoleAdapter(output=io.StringIO())
        await adapter.edit_message(1, "99", "text")
        assert adapter.messages == {}

    @pytest.mark.asyncio
    async def test_run_dispatches_until_exit(self):
        lines = iter(["hello", "   ", "second", "/quit", "never"])
        output = io.StringIO()
        adapter = ConsoleAdapter(output=output, reader=lambda prompt: next(lines), chat_id=7, user_id=3)
        received = []

        async def on_message(message):
            received.append(message)
            await adapter.send_message(OutgoingMessage(chat_id=message.chat_id, text=f"echo {message.text}"))

        adapter.on_message(on_message)
        await adapter.run()

        assert [m.text for m in received] == ["hello", "second"]
        assert received[0].chat_id == 7
        assert received[0].user_id == 3
        assert output.getvalue() == "echo hello\n\necho second\n\n"

    @pytest.mark.asyncio
    async def test_stop_reaches_running_turn(self):
        lines = iter(["slow question", "/stop", "/quit"])
        output = io.StringIO()
        adapter = ConsoleAdapter(output=output, reader=lambda prompt: next(lines))
        release = asyncio.Event()

        async def on_message(message):
            if message.text == "/stop":
                release.set()
                await adapter.send_message(OutgoingMessage(chat_id=message.chat_id, text="stopped"))
                return
            await release.wait()
            await adapter.send_message(OutgoingMessage(chat_id=message.chat_id, text="slow done"))

        adapter.on_message(on_message)
        await asyncio.wait_for(adapter.run(), timeout=2)

        assert output.getvalue() == "stopped\n\nslow done\n\n"

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_end_session(self):
        lines = iter(["boom", "fine", "/quit"])
        output = io.StringIO()
        adapter = ConsoleAdapter(output=output, reader=lambda prompt: next(lines))

        async def on_message(message):
            if message.text == "boom":
                raise RuntimeError("handler failed")
            await adapter.send_message(OutgoingMessage(chat_id=message.chat_id, text="ok"))

        adapter.on_message(on_message)
        await adapter.run()

        assert output.getvalue() == "ok\n\n"

    @pytest.mark.asyncio
    async def test_run_stops_on_eof(self):
        def reader(prompt):
            raise EOFError

        adapter = ConsoleAdapter(output=io.StringIO(), reader=reader)
        await adapter.run()
        assert adapter.messages == {}


class TestSessionKeys:
    def test_conversation_key(self):
        assert conversation_key(5) == "5"
        assert conversation_key(5, 9) == "5"
        assert conversation_key(5, 9, is_group=True) == "5:9"
        assert conversation_key(5, None, is_group=True) == "5"

    def test_rate_limit_key(self):
        assert rate_limit_key(9, 5) == "user:9"
        assert rate_limit_key(None, 5) == "chat:5"
        assert rate_limit_key() is None


class TestStreamRegistry:
    @pytest.mark.asyncio
    async def test_new_stream_supersedes_previous(self):
        streams = StreamRegistry()
        first = streams.begin("5")
        second = streams.begin("5")

        assert first.is_set()
        assert not second.is_set()
        assert streams.is_active("5")

    @pytest.mark.asyncio
    async def test_stop_and_finish(self):
        streams = StreamRegistry()
        event = streams.begin("5")

        assert streams.stop("5")
        assert event.is_set()
        assert not streams.stop("5")

        stale = asyncio.Event()
        replacement = streams.begin("5")
        streams.finish("5", stale)
        assert streams.is_active("5")
        streams.finish("5", replacement)
        assert not streams.is_active("5")
