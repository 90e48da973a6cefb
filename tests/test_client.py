"""Tests for the streaming completion client.

HTTP is mocked with respx; no test reaches the network.
"""

import asyncio
import json

import httpx
import pytest
import respx

from teleassist.ai.client import (
    DEFAULT_ENDPOINT,
    CompletionClient,
    StreamAccumulator,
    normalize_endpoint,
)
from teleassist.ai.types import ChatMessage, CompletionRequest
from teleassist.errors import (
    CompletionAborted,
    EmptyStreamError,
    UpstreamHttpError,
    UpstreamTransportError,
    describe_generation_error,
)

from conftest import ENDPOINT


def sse(*payloads: dict) -> str:
    return "".join(f"data: {json.dumps(payload)}\n\n" for payload in payloads) + "data: [DONE]\n\n"


def delta(text: str, finish_reason=None) -> dict:
    return {"id": "gen-1", "model": "test/model", "choices": [{"delta": {"content": text}, "finish_reason": finish_reason}]}


def completion_body(text: str = "Hello!") -> dict:
    return {
        "id": "gen-1",
        "model": "test/model",
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13},
    }


@pytest.fixture
def llm_request():
    return CompletionRequest(
        model="test/model",
        messages=[
            ChatMessage(role="system", content="You are helpful."),
            ChatMessage(role="user", content="Hello!"),
        ],
        max_tokens=100,
        temperature=0.3,
    )


@pytest.fixture
def client(openrouter_config, httpx_client):
    return CompletionClient(openrouter_config, http_client=httpx_client)


class TestNormalizeEndpoint:
    @pytest.mark.parametrize(
        "base_url, expected",
        [
            ("https://openrouter.ai/api/v1", "https://openrouter.ai/api/v1/chat/completions"),
            ("https://openrouter.ai/api/v1/", "https://openrouter.ai/api/v1/chat/completions"),
            ("https://proxy.local/v1/chat/completions", "https://proxy.local/v1/chat/completions"),
            ("openrouter.ai/api/v1", DEFAULT_ENDPOINT),
            ("", DEFAULT_ENDPOINT),
            ("   ", DEFAULT_ENDPOINT),
        ],
    )
    def test_endpoint(self, base_url, expected):
        assert normalize_endpoint(base_url) == expected


class TestComplete:
    @pytest.mark.asyncio
    @respx.mock
    async def test_nonstream_success(self, client, llm_request):
        route = respx.post(ENDPOINT).respond(200, json=completion_body())

        result = await client.complete(llm_request)

        assert result.text == "Hello!"
        assert result.finish_reason == "stop"
        assert result.usage.total_tokens == 13

        sent = route.calls.last.request
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert sent.headers["X-Title"] == "Telegram Chat Bot"
        assert sent.headers["HTTP-Referer"] == "https://localhost"
        body = json.loads(sent.content)
        assert body["stream"] is False
        assert body["model"] == "test/model"
        assert body["messages"][1] == {"role": "user", "content": "Hello!"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_content_parts_are_joined(self, client, llm_request):
        body = completion_body()
        body["choices"][0]["message"]["content"] = [{"type": "text", "text": "Hel"}, {"type": "text", "text": "lo"}]
        respx.post(ENDPOINT).respond(200, json=body)

        result = await client.complete(llm_request)
        assert result.text == "Hello"

    @pytest.mark.asyncio
    @respx.mock
    async def test_tool_calls_are_parsed(self, client, llm_request):
        body = completion_body("")
        body["choices"][0]["message"]["tool_calls"] = [
            {"id": "call_1", "type": "function", "function": {"name": "calculator", "arguments": '{"expression": "2+2"}'}}
        ]
        respx.post(ENDPOINT).respond(200, json=body)

        result = await client.complete(llm_request)

        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].name == "calculator"
        assert json.loads(result.tool_calls[0].arguments_json) == {"expression": "2+2"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_503_then_succeeds(self, client, llm_request):
        route = respx.post(ENDPOINT)
        route.side_effect = [
            httpx.Response(503, json={"error": {"message": "overloaded"}}),
            httpx.Response(200, json=completion_body("recovered")),
        ]

        result = await client.complete(llm_request)

        assert result.text == "recovered"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_does_not_retry_400(self, client, llm_request):
        route = respx.post(ENDPOINT).respond(400, json={"error": {"message": "bad request"}})

        with pytest.raises(UpstreamHttpError) as exc_info:
            await client.complete(llm_request)

        assert exc_info.value.status == 400
        assert "bad request" in str(exc_info.value)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_gives_up_after_max_retries(self, client, llm_request):
        route = respx.post(ENDPOINT).respond(429, json={"error": {"message": "slow down"}})

        with pytest.raises(UpstreamHttpError) as exc_info:
            await client.complete(llm_request)

        assert exc_info.value.status == 429
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_is_not_retried(self, client, llm_request):
        route = respx.post(ENDPOINT).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(UpstreamTransportError):
            await client.complete(llm_request)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_aborts_without_retry(self, openrouter_config, httpx_client, llm_request):
        config = openrouter_config.model_copy(update={"timeout": 0.05})
        client = CompletionClient(config, http_client=httpx_client)

        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json=completion_body())

        route = respx.post(ENDPOINT).mock(side_effect=slow)

        with pytest.raises(CompletionAborted) as exc_info:
            await client.complete(llm_request)

        assert exc_info.value.reason == "timeout"
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancel_event_aborts_in_flight_request(self, client, llm_request):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json=completion_body())

        respx.post(ENDPOINT).mock(side_effect=slow)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        with pytest.raises(CompletionAborted) as exc_info:
            await client.complete(llm_request, cancel_event=cancel)

        assert exc_info.value.cancelled

    @pytest.mark.asyncio
    @respx.mock
    async def test_already_cancelled_makes_no_request(self, client, llm_request):
        route = respx.post(ENDPOINT).respond(200, json=completion_body())
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(CompletionAborted):
            await client.complete(llm_request, cancel_event=cancel)
        assert route.call_count == 0


class TestStream:
    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_deltas(self, client, llm_request):
        body = sse(
            delta("Hello"),
            delta(" world"),
            {**delta("", "stop"), "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}},
        )
        route = respx.post(ENDPOINT).respond(200, content=body, headers={"content-type": "text/event-stream"})

        received: list[str] = []
        result = await client.stream(llm_request, on_delta=received.append)

        assert received == ["Hello", " world"]
        assert result.text == "Hello world"
        assert result.finish_reason == "stop"
        assert result.usage.total_tokens == 7
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_snapshot_provider_emits_only_suffix(self, client, llm_request):
        def snapshot(text):
            return {"choices": [{"message": {"content": text}}]}

        body = sse(snapshot("Hel"), snapshot("Hello"), snapshot("Hello"), snapshot("Hello world"))
        respx.post(ENDPOINT).respond(200, content=body)

        received: list[str] = []
        result = await client.stream(llm_request, on_delta=received.append)

        assert received == ["Hel", "lo", " world"]
        assert result.text == "Hello world"

    @pytest.mark.asyncio
    @respx.mock
    async def test_tool_calls_are_ordered_by_index(self, client, llm_request):
        def tool_delta(index, **function):
            entry = {"index": index, "function": function}
            if "name" in function:
                entry["id"] = f"call_{index}"
            return {"choices": [{"delta": {"tool_calls": [entry]}}]}

        body = sse(
            tool_delta(1, name="unit_convert", arguments='{"value": 1'),
            tool_delta(0, name="calculator", arguments='{"expression"'),
            tool_delta(1, arguments=', "from": "km", "to": "m"}'),
            tool_delta(0, arguments=': "2+2"}'),
        )
        respx.post(ENDPOINT).respond(200, content=body)

        result = await client.stream(llm_request)

        assert [call.name for call in result.tool_calls] == ["calculator", "unit_convert"]
        assert [call.id for call in result.tool_calls] == ["call_0", "call_1"]
        assert json.loads(result.tool_calls[0].arguments_json) == {"expression": "2+2"}
        assert json.loads(result.tool_calls[1].arguments_json) == {"value": 1, "from": "km", "to": "m"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_callback_failure_does_not_break_stream(self, client, llm_request):
        respx.post(ENDPOINT).respond(200, content=sse(delta("a"), delta("b")))

        def explode(_):
            raise RuntimeError("ui went away")

        result = await client.stream(llm_request, on_delta=explode)
        assert result.text == "ab"

    @pytest.mark.asyncio
    @respx.mock
    async def test_async_callback_is_awaited(self, client, llm_request):
        respx.post(ENDPOINT).respond(200, content=sse(delta("x"), delta("y")))
        received: list[str] = []

        async def collect(text):
            await asyncio.sleep(0)
            received.append(text)

        await client.stream(llm_request, on_delta=collect)
        assert received == ["x", "y"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_body_is_an_error(self, client, llm_request):
        route = respx.post(ENDPOINT).respond(200, content=b"")

        with pytest.raises(EmptyStreamError):
            await client.stream(llm_request)
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_slow_but_active_stream_outlives_deadline(self, openrouter_config, llm_request):
        words = ["one ", "two ", "three ", "four ", "five ", "six"]

        async def trickle():
            for word in words:
                await asyncio.sleep(0.1)
                yield f"data: {json.dumps(delta(word))}\n\n".encode()
            yield b"data: [DONE]\n\n"

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=trickle()))
        config = openrouter_config.model_copy(update={"timeout": 0.25})
        async with httpx.AsyncClient(transport=transport) as http:
            client = CompletionClient(config, http_client=http)
            received: list[str] = []
            result = await client.stream(llm_request, on_delta=received.append)

        assert received == words
        assert result.text == "one two three four five six"

    @pytest.mark.asyncio
    @respx.mock
    async def test_deadline_still_covers_slow_headers(self, openrouter_config, httpx_client, llm_request):
        config = openrouter_config.model_copy(update={"timeout": 0.05})
        client = CompletionClient(config, http_client=httpx_client)

        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, content=sse(delta("late")))

        respx.post(ENDPOINT).mock(side_effect=slow)

        with pytest.raises(CompletionAborted) as exc_info:
            await client.stream(llm_request)
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_cancel_still_reaches_open_stream(self, openrouter_config, llm_request):
        async def endless():
            yield f"data: {json.dumps(delta('start'))}\n\n".encode()
            await asyncio.sleep(5)
            yield b"data: [DONE]\n\n"

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=endless()))
        cancel = asyncio.Event()
        async with httpx.AsyncClient(transport=transport) as http:
            client = CompletionClient(openrouter_config, http_client=http)
            received: list[str] = []

            def on_delta(text):
                received.append(text)
                cancel.set()

            with pytest.raises(CompletionAborted) as exc_info:
                await client.stream(llm_request, on_delta=on_delta, cancel_event=cancel)

        assert exc_info.value.cancelled
        assert received == ["start"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_retries_502(self, client, llm_request):
        route = respx.post(ENDPOINT)
        route.side_effect = [
            httpx.Response(502, json={"error": {"message": "bad gateway"}}),
            httpx.Response(200, content=sse(delta("ok"))),
        ]

        result = await client.stream(llm_request)

        assert result.text == "ok"
        assert route.call_count == 2


class TestStreamAccumulator:
    def test_diverging_snapshot_is_not_reemitted(self):
        def snapshot(text):
            return {"choices": [{"message": {"content": text}}]}

        accumulator = StreamAccumulator()
        emitted = accumulator.feed(sse(snapshot("Hello"), snapshot("Howdy there"), snapshot("Howdy there, friend")))

        assert emitted == ["Hello", ", friend"]

    def test_events_split_across_chunks(self):
        accumulator = StreamAccumulator()
        raw = sse(delta("Hello"), delta(" there"))

        emitted: list[str] = []
        for i in range(0, len(raw), 7):
            emitted.extend(accumulator.feed(raw[i : i + 7]))
        emitted.extend(accumulator.close())

        assert emitted == ["Hello", " there"]

    def test_unparsable_lines_are_ignored(self):
        accumulator = StreamAccumulator()
        emitted = accumulator.feed(": keep-alive\n\ndata: {not json}\n\n" + sse(delta("ok")))
        assert emitted == ["ok"]

    def test_trailing_event_without_blank_line(self):
        accumulator = StreamAccumulator()
        assert accumulator.feed(f"data: {json.dumps(delta('tail'))}") == []
        assert accumulator.close() == ["tail"]


class TestBackoff:
    def test_delay_is_capped(self, openrouter_config, httpx_client):
        config = openrouter_config.model_copy(
            update={"retry_base_delay": 0.3, "retry_max_delay": 4.0, "retry_jitter": 0.0}
        )
        client = CompletionClient(config, http_client=httpx_client)
        assert client.backoff_delay(0) == pytest.approx(0.3)
        assert client.backoff_delay(2) == pytest.approx(1.2)
        assert client.backoff_delay(10) == pytest.approx(4.0)

    def test_jitter_is_bounded(self, openrouter_config, httpx_client):
        config = openrouter_config.model_copy(
            update={"retry_base_delay": 0.3, "retry_max_delay": 4.0, "retry_jitter": 0.12}
        )
        client = CompletionClient(config, http_client=httpx_client)
        for _ in range(20):
            assert 0.3 <= client.backoff_delay(0) <= 0.42


class TestDescribeGenerationError:
    @pytest.mark.parametrize(
        "error, needle",
        [
            (UpstreamHttpError(401, "unauthorized"), "authentication"),
            (UpstreamHttpError(402, "payment required"), "credits"),
            (UpstreamHttpError(429, "slow down"), "rate limit"),
            (CompletionAborted("timeout"), "too long"),
            (UpstreamTransportError("connection refused"), "Network"),
            (UpstreamHttpError(500, "boom"), "/model auto"),
        ],
    )
    def test_messages(self, error, needle):
        assert needle in describe_generation_error(error)
