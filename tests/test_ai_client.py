"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest

from openai import APIConnectionError, AsyncOpenAI

from storyagent.ai.client import AIClient, ClientSettings, DeltaKind, ModelDelta
from storyagent.ai.orchestration.errors import UpstreamError
from storyagent.ai.orchestration.types import Message


def _chunk(
    *,
    content: str | None = None,
    tool_calls: list[SimpleNamespace] | None = None,
    reasoning_content: str | None = None,
    finish_reason: str | None = None,
) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=reasoning_content)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tool_fragment(index: int, *, call_id: str | None = None, name: str | None = None, arguments: str | None = None):
    return SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


class _FakeStream:
    def __init__(self, chunks: Iterable[Any], *, fail_after: int | None = None):
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self.closed = False

    async def __aenter__(self) -> "_FakeStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.closed = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for position, chunk in enumerate(self._chunks):
            if self._fail_after is not None and position >= self._fail_after:
                raise httpx.ReadError("connection dropped")
            yield chunk


class _FakeCompletions:
    def __init__(self, streams: Iterable[_FakeStream | Exception]):
        self._streams = list(streams)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> _FakeStream:
        self.calls.append(kwargs)
        item = self._streams.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _make_client(*streams: _FakeStream | Exception) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions(streams)))


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {"base_url": "http://local", "api_key": "test", "model": "stub-model"}
    values.update(overrides)
    return ClientSettings(**values)


async def _drain(client: AIClient, messages: list[Any], **kwargs: Any) -> list[ModelDelta]:
    return [delta async for delta in client.stream_chat(messages, **kwargs)]


@pytest.mark.asyncio
async def test_stream_chat_yields_reasoning_content_and_tool_deltas() -> None:
    stream = _FakeStream(
        [
            _chunk(reasoning_content="Planning"),
            _chunk(content="Let me "),
            _chunk(content="check."),
            _chunk(tool_calls=[_tool_fragment(0, call_id="call_9", name="query_assets", arguments='{"ty')]),
            _chunk(tool_calls=[_tool_fragment(0, arguments='pe": "image"}')]),
            _chunk(finish_reason="tool_calls"),
        ]
    )
    fake = _make_client(stream)
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake))

    deltas = await _drain(client, [Message.user("What images do I have?")])

    assert [delta.kind for delta in deltas] == [
        DeltaKind.REASONING,
        DeltaKind.CONTENT,
        DeltaKind.CONTENT,
        DeltaKind.TOOL_ID,
        DeltaKind.TOOL_NAME,
        DeltaKind.TOOL_ARGUMENTS,
        DeltaKind.TOOL_ARGUMENTS,
        DeltaKind.END,
    ]
    assert "".join(d.text for d in deltas if d.kind == DeltaKind.TOOL_ARGUMENTS) == '{"type": "image"}'
    assert deltas[-1].finish_reason == "tool_calls"
    assert stream.closed is True

    call = fake.chat.completions.calls[0]
    assert call["stream"] is True
    assert call["model"] == "stub-model"
    assert call["messages"] == [{"role": "user", "content": "What images do I have?"}]


@pytest.mark.asyncio
async def test_stream_chat_drops_additional_tool_calls() -> None:
    stream = _FakeStream(
        [
            _chunk(tool_calls=[_tool_fragment(0, call_id="a", name="query_assets", arguments="{}")]),
            _chunk(tool_calls=[_tool_fragment(1, call_id="b", name="query_timeline", arguments="{}")]),
        ]
    )
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client(stream)))

    deltas = await _drain(client, [{"role": "user", "content": "Hi"}])

    names = [d.text for d in deltas if d.kind == DeltaKind.TOOL_NAME]
    ids = [d.text for d in deltas if d.kind == DeltaKind.TOOL_ID]
    assert names == ["query_assets"]
    assert ids == ["a"]


@pytest.mark.asyncio
async def test_stream_chat_passes_tools_and_settings_defaults() -> None:
    fake = _make_client(_FakeStream([_chunk(content="ok", finish_reason="stop")]))
    client = AIClient(
        _settings(temperature=0.4, max_completion_tokens=256, metadata={"app": "story"}),
        client=cast(AsyncOpenAI, fake),
    )
    tools = [{"type": "function", "function": {"name": "query_assets", "parameters": {"type": "object"}}}]

    await _drain(client, [{"role": "user", "content": "Hi"}], tools=tools)

    call = fake.chat.completions.calls[0]
    assert call["tools"] == tools
    assert call["temperature"] == 0.4
    assert call["max_completion_tokens"] == 256
    assert call["metadata"] == {"app": "story"}


@pytest.mark.asyncio
async def test_stream_chat_requires_messages() -> None:
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client()))

    generator = client.stream_chat([])
    with pytest.raises(ValueError):
        await generator.__anext__()


@pytest.mark.asyncio
async def test_connection_failure_is_wrapped_as_upstream_error() -> None:
    error = APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client(error)))

    with pytest.raises(UpstreamError) as info:
        await _drain(client, [{"role": "user", "content": "Hi"}])

    assert info.value.error_code == "upstream_error"


@pytest.mark.asyncio
async def test_mid_stream_transport_failure_is_wrapped() -> None:
    stream = _FakeStream([_chunk(content="partial"), _chunk(content="never")], fail_after=1)
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client(stream)))

    received: list[ModelDelta] = []
    with pytest.raises(UpstreamError):
        async for delta in client.stream_chat([{"role": "user", "content": "Hi"}]):
            received.append(delta)

    assert [d.text for d in received] == ["partial"]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_opening_the_stream_is_retried_when_configured() -> None:
    error = APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))
    fake = _make_client(error, _FakeStream([_chunk(content="recovered", finish_reason="stop")]))
    client = AIClient(
        _settings(max_retries=2, retry_min_seconds=0.0, retry_max_seconds=0.0),
        client=cast(AsyncOpenAI, fake),
    )

    deltas = await _drain(client, [{"role": "user", "content": "Hi"}])

    assert len(fake.chat.completions.calls) == 2
    assert [d.text for d in deltas if d.kind == DeltaKind.CONTENT] == ["recovered"]


@pytest.mark.asyncio
async def test_debug_logging_captures_prompt_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _make_client(_FakeStream([_chunk(content="done", finish_reason="stop")]))
    client = AIClient(_settings(debug_logging=True), client=cast(AsyncOpenAI, fake))
    captured: dict[str, Any] = {}

    def _capture(payload: Any) -> None:
        captured["payload"] = payload

    monkeypatch.setattr(client, "_log_prompt_payload", _capture)

    await _drain(client, [{"role": "user", "content": "Hello"}])

    assert captured["payload"]["messages"][0]["content"] == "Hello"


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    class _StubAsyncOpenAI:
        def __init__(self) -> None:
            self.closed = False

        async def close(self) -> None:
            self.closed = True

    stub = _StubAsyncOpenAI()
    client = AIClient(_settings(), client=cast(AsyncOpenAI, stub))

    await client.aclose()

    assert stub.closed is True
