"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from storyagent.ai.client import DeltaKind, ModelDelta
from storyagent.ai.orchestration.errors import UpstreamError
from storyagent.ai.orchestration.types import Message, StreamEvent


def text_turn(*chunks: str, reasoning: Sequence[str] = ()) -> list[ModelDelta]:
    """Deltas for a plain answer streamed in ``chunks``."""

    deltas = [ModelDelta(DeltaKind.REASONING, text) for text in reasoning]
    deltas.extend(ModelDelta(DeltaKind.CONTENT, text) for text in chunks)
    deltas.append(ModelDelta(DeltaKind.END, finish_reason="stop"))
    return deltas


def tool_turn(
    name: str,
    arguments: Mapping[str, Any] | str,
    *,
    call_id: str = "call_1",
    content: Sequence[str] = (),
    fragment_size: int = 7,
) -> list[ModelDelta]:
    """Deltas for a tool call whose argument text arrives in fragments."""

    raw = arguments if isinstance(arguments, str) else json.dumps(dict(arguments))
    deltas = [ModelDelta(DeltaKind.CONTENT, text) for text in content]
    deltas.append(ModelDelta(DeltaKind.TOOL_ID, call_id))
    deltas.append(ModelDelta(DeltaKind.TOOL_NAME, name))
    for start in range(0, len(raw), fragment_size):
        deltas.append(ModelDelta(DeltaKind.TOOL_ARGUMENTS, raw[start : start + fragment_size]))
    deltas.append(ModelDelta(DeltaKind.END, finish_reason="tool_calls"))
    return deltas


class ScriptedModelClient:
    """Model client stub replaying one scripted delta list per call.

    Example:
        client = ScriptedModelClient([tool_turn("query_assets", {}), text_turn("Done")])
    """

    def __init__(self, turns: Iterable[Sequence[ModelDelta] | Exception]) -> None:
        self._turns = list(turns)
        self.calls: list[dict[str, Any]] = []
        self.closed_streams = 0

    async def stream_chat(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[ModelDelta]:
        self.calls.append({"messages": list(messages), "tools": list(tools or ()), **kwargs})
        if not self._turns:
            raise AssertionError("ScriptedModelClient ran out of scripted turns")
        turn = self._turns.pop(0)
        try:
            if isinstance(turn, Exception):
                raise turn
            for delta in turn:
                yield delta
        finally:
            self.closed_streams += 1


def upstream_failure(message: str = "backend unavailable") -> UpstreamError:
    return UpstreamError(message=message)


async def collect(events: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    return [event async for event in events]


def event_types(events: Iterable[StreamEvent]) -> list[str]:
    return [event.type for event in events]


def last_complete_reason(events: Sequence[StreamEvent]) -> str | None:
    for event in reversed(events):
        if event.type == "complete":
            return event.data.get("reason")
    return None


class RecordingHandler:
    """Operation handler that records calls and returns (or raises) a fixed value."""

    def __init__(self, result: Any = None, *, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, arguments: Mapping[str, Any]) -> Any:
        self.calls.append(dict(arguments))
        if self.error is not None:
            raise self.error
        return self.result
