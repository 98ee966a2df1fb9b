"""Tests for NDJSON event encoding."""

from __future__ import annotations

import json

import pytest

from storyagent.ai.orchestration.types import CostEstimate, StreamEvent
from storyagent.ai.orchestration.wire import decode_line, encode_event, encode_stream


def test_encode_event_is_one_json_line() -> None:
    line = encode_event(StreamEvent("content", {"iterationNumber": 1, "content": "Hé", "delta": "é"}))

    assert line.endswith("\n")
    assert line.count("\n") == 1
    assert json.loads(line) == {"type": "content", "data": {"iterationNumber": 1, "content": "Hé", "delta": "é"}}


def test_encode_falls_back_to_to_dict() -> None:
    line = encode_event(StreamEvent("pending_action", {"creditCost": CostEstimate(total=6)}))

    assert json.loads(line)["data"]["creditCost"] == {"total": 6, "breakdown": []}


def test_decode_line_round_trip_and_validation() -> None:
    event = decode_line(encode_event(StreamEvent.complete("done", iterations=1)).encode("utf-8"))

    assert event.type == "complete"
    assert event.data == {"reason": "done", "iterations": 1}
    with pytest.raises(ValueError):
        decode_line('["not", "an", "event"]')


@pytest.mark.asyncio
async def test_encode_stream_yields_bytes() -> None:
    async def events():
        yield StreamEvent("iteration_start", {"iterationNumber": 1})
        yield StreamEvent.complete("done")

    chunks = [chunk async for chunk in encode_stream(events())]

    assert all(isinstance(chunk, bytes) for chunk in chunks)
    assert [json.loads(chunk)["type"] for chunk in chunks] == ["iteration_start", "complete"]
