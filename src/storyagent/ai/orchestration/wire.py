"""Newline-delimited JSON encoding of loop events."""

from __future__ import annotations

import json
from typing import Any, AsyncIterable, AsyncIterator

from .types import StreamEvent

__all__ = ["encode_event", "decode_line", "encode_stream"]


def encode_event(event: StreamEvent) -> str:
    """One ``{"type", "data"}`` object followed by a newline."""

    return json.dumps(event.to_dict(), ensure_ascii=False, default=_fallback) + "\n"


def decode_line(line: str | bytes) -> StreamEvent:
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    payload = json.loads(line)
    if not isinstance(payload, dict) or "type" not in payload:
        raise ValueError("Event line must be an object with a 'type' field")
    data = payload.get("data") or {}
    return StreamEvent(type=str(payload["type"]), data=data if isinstance(data, dict) else {"value": data})


async def encode_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[bytes]:
    """Encode an event stream for an HTTP response body."""

    async for event in events:
        yield encode_event(event).encode("utf-8")


def _fallback(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, (set, tuple)):
        return list(value)
    return repr(value)
