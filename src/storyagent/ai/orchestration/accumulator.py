"""Accumulates streamed deltas into one assistant message."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from ..client import DeltaKind, ModelDelta
from .types import Message, OperationInvocation

__all__ = ["StreamAccumulator"]


@dataclass(slots=True)
class StreamAccumulator:
    """Four text buffers plus a flag recording whether a tool call started.

    Argument fragments are concatenated in arrival order and never parsed
    here; parsing happens once the stream has ended.
    """

    reasoning_parts: list[str] = field(default_factory=list)
    content_parts: list[str] = field(default_factory=list)
    tool_name_parts: list[str] = field(default_factory=list)
    tool_id_parts: list[str] = field(default_factory=list)
    argument_parts: list[str] = field(default_factory=list)
    has_tool_call: bool = False
    finished: bool = False
    finish_reason: str | None = None

    def feed(self, delta: ModelDelta) -> None:
        kind = delta.kind
        if kind == DeltaKind.REASONING:
            self.reasoning_parts.append(delta.text)
        elif kind == DeltaKind.CONTENT:
            self.content_parts.append(delta.text)
        elif kind == DeltaKind.TOOL_NAME:
            self.has_tool_call = True
            self.tool_name_parts.append(delta.text)
        elif kind == DeltaKind.TOOL_ID:
            self.has_tool_call = True
            # Backends either repeat the full id or stream it once.
            if not self.tool_id_parts or self.tool_id_parts[-1] != delta.text:
                self.tool_id_parts.append(delta.text)
        elif kind == DeltaKind.TOOL_ARGUMENTS:
            self.has_tool_call = True
            self.argument_parts.append(delta.text)
        elif kind == DeltaKind.END:
            self.finished = True
            self.finish_reason = delta.finish_reason

    @property
    def reasoning(self) -> str:
        return "".join(self.reasoning_parts)

    @property
    def content(self) -> str:
        return "".join(self.content_parts)

    @property
    def tool_name(self) -> str:
        return "".join(self.tool_name_parts)

    @property
    def tool_call_id(self) -> str:
        return "".join(self.tool_id_parts)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.argument_parts)

    def invocation(self) -> OperationInvocation | None:
        """The requested invocation, with a generated id when the backend sent none."""
        if not self.has_tool_call:
            return None
        call_id = self.tool_call_id or f"call_{uuid.uuid4().hex[:24]}"
        return OperationInvocation(id=call_id, name=self.tool_name, raw_arguments=self.raw_arguments)

    def to_message(self, invocation: OperationInvocation | None = None) -> Message:
        invocation = invocation or self.invocation()
        return Message.assistant(
            self.content,
            [invocation] if invocation is not None else None,
            reasoning=self.reasoning,
        )
