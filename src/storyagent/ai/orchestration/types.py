"""Core type definitions for the orchestration loop.

This module defines the dataclasses that flow between the streaming client,
the loop, the dispatcher and the conversation store. Messages and invocations
are frozen so they can be shared freely once appended to a conversation.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    # Messages
    "Message",
    "MessageRole",
    "OperationInvocation",
    # Loop bookkeeping
    "LoopState",
    "ConversationStatus",
    "IterationStep",
    "TurnCheckpoint",
    # Confirmation flow
    "CostLineItem",
    "CostEstimate",
    "PendingAction",
    "PendingStatus",
    "ResumableState",
    "ResumeDecision",
    "ResumeRequest",
    # Events
    "EventType",
    "CompleteReason",
    "StreamEvent",
]


# -----------------------------------------------------------------------------
# Helper
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return _utcnow()


# -----------------------------------------------------------------------------
# Operation Invocation
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OperationInvocation:
    """A single operation requested by the model.

    Attributes:
        id: Tool call identifier assigned by the backend.
        name: Registered operation name.
        raw_arguments: Argument text exactly as streamed.
        parsed_arguments: Decoded arguments once the text parsed cleanly.
    """

    id: str
    name: str
    raw_arguments: str = ""
    parsed_arguments: Mapping[str, Any] | None = None

    def with_arguments(self, arguments: Mapping[str, Any]) -> OperationInvocation:
        """Return a copy whose recorded arguments are replaced."""
        return replace(
            self,
            raw_arguments=json.dumps(dict(arguments), ensure_ascii=False),
            parsed_arguments=dict(arguments),
        )

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to the OpenAI ``tool_calls`` entry format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or "{}"},
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.raw_arguments,
            "parsedArguments": dict(self.parsed_arguments) if self.parsed_arguments is not None else None,
        }

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> OperationInvocation:
        function = param.get("function") or {}
        raw = function.get("arguments")
        if raw is None:
            raw = param.get("arguments", "")
        if not isinstance(raw, str):
            raw = json.dumps(raw, ensure_ascii=False)
        parsed = param.get("parsedArguments")
        return cls(
            id=str(param.get("id", "")),
            name=str(function.get("name") or param.get("name") or ""),
            raw_arguments=raw,
            parsed_arguments=parsed if isinstance(parsed, Mapping) else None,
        )


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message stored in the conversation log.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        reasoning: Reasoning text streamed alongside an assistant answer.
        name: Optional name for tool messages.
        tool_call_id: ID linking a tool result to its invocation.
        tool_calls: Invocations requested by an assistant message.
        metadata: Additional metadata (not sent to the model).
    """

    role: MessageRole
    content: str
    reasoning: str | None = None
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[OperationInvocation, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's chat format or a persisted dict."""
        raw_calls = param.get("tool_calls")
        tool_calls = None
        if raw_calls:
            tool_calls = tuple(
                call if isinstance(call, OperationInvocation) else OperationInvocation.from_chat_param(call)
                for call in raw_calls
            )
        content = param.get("content")
        metadata = param.get("metadata")
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content="" if content is None else str(content),
            reasoning=param.get("reasoning"),
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
            tool_calls=tool_calls,
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence, keeping reasoning and metadata."""
        payload = dict(self.to_chat_param())
        if self.reasoning:
            payload["reasoning"] = self.reasoning
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

    @property
    def invocation(self) -> OperationInvocation | None:
        """First invocation of an assistant message, if any."""
        if not self.tool_calls:
            return None
        return self.tool_calls[0]

    def with_tool_calls(self, tool_calls: Sequence[OperationInvocation]) -> Message:
        return replace(self, tool_calls=tuple(tool_calls) or None)

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        """Create a system message."""
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> Message:
        """Create a user message."""
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[OperationInvocation] | None = None,
        *,
        reasoning: str | None = None,
        **metadata: Any,
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role="assistant",
            content=content,
            reasoning=reasoning or None,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        """Create a tool result message."""
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Loop State
# -----------------------------------------------------------------------------


class LoopState(str, enum.Enum):
    """States of a single turn."""

    ITERATING = "iterating"
    AWAITING_OPERATION_RESULT = "awaiting_operation_result"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DONE = "done"
    FAILED = "failed"


class ConversationStatus(str, enum.Enum):
    """Durable status of a conversation."""

    ACTIVE = "active"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"


@dataclass(slots=True)
class IterationStep:
    """Per-iteration record of streamed text and the operation outcome."""

    iteration_number: int
    thinking: str = ""
    content: str = ""
    operation_outcome: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterationNumber": self.iteration_number,
            "thinking": self.thinking,
            "content": self.content,
            "operationOutcome": dict(self.operation_outcome) if self.operation_outcome else None,
        }


@dataclass(slots=True)
class TurnCheckpoint:
    """Mutable snapshot of an in-flight turn, overwritten as the turn advances."""

    iteration: int = 0
    state: LoopState = LoopState.ITERATING
    thinking: str = ""
    content: str = ""
    steps: list[IterationStep] = field(default_factory=list)
    error: Mapping[str, Any] | None = None
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "state": self.state.value,
            "thinking": self.thinking,
            "content": self.content,
            "steps": [step.to_dict() for step in self.steps],
            "error": dict(self.error) if self.error else None,
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TurnCheckpoint:
        steps = [
            IterationStep(
                iteration_number=int(item.get("iterationNumber", 0)),
                thinking=str(item.get("thinking") or ""),
                content=str(item.get("content") or ""),
                operation_outcome=item.get("operationOutcome"),
            )
            for item in payload.get("steps") or ()
            if isinstance(item, Mapping)
        ]
        try:
            state = LoopState(payload.get("state", LoopState.ITERATING.value))
        except ValueError:
            state = LoopState.ITERATING
        return cls(
            iteration=int(payload.get("iteration", 0)),
            state=state,
            thinking=str(payload.get("thinking") or ""),
            content=str(payload.get("content") or ""),
            steps=steps,
            error=payload.get("error"),
            updated_at=_parse_timestamp(payload.get("updatedAt")),
        )


# -----------------------------------------------------------------------------
# Cost Estimate
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CostLineItem:
    """Credits attributed to one invocation."""

    invocation_id: str
    operation: str
    credits: int
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "functionCallId": self.invocation_id,
            "functionName": self.operation,
            "credits": self.credits,
        }
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(slots=True, frozen=True)
class CostEstimate:
    """Total credits plus a per-invocation breakdown."""

    total: int
    breakdown: tuple[CostLineItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "breakdown": [item.to_dict() for item in self.breakdown]}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CostEstimate:
        items = tuple(
            CostLineItem(
                invocation_id=str(item.get("functionCallId", "")),
                operation=str(item.get("functionName", "")),
                credits=int(item.get("credits", 0)),
                details=item.get("details"),
            )
            for item in payload.get("breakdown") or ()
            if isinstance(item, Mapping)
        )
        return cls(total=int(payload.get("total", 0)), breakdown=items)


# -----------------------------------------------------------------------------
# Pending Action
# -----------------------------------------------------------------------------


class PendingStatus:
    """Lifecycle values of a pending action."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True, frozen=True)
class ResumableState:
    """Opaque snapshot needed to continue a turn after confirmation."""

    messages: tuple[Message, ...]
    tool_call_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [message.to_dict() for message in self.messages],
            "toolCallId": self.tool_call_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ResumableState:
        return cls(
            messages=tuple(Message.from_chat_param(item) for item in payload.get("messages") or ()),
            tool_call_id=str(payload.get("toolCallId", "")),
        )


@dataclass(slots=True, frozen=True)
class PendingAction:
    """A gated invocation awaiting the user's decision."""

    id: str
    invocations: tuple[OperationInvocation, ...]
    narration: str
    resumable_state: ResumableState
    cost_estimate: CostEstimate | None = None
    status: str = PendingStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def invocation(self) -> OperationInvocation:
        return self.invocations[0]

    def with_status(self, status: str) -> PendingAction:
        return replace(self, status=status)

    def to_event_payload(self) -> dict[str, Any]:
        """Shape used by the ``pending_action`` wire event."""
        invocation = self.invocation
        return {
            "id": self.id,
            "functionCall": {
                "id": invocation.id,
                "name": invocation.name,
                "arguments": invocation.raw_arguments,
            },
            "message": self.narration,
            "conversationState": self.resumable_state.to_dict(),
            "creditCost": self.cost_estimate.to_dict() if self.cost_estimate else None,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "invocations": [item.to_dict() for item in self.invocations],
            "narration": self.narration,
            "resumableState": self.resumable_state.to_dict(),
            "costEstimate": self.cost_estimate.to_dict() if self.cost_estimate else None,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PendingAction:
        cost = payload.get("costEstimate")
        return cls(
            id=str(payload.get("id", "")),
            invocations=tuple(
                OperationInvocation.from_chat_param(item) for item in payload.get("invocations") or ()
            ),
            narration=str(payload.get("narration") or ""),
            resumable_state=ResumableState.from_dict(payload.get("resumableState") or {}),
            cost_estimate=CostEstimate.from_dict(cost) if isinstance(cost, Mapping) else None,
            status=str(payload.get("status") or PendingStatus.PENDING),
            created_at=_parse_timestamp(payload.get("createdAt")),
        )


# -----------------------------------------------------------------------------
# Resume Request
# -----------------------------------------------------------------------------


class ResumeDecision:
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True, frozen=True)
class ResumeRequest:
    """Caller's decision on a pending action.

    Attributes:
        messages: Conversation messages from the resumable state.
        decision: ``approved`` or ``rejected``.
        tool_call_id: The invocation the decision applies to.
        modified_arguments: Replacement arguments chosen by the user.
        feedback: Free-form text the user attached to a rejection.
    """

    messages: tuple[Message, ...]
    decision: str
    tool_call_id: str
    modified_arguments: Mapping[str, Any] | None = None
    feedback: str | None = None

    @property
    def approved(self) -> bool:
        return self.decision == ResumeDecision.APPROVED

    @classmethod
    def from_pending(
        cls,
        action: PendingAction,
        *,
        approved: bool,
        modified_arguments: Mapping[str, Any] | None = None,
        feedback: str | None = None,
    ) -> ResumeRequest:
        return cls(
            messages=action.resumable_state.messages,
            decision=ResumeDecision.APPROVED if approved else ResumeDecision.REJECTED,
            tool_call_id=action.resumable_state.tool_call_id,
            modified_arguments=modified_arguments,
            feedback=feedback,
        )


# -----------------------------------------------------------------------------
# Stream Events
# -----------------------------------------------------------------------------


class EventType:
    """Event kinds emitted by the loop, in wire format."""

    ITERATION_START = "iteration_start"
    THINKING = "thinking"
    CONTENT = "content"
    FUNCTION_START = "function_start"
    FUNCTION_RESULT = "function_result"
    PENDING_ACTION = "pending_action"
    ERROR = "error"
    COMPLETE = "complete"


class CompleteReason:
    DONE = "done"
    PENDING_CONFIRMATION = "pending_confirmation"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """Typed event yielded to the caller of the loop."""

    type: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": dict(self.data)}

    @classmethod
    def complete(cls, reason: str, **extra: Any) -> StreamEvent:
        return cls(EventType.COMPLETE, {"reason": reason, **extra})

    @classmethod
    def error(cls, payload: Mapping[str, Any]) -> StreamEvent:
        return cls(EventType.ERROR, dict(payload))
