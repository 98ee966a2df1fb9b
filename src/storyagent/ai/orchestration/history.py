"""Message-list helpers for resuming and repairing conversations.

The backend requires every assistant tool call to be answered by a ``tool``
message placed directly after it. These helpers keep that shape intact when
results arrive out of band (approvals, rejections, interrupted turns).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from ..operations.registry import OperationRegistry
from .errors import ErrorCode, ResumeError
from .types import Message, OperationInvocation

__all__ = [
    "ensure_tool_call_order",
    "find_invocation",
    "find_tool_result",
    "find_pending_tool_call",
    "find_unanswered_tool_calls",
    "repair_dangling_tool_calls",
    "splice_tool_result",
    "replace_invocation_arguments",
    "rejection_payload",
    "interrupted_payload",
]

LOGGER = logging.getLogger(__name__)


def rejection_payload(*, superseded: bool = False) -> dict[str, Any]:
    """Tool-result payload telling the model the user declined the operation."""

    payload: dict[str, Any] = {
        "success": False,
        "error": ErrorCode.USER_REJECTED,
        "userRejected": True,
    }
    if superseded:
        payload["superseded"] = True
    return payload


def interrupted_payload() -> dict[str, Any]:
    return {
        "success": False,
        "error": "INTERRUPTED",
        "message": "The operation did not run because the previous turn ended early.",
    }


def find_invocation(messages: Sequence[Message], tool_call_id: str) -> tuple[int, OperationInvocation] | None:
    """Locate the last assistant message that issued ``tool_call_id``."""

    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.role != "assistant" or not message.tool_calls:
            continue
        for call in message.tool_calls:
            if call.id == tool_call_id:
                return index, call
    return None


def find_tool_result(messages: Sequence[Message], tool_call_id: str) -> Message | None:
    for message in messages:
        if message.role == "tool" and message.tool_call_id == tool_call_id:
            return message
    return None


def find_unanswered_tool_calls(messages: Sequence[Message]) -> list[OperationInvocation]:
    answered = {message.tool_call_id for message in messages if message.role == "tool"}
    pending: list[OperationInvocation] = []
    for message in messages:
        if message.role == "assistant" and message.tool_calls:
            pending.extend(call for call in message.tool_calls if call.id not in answered)
    return pending


def find_pending_tool_call(
    messages: Sequence[Message],
    registry: OperationRegistry,
) -> OperationInvocation | None:
    """The gated call in the last assistant message that has no result yet."""

    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.role != "assistant":
            continue
        answered = {item.tool_call_id for item in messages[index + 1 :] if item.role == "tool"}
        for call in message.tool_calls or ():
            if call.id not in answered and registry.requires_confirmation(call.name):
                return call
        return None
    return None


def ensure_tool_call_order(messages: Sequence[Message]) -> list[Message]:
    """Move each tool message directly after the assistant message that issued it.

    Tool messages whose id matches no assistant call stay where they are.
    """

    issued: set[str] = set()
    for message in messages:
        if message.role == "assistant" and message.tool_calls:
            issued.update(call.id for call in message.tool_calls)

    results: dict[str, Message] = {}
    for message in messages:
        if message.role == "tool" and message.tool_call_id in issued:
            results.setdefault(message.tool_call_id, message)

    ordered: list[Message] = []
    placed: set[str] = set()
    for message in messages:
        if message.role == "tool" and message.tool_call_id in issued:
            continue
        ordered.append(message)
        if message.role == "assistant" and message.tool_calls:
            for call in message.tool_calls:
                result = results.get(call.id)
                if result is not None and call.id not in placed:
                    ordered.append(result)
                    placed.add(call.id)
    if len(ordered) != len(messages):
        LOGGER.debug("Dropped %s duplicate tool message(s) while reordering", len(messages) - len(ordered))
    return ordered


def splice_tool_result(
    messages: Sequence[Message],
    tool_call_id: str,
    tool_message: Message,
) -> tuple[list[Message], bool]:
    """Insert ``tool_message`` right after the assistant call it answers.

    Returns the new list and whether anything was inserted. An existing
    result for the same id wins, which makes replays harmless.

    Raises:
        ResumeError: No assistant message issued ``tool_call_id``.
    """

    if find_tool_result(messages, tool_call_id) is not None:
        return list(messages), False
    located = find_invocation(messages, tool_call_id)
    if located is None:
        raise ResumeError(
            message=f"No assistant message issued tool call '{tool_call_id}'",
            details={"tool_call_id": tool_call_id},
        )
    index, _ = located
    updated = list(messages)
    updated.insert(index + 1, tool_message)
    return updated, True


def replace_invocation_arguments(
    messages: Sequence[Message],
    tool_call_id: str,
    arguments: Mapping[str, Any],
) -> list[Message]:
    """Rewrite the recorded arguments of a call (used when the user edits them)."""

    located = find_invocation(messages, tool_call_id)
    if located is None:
        raise ResumeError(
            message=f"No assistant message issued tool call '{tool_call_id}'",
            details={"tool_call_id": tool_call_id},
        )
    index, _ = located
    message = messages[index]
    calls = [
        call.with_arguments(arguments) if call.id == tool_call_id else call
        for call in message.tool_calls or ()
    ]
    updated = list(messages)
    updated[index] = message.with_tool_calls(calls)
    return updated


def repair_dangling_tool_calls(
    messages: Sequence[Message],
    *,
    payloads: Mapping[str, Mapping[str, Any]] | None = None,
) -> tuple[list[Message], list[Message]]:
    """Answer every unanswered tool call with a stub result.

    ``payloads`` maps tool call ids to the stub content to use; other calls
    get :func:`interrupted_payload`. Returns the repaired list and the stub
    messages that were added.
    """

    repaired = ensure_tool_call_order(messages)
    added: list[Message] = []
    for call in find_unanswered_tool_calls(repaired):
        payload = (payloads or {}).get(call.id) or interrupted_payload()
        stub = Message.tool(json.dumps(dict(payload), ensure_ascii=False), call.id, name=call.name)
        repaired, inserted = splice_tool_result(repaired, call.id, stub)
        if inserted:
            added.append(stub)
    if added:
        LOGGER.info("Answered %s dangling tool call(s) before continuing", len(added))
    return repaired, added
