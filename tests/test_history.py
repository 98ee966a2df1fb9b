"""Tests for message-list repair and splicing helpers."""

from __future__ import annotations

import json

import pytest

from storyagent.ai.operations.registry import default_registry
from storyagent.ai.orchestration.errors import ResumeError
from storyagent.ai.orchestration.history import (
    ensure_tool_call_order,
    find_invocation,
    find_pending_tool_call,
    find_tool_result,
    find_unanswered_tool_calls,
    rejection_payload,
    repair_dangling_tool_calls,
    replace_invocation_arguments,
    splice_tool_result,
)
from storyagent.ai.orchestration.types import Message, OperationInvocation

DELETE = OperationInvocation(id="call_del", name="delete_asset", raw_arguments='{"assetIds": ["a1"]}')
QUERY = OperationInvocation(id="call_q", name="query_assets", raw_arguments="{}")


def _conversation() -> list[Message]:
    return [
        Message.user("Clean up my project"),
        Message.assistant("Looking first.", [QUERY]),
        Message.tool('{"success": true}', "call_q", name="query_assets"),
        Message.assistant("Deleting the unused poster.", [DELETE]),
    ]


def test_find_helpers() -> None:
    messages = _conversation()

    assert find_invocation(messages, "call_del") == (3, DELETE)
    assert find_invocation(messages, "missing") is None
    assert find_tool_result(messages, "call_q") is messages[2]
    assert find_tool_result(messages, "call_del") is None
    assert find_unanswered_tool_calls(messages) == [DELETE]
    assert find_pending_tool_call(messages, default_registry()) == DELETE


def test_pending_tool_call_ignores_ungated_calls() -> None:
    messages = [Message.user("hi"), Message.assistant("", [QUERY])]

    assert find_pending_tool_call(messages, default_registry()) is None


def test_splice_inserts_after_assistant_and_is_idempotent() -> None:
    messages = _conversation() + [Message.user("Actually wait")]
    result = Message.tool('{"success": true}', "call_del", name="delete_asset")

    spliced, inserted = splice_tool_result(messages, "call_del", result)
    again, inserted_again = splice_tool_result(spliced, "call_del", result)

    assert inserted is True
    assert spliced[4] is result
    assert spliced[5].content == "Actually wait"
    assert inserted_again is False
    assert again == spliced


def test_splice_rejects_unknown_ids() -> None:
    with pytest.raises(ResumeError):
        splice_tool_result(_conversation(), "nope", Message.tool("{}", "nope"))


def test_ensure_tool_call_order_moves_results_and_drops_duplicates() -> None:
    late = Message.tool('{"success": true}', "call_q", name="query_assets")
    messages = [
        Message.user("Clean up"),
        Message.assistant("", [QUERY]),
        Message.user("still there?"),
        late,
        Message.tool('{"success": false}', "call_q", name="query_assets"),
    ]

    ordered = ensure_tool_call_order(messages)

    assert [message.role for message in ordered] == ["user", "assistant", "tool", "user"]
    assert ordered[2] is late


def test_replace_invocation_arguments_rewrites_the_call() -> None:
    updated = replace_invocation_arguments(_conversation(), "call_del", {"assetIds": ["a2"]})

    call = updated[3].invocation
    assert call is not None
    assert json.loads(call.raw_arguments) == {"assetIds": ["a2"]}
    assert call.parsed_arguments == {"assetIds": ["a2"]}


def test_repair_dangling_tool_calls_uses_supplied_payloads() -> None:
    repaired, added = repair_dangling_tool_calls(
        _conversation(), payloads={"call_del": rejection_payload(superseded=True)}
    )

    assert len(added) == 1
    assert repaired[-1] is added[0]
    assert json.loads(added[0].content) == {
        "success": False,
        "error": "USER_REJECTED",
        "userRejected": True,
        "superseded": True,
    }
    assert find_unanswered_tool_calls(repaired) == []


def test_repair_defaults_to_interrupted_payload() -> None:
    _, added = repair_dangling_tool_calls(_conversation())

    assert json.loads(added[0].content)["error"] == "INTERRUPTED"
