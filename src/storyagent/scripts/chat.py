"""CLI that runs one orchestration turn and prints the NDJSON event stream."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import aclosing
from pathlib import Path
from typing import Any, Mapping, Sequence, TextIO

from ..ai.client import AIClient
from ..ai.operations.registry import default_registry
from ..ai.orchestration.dispatcher import ExecutionDispatcher, OperationHandler
from ..ai.orchestration.event_log import TurnEventLogger
from ..ai.orchestration.loop import OrchestrationLoop
from ..ai.orchestration.state_store import FileConversationStore
from ..ai.orchestration.types import CompleteReason, EventType, ResumeDecision, ResumeRequest, StreamEvent
from ..ai.orchestration.wire import encode_event
from ..services.settings import Settings, SettingsStore
from ..utils.logging import setup_logging

LOGGER = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send a message to the story agent and stream its events as NDJSON.")
    parser.add_argument("message", nargs="?", help="User message. Reads stdin when omitted and not resuming.")
    parser.add_argument("--conversation", "-c", default="default", help="Conversation identifier.")
    parser.add_argument(
        "--handlers",
        help="Operation handlers as module:attribute (a mapping, or a callable returning one).",
    )
    decision = parser.add_mutually_exclusive_group()
    decision.add_argument("--approve", metavar="TOOL_CALL_ID", help="Approve the pending operation.")
    decision.add_argument("--reject", metavar="TOOL_CALL_ID", help="Reject the pending operation.")
    parser.add_argument("--arguments", help="JSON object replacing the arguments of an approved operation.")
    parser.add_argument("--feedback", help="Text sent back to the model with a rejection.")
    parser.add_argument("--settings", type=Path, help="Path to settings.json.")
    parser.add_argument("--data-dir", type=Path, help="Directory for conversation files.")
    parser.add_argument("--model", help="Override the configured model.")
    parser.add_argument("--log-level", default=None, help="Logging level (defaults to STORYAGENT_LOG_LEVEL or INFO).")
    parser.add_argument("--no-console-log", action="store_true", help="Only log to the rotating log file.")
    args = parser.parse_args(argv)

    resuming = bool(args.approve or args.reject)
    modified_arguments = None
    if args.arguments:
        if not args.approve:
            parser.error("--arguments requires --approve")
        try:
            modified_arguments = json.loads(args.arguments)
        except json.JSONDecodeError as exc:
            parser.error(f"--arguments is not valid JSON: {exc}")
        if not isinstance(modified_arguments, dict):
            parser.error("--arguments must be a JSON object")

    message = args.message
    if not resuming and not message:
        message = sys.stdin.read().strip()
        if not message:
            print("No message provided.", file=sys.stderr)
            return 1

    try:
        handlers = _load_handlers(args.handlers) if args.handlers else {}
    except (ImportError, AttributeError, TypeError) as exc:
        parser.error(f"Unable to load handlers from {args.handlers!r}: {exc}")

    setup_logging(args.log_level, console=not args.no_console_log)
    settings = SettingsStore(args.settings).load(overrides={"model": args.model})
    loop, client = _build_loop(settings, handlers, data_dir=args.data_dir)

    if resuming:
        events = _resume_events(
            loop,
            args.conversation,
            args.approve or args.reject,
            approved=bool(args.approve),
            modified_arguments=modified_arguments,
            feedback=args.feedback,
        )
    else:
        events = loop.run(message, conversation_id=args.conversation)

    reason = asyncio.run(_drain(events, client, sys.stdout))
    return 1 if reason == CompleteReason.ERROR else 0


def _build_loop(
    settings: Settings,
    handlers: Mapping[str, OperationHandler],
    *,
    data_dir: Path | None = None,
) -> tuple[OrchestrationLoop, AIClient]:
    registry = default_registry()
    client = AIClient(settings.client_settings())
    dispatcher = ExecutionDispatcher(handlers, registry=registry, timeout=settings.tool_timeout)
    missing = dispatcher.missing_handlers()
    if missing:
        LOGGER.info("No handlers bound for: %s", ", ".join(missing))
    store = FileConversationStore(data_dir or settings.conversations_dir())
    loop = OrchestrationLoop(
        client,
        dispatcher,
        registry=registry,
        store=store,
        config=settings.runner_config(),
        event_logger=TurnEventLogger(enabled=settings.debug_event_logging),
    )
    return loop, client


async def _resume_events(
    loop: OrchestrationLoop,
    conversation_id: str,
    tool_call_id: str,
    *,
    approved: bool,
    modified_arguments: Mapping[str, Any] | None,
    feedback: str | None,
) -> AsyncIterator[StreamEvent]:
    """Resume from the stored pending action when it matches ``tool_call_id``."""

    pending = await loop.store.load_pending_action(conversation_id) if loop.store is not None else None
    if pending is not None and pending.resumable_state.tool_call_id == tool_call_id:
        request = ResumeRequest.from_pending(
            pending, approved=approved, modified_arguments=modified_arguments, feedback=feedback
        )
    else:
        LOGGER.info("No pending action for %s in %s; resuming from stored messages", tool_call_id, conversation_id)
        request = ResumeRequest(
            messages=(),
            decision=ResumeDecision.APPROVED if approved else ResumeDecision.REJECTED,
            tool_call_id=tool_call_id,
            modified_arguments=modified_arguments,
            feedback=feedback,
        )
    async with aclosing(loop.resume(request, conversation_id=conversation_id)) as events:
        async for event in events:
            yield event


def _load_handlers(target: str) -> Mapping[str, OperationHandler]:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise TypeError("expected the form module:attribute")
    value: Any = getattr(importlib.import_module(module_name), attribute)
    if callable(value) and not isinstance(value, Mapping):
        value = value()
    if not isinstance(value, Mapping):
        raise TypeError(f"{target} is not a mapping of operation handlers")
    return value


async def _drain(events: Any, client: AIClient, out: TextIO) -> str | None:
    reason: str | None = None
    try:
        async for event in events:
            out.write(encode_event(event))
            out.flush()
            if event.type == EventType.COMPLETE:
                reason = _complete_reason(event)
    finally:
        await client.aclose()
    return reason


def _complete_reason(event: StreamEvent) -> str | None:
    value = event.data.get("reason")
    return str(value) if value is not None else None


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
