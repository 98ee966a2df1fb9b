"""Orchestration loop: streams model turns, gates and dispatches operations.

One :class:`OrchestrationLoop` serves many requests; each call to
:meth:`OrchestrationLoop.run` or :meth:`OrchestrationLoop.resume` is an async
generator of :class:`StreamEvent` objects covering one turn. Inside a turn the
loop is strictly sequential:

    iteration_start -> thinking/content deltas -> assistant message appended
        -> plain answer: complete(done)
        -> gated operation: pending_action, complete(pending_confirmation)
        -> other operation: function_start, dispatch, function_result, next iteration

A turn ends after the first gated operation. The caller later resumes it with
a :class:`ResumeRequest` carrying the user's decision.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from ...utils.logging import TurnLogAdapter, turn_logger
from ..client import DeltaKind, ModelDelta
from ..operations.cost import CostEstimator, default_estimator
from ..operations.registry import OperationDescriptor, OperationRegistry, default_registry
from ..operations.validation import ParameterValidator, ValidationOutcome
from ..prompts import system_prompt
from .accumulator import StreamAccumulator
from .dispatcher import DispatchResult, ExecutionDispatcher
from .errors import (
    AgentError,
    ArgumentParseError,
    DispatchFailure,
    MaxIterationsExceeded,
    MissingHandlerError,
    ResumeError,
    UnknownOperationError,
    UpstreamError,
    ValidationFailure,
)
from .event_log import TurnEventLog, TurnEventLogger
from .history import (
    ensure_tool_call_order,
    find_invocation,
    find_pending_tool_call,
    find_tool_result,
    rejection_payload,
    repair_dangling_tool_calls,
    replace_invocation_arguments,
    splice_tool_result,
)
from .result_formatter import format_result
from .state_store import ConversationStore
from .types import (
    CompleteReason,
    ConversationStatus,
    CostEstimate,
    EventType,
    IterationStep,
    LoopState,
    Message,
    OperationInvocation,
    PendingAction,
    PendingStatus,
    ResumableState,
    ResumeRequest,
    StreamEvent,
    TurnCheckpoint,
)

__all__ = [
    "ModelClient",
    "RunnerConfig",
    "OrchestrationLoop",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


class ModelClient(Protocol):
    """Streaming model client consumed by the loop."""

    def stream_chat(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[ModelDelta]: ...


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Configuration for the orchestration loop.

    Attributes:
        max_iterations: Upper bound on model calls per turn.
        checkpoint_interval: Minimum seconds between mid-stream checkpoints.
        feed_validation_errors: Return invalid arguments to the model as a failed
            tool result instead of ending the turn.
        include_system_prompt: Prepend the built-in system prompt when the
            history carries none.
        temperature: Sampling temperature override.
        max_completion_tokens: Completion budget override.
    """

    max_iterations: int = 20
    checkpoint_interval: float = 0.05
    feed_validation_errors: bool = True
    include_system_prompt: bool = True
    temperature: float | None = None
    max_completion_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be positive")
        if self.checkpoint_interval < 0:
            raise ValueError("checkpoint_interval must not be negative")


@dataclass(slots=True)
class _TurnContext:
    """Mutable per-turn bookkeeping."""

    conversation_id: str | None
    run_log: TurnEventLog
    log: TurnLogAdapter
    checkpoint: TurnCheckpoint = field(default_factory=TurnCheckpoint)
    last_checkpoint_at: float = 0.0
    iteration: int = 0


# -----------------------------------------------------------------------------
# Orchestration Loop
# -----------------------------------------------------------------------------


class OrchestrationLoop:
    """Drives the tool-calling loop for one conversation turn at a time.

    Example:
        >>> loop = OrchestrationLoop(client, ExecutionDispatcher(handlers))
        >>> async for event in loop.run("Make a poster", conversation_id="c1"):
        ...     print(event.type)
    """

    def __init__(
        self,
        client: ModelClient,
        dispatcher: ExecutionDispatcher,
        *,
        registry: OperationRegistry | None = None,
        validator: ParameterValidator | None = None,
        estimator: CostEstimator | None = None,
        store: ConversationStore | None = None,
        config: RunnerConfig | None = None,
        event_logger: TurnEventLogger | None = None,
        project_context: Mapping[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._registry = registry or default_registry()
        self._validator = validator or ParameterValidator(self._registry)
        self._estimator = estimator or default_estimator()
        self._store = store
        self._config = config or RunnerConfig()
        self._event_logger = event_logger or TurnEventLogger(enabled=False)
        self._project_context = dict(project_context) if project_context else None
        self._tools = self._registry.to_openai_tools()

    @property
    def config(self) -> RunnerConfig:
        """The loop configuration."""
        return self._config

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def store(self) -> ConversationStore | None:
        return self._store

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        user_message: str | Message,
        *,
        history: Sequence[Message | Mapping[str, Any]] | None = None,
        conversation_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Start a turn for a new user message."""

        message = user_message if isinstance(user_message, Message) else Message.user(str(user_message))
        messages = await self._initial_messages(history, conversation_id)
        run_id = uuid.uuid4().hex
        context = _TurnContext(
            conversation_id=conversation_id,
            log=turn_logger(LOGGER, conversation_id=conversation_id, run_id=run_id),
            run_log=self._event_logger.start_run(
                run_id=run_id,
                conversation_id=conversation_id,
                prompt=message.content,
                history=[item.to_dict() for item in messages],
            ),
        )
        try:
            messages = await self._supersede_pending(messages, context)
            messages = self._with_system_prompt(messages)
            messages.append(message)
            await self._persist_message(conversation_id, message)
            await self._set_status(conversation_id, ConversationStatus.ACTIVE)

            async with aclosing(self._iterate(messages, context)) as events:
                async for event in events:
                    yield event
        finally:
            context.run_log.close()

    async def resume(
        self,
        request: ResumeRequest,
        *,
        conversation_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Continue a turn that stopped on a pending action."""

        run_id = uuid.uuid4().hex
        context = _TurnContext(
            conversation_id=conversation_id,
            log=turn_logger(LOGGER, conversation_id=conversation_id, run_id=run_id),
            run_log=self._event_logger.start_run(
                run_id=run_id,
                conversation_id=conversation_id,
                prompt=None,
            ),
        )
        try:
            stored_action = None
            if self._store is not None and conversation_id:
                stored_action = await self._store.load_pending_action(conversation_id)
            messages = [_coerce_message(item) for item in request.messages]
            if not messages and stored_action is not None:
                messages = list(stored_action.resumable_state.messages)
            messages = ensure_tool_call_order(self._with_system_prompt(messages))

            located = find_invocation(messages, request.tool_call_id)
            if located is None:
                error = ResumeError(
                    message=f"No pending operation matches tool call '{request.tool_call_id}'",
                    details={"tool_call_id": request.tool_call_id},
                )
                async for event in self._fail(context, error):
                    yield event
                return
            _, invocation = located
            if stored_action is not None and stored_action.resumable_state.tool_call_id == request.tool_call_id:
                decision = PendingStatus.APPROVED if request.approved else PendingStatus.REJECTED
                context.run_log.log_decision(action=stored_action.with_status(decision).to_dict())

            existing = find_tool_result(messages, request.tool_call_id)
            if existing is None:
                existing = await self._stored_tool_result(conversation_id, request.tool_call_id)
                if existing is not None:
                    messages, _ = splice_tool_result(messages, request.tool_call_id, existing)

            await self._clear_pending(conversation_id)
            await self._set_status(conversation_id, ConversationStatus.ACTIVE)

            if existing is not None:
                context.log.info("Tool call %s already has a result; skipping dispatch", request.tool_call_id)
            elif request.approved:
                failed = False
                async for event in self._resume_approved(messages, context, request, invocation):
                    if event.type == EventType.COMPLETE:
                        failed = True
                    yield event
                if failed:
                    return
            else:
                async for event in self._resume_rejected(messages, context, request, invocation):
                    yield event

            async with aclosing(self._iterate(messages, context)) as events:
                async for event in events:
                    yield event
        finally:
            context.run_log.close()

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    async def _iterate(self, messages: list[Message], context: _TurnContext) -> AsyncIterator[StreamEvent]:
        while True:
            if context.iteration >= self._config.max_iterations:
                error = MaxIterationsExceeded(
                    message=f"Reached the maximum of {self._config.max_iterations} iterations",
                    details={"max_iterations": self._config.max_iterations},
                )
                async for event in self._fail(context, error):
                    yield event
                return

            context.iteration += 1
            iteration = context.iteration
            step = IterationStep(iteration_number=iteration)
            checkpoint = context.checkpoint
            checkpoint.iteration = iteration
            checkpoint.state = LoopState.ITERATING
            checkpoint.thinking = ""
            checkpoint.content = ""
            checkpoint.steps.append(step)
            context.run_log.log_iteration(iteration=iteration, message_count=len(messages))
            yield StreamEvent(EventType.ITERATION_START, {"iterationNumber": iteration})

            accumulator = StreamAccumulator()
            try:
                stream = self._client.stream_chat(
                    messages,
                    tools=self._tools,
                    temperature=self._config.temperature,
                    max_completion_tokens=self._config.max_completion_tokens,
                )
                async with aclosing(stream) as deltas:
                    async for delta in deltas:
                        accumulator.feed(delta)
                        event = self._delta_event(delta, accumulator, iteration)
                        if event is None:
                            continue
                        step.thinking = accumulator.reasoning
                        step.content = accumulator.content
                        yield event
                        await self._checkpoint(context, accumulator)
            except UpstreamError as exc:
                async for event in self._fail(context, exc):
                    yield event
                return

            invocation = accumulator.invocation()
            assistant = accumulator.to_message(invocation)
            messages.append(assistant)
            await self._persist_message(context.conversation_id, assistant)
            context.run_log.log_assistant_message(iteration=iteration, message=assistant.to_dict())
            step.thinking = accumulator.reasoning
            step.content = accumulator.content
            await self._checkpoint(context, accumulator, force=True)

            if invocation is None:
                async for event in self._finish(context, accumulator.content):
                    yield event
                return

            descriptor = self._registry.lookup(invocation.name)
            if descriptor is None:
                async for event in self._fail(context, UnknownOperationError.for_name(invocation.name)):
                    yield event
                return

            outcome = self._validator.validate(invocation.name, invocation.raw_arguments)
            if outcome.parse_error:
                error = ArgumentParseError(
                    message=outcome.errors[0] if outcome.errors else "Operation arguments are not valid JSON",
                    details={"name": invocation.name, "arguments": invocation.raw_arguments},
                )
                async for event in self._fail(context, error):
                    yield event
                return
            if not outcome.valid:
                if not self._config.feed_validation_errors:
                    error = ValidationFailure(
                        message=f"Arguments for '{invocation.name}' failed validation",
                        details={"name": invocation.name},
                        errors=list(outcome.errors),
                        warnings=list(outcome.warnings),
                    )
                    async for event in self._fail(context, error):
                        yield event
                    return
                event = await self._inject_validation_result(messages, context, invocation, outcome, step)
                yield event
                continue

            arguments = outcome.normalized_arguments or {}
            invocation = replace(invocation, parsed_arguments=arguments)

            if descriptor.requires_confirmation:
                async for event in self._gate(messages, context, descriptor, invocation, accumulator.content):
                    yield event
                return

            result: DispatchResult | None = None
            try:
                async for event in self._dispatch(messages, context, descriptor, invocation, arguments, step):
                    if event.type == EventType.FUNCTION_RESULT:
                        result = _result_from_event(event)
                    yield event
            except (MissingHandlerError, UnknownOperationError) as exc:
                async for event in self._fail(context, exc):
                    yield event
                return
            if result is None or not result.success:
                error = DispatchFailure(
                    message=(result.error if result else None) or f"Operation '{invocation.name}' failed",
                    details={"name": invocation.name, "tool_call_id": invocation.id},
                )
                async for event in self._fail(context, error, emit_error=False):
                    yield event
                return

    def _delta_event(
        self,
        delta: ModelDelta,
        accumulator: StreamAccumulator,
        iteration: int,
    ) -> StreamEvent | None:
        if delta.kind == DeltaKind.REASONING:
            return StreamEvent(
                EventType.THINKING,
                {"iterationNumber": iteration, "content": accumulator.reasoning, "delta": delta.text},
            )
        if delta.kind == DeltaKind.CONTENT:
            return StreamEvent(
                EventType.CONTENT,
                {"iterationNumber": iteration, "content": accumulator.content, "delta": delta.text},
            )
        return None

    # ------------------------------------------------------------------
    # Operation handling
    # ------------------------------------------------------------------

    async def _gate(
        self,
        messages: list[Message],
        context: _TurnContext,
        descriptor: OperationDescriptor,
        invocation: OperationInvocation,
        narration: str,
    ) -> AsyncIterator[StreamEvent]:
        cost = self._estimate_cost(invocation)
        action = PendingAction(
            id=uuid.uuid4().hex,
            invocations=(invocation,),
            narration=narration or f"{descriptor.label} needs your confirmation.",
            resumable_state=ResumableState(messages=tuple(messages), tool_call_id=invocation.id),
            cost_estimate=cost,
        )
        conversation_id = context.conversation_id
        if self._store is not None and conversation_id:
            await self._store.save_pending_action(conversation_id, action)
        await self._set_status(conversation_id, ConversationStatus.AWAITING_APPROVAL)
        context.checkpoint.state = LoopState.AWAITING_CONFIRMATION
        await self._write_checkpoint(context)

        payload = action.to_event_payload()
        payload["iterationNumber"] = context.iteration
        payload["operation"] = {"label": descriptor.label, "category": descriptor.category}
        context.run_log.log_pending_action(iteration=context.iteration, action=payload)
        context.log.info("Operation %s awaits confirmation (call_id=%s)", invocation.name, invocation.id)
        yield StreamEvent(EventType.PENDING_ACTION, payload)
        context.run_log.log_completion(reason=CompleteReason.PENDING_CONFIRMATION, iterations=context.iteration)
        yield StreamEvent.complete(CompleteReason.PENDING_CONFIRMATION, iterations=context.iteration)

    def _estimate_cost(self, invocation: OperationInvocation) -> CostEstimate | None:
        try:
            return self._estimator.estimate([invocation])
        except Exception:
            LOGGER.warning("Cost estimator raised; continuing without a cost", exc_info=True)
            return None

    async def _dispatch(
        self,
        messages: list[Message],
        context: _TurnContext,
        descriptor: OperationDescriptor,
        invocation: OperationInvocation,
        arguments: Mapping[str, Any],
        step: IterationStep | None,
    ) -> AsyncIterator[StreamEvent]:
        """Dispatch one invocation, splice its tool message and emit start/result events.

        Raises ``MissingHandlerError`` before any event when no handler is bound.
        """

        self._dispatcher.require_handler(invocation.name)
        iteration = context.iteration
        yield StreamEvent(
            EventType.FUNCTION_START,
            {
                "iterationNumber": iteration,
                "functionCallId": invocation.id,
                "name": invocation.name,
                "label": descriptor.label,
                "arguments": dict(arguments),
            },
        )
        context.checkpoint.state = LoopState.AWAITING_OPERATION_RESULT
        await self._write_checkpoint(context)

        result = await self._dispatcher.dispatch(invocation, arguments)
        envelope = result.to_dict()
        tool_message = Message.tool(json.dumps(envelope, ensure_ascii=False, default=str), invocation.id, name=invocation.name)
        updated, inserted = splice_tool_result(messages, invocation.id, tool_message)
        messages[:] = updated
        if inserted:
            await self._persist_message(context.conversation_id, tool_message)
        if step is not None:
            step.operation_outcome = {"name": invocation.name, **envelope}
        context.run_log.log_dispatch(iteration=iteration, operation=invocation.name, arguments=arguments, result=envelope)

        data: dict[str, Any] = {
            "iterationNumber": iteration,
            "functionCallId": invocation.id,
            "name": invocation.name,
            "success": result.success,
        }
        if result.data is not None:
            data["data"] = result.data
        if result.error is not None:
            data["error"] = result.error
        if result.side_effect_reference is not None:
            data["jobId"] = result.side_effect_reference
        summary = format_result(invocation.name, arguments, result.data) if result.success else None
        if summary:
            data["summary"] = summary
        yield StreamEvent(EventType.FUNCTION_RESULT, data)

    async def _inject_validation_result(
        self,
        messages: list[Message],
        context: _TurnContext,
        invocation: OperationInvocation,
        outcome: ValidationOutcome,
        step: IterationStep | None,
    ) -> StreamEvent:
        payload: dict[str, Any] = {
            "success": False,
            "error": "VALIDATION_FAILED",
            "errors": list(outcome.errors),
        }
        if outcome.warnings:
            payload["warnings"] = list(outcome.warnings)
        tool_message = Message.tool(json.dumps(payload, ensure_ascii=False), invocation.id, name=invocation.name)
        updated, inserted = splice_tool_result(messages, invocation.id, tool_message)
        messages[:] = updated
        if inserted:
            await self._persist_message(context.conversation_id, tool_message)
        if step is not None:
            step.operation_outcome = {"name": invocation.name, **payload}
        context.log.info("Returned %s validation error(s) for %s to the model", len(outcome.errors), invocation.name)
        return StreamEvent(
            EventType.FUNCTION_RESULT,
            {
                "iterationNumber": context.iteration,
                "functionCallId": invocation.id,
                "name": invocation.name,
                "success": False,
                "error": "VALIDATION_FAILED",
                "errors": list(outcome.errors),
                "warnings": list(outcome.warnings),
            },
        )

    # ------------------------------------------------------------------
    # Resume helpers
    # ------------------------------------------------------------------

    async def _resume_approved(
        self,
        messages: list[Message],
        context: _TurnContext,
        request: ResumeRequest,
        invocation: OperationInvocation,
    ) -> AsyncIterator[StreamEvent]:
        descriptor = self._registry.lookup(invocation.name)
        if descriptor is None:
            async for event in self._fail(context, UnknownOperationError.for_name(invocation.name)):
                yield event
            return

        if request.modified_arguments is not None:
            messages[:] = replace_invocation_arguments(messages, invocation.id, request.modified_arguments)
            invocation = invocation.with_arguments(request.modified_arguments)
            context.log.debug("Approved %s with modified arguments", invocation.id)

        outcome = self._validator.validate(invocation.name, invocation.raw_arguments)
        if not outcome.valid:
            error: AgentError
            if outcome.parse_error:
                error = ArgumentParseError(message=outcome.errors[0], details={"name": invocation.name})
            else:
                error = ValidationFailure(
                    message=f"Arguments for '{invocation.name}' failed validation",
                    details={"name": invocation.name},
                    errors=list(outcome.errors),
                    warnings=list(outcome.warnings),
                )
            async for event in self._fail(context, error):
                yield event
            return

        arguments = outcome.normalized_arguments or {}
        invocation = replace(invocation, parsed_arguments=arguments)
        result: DispatchResult | None = None
        try:
            async for event in self._dispatch(messages, context, descriptor, invocation, arguments, None):
                if event.type == EventType.FUNCTION_RESULT:
                    result = _result_from_event(event)
                yield event
        except (MissingHandlerError, UnknownOperationError) as exc:
            async for event in self._fail(context, exc):
                yield event
            return
        if result is None or not result.success:
            error = DispatchFailure(
                message=(result.error if result else None) or f"Operation '{invocation.name}' failed",
                details={"name": invocation.name, "tool_call_id": invocation.id},
            )
            async for event in self._fail(context, error, emit_error=False):
                yield event

    async def _resume_rejected(
        self,
        messages: list[Message],
        context: _TurnContext,
        request: ResumeRequest,
        invocation: OperationInvocation,
    ) -> AsyncIterator[StreamEvent]:
        payload = rejection_payload()
        tool_message = Message.tool(json.dumps(payload), invocation.id, name=invocation.name)
        updated, inserted = splice_tool_result(messages, invocation.id, tool_message)
        messages[:] = updated
        if inserted:
            await self._persist_message(context.conversation_id, tool_message)
        if request.feedback and request.feedback.strip():
            feedback = Message.user(request.feedback.strip())
            messages.append(feedback)
            await self._persist_message(context.conversation_id, feedback)
        context.log.info("User rejected %s (call_id=%s)", invocation.name, invocation.id)
        yield StreamEvent(
            EventType.FUNCTION_RESULT,
            {
                "iterationNumber": context.iteration,
                "functionCallId": invocation.id,
                "name": invocation.name,
                "success": False,
                "error": payload["error"],
                "userRejected": True,
            },
        )

    async def _stored_tool_result(self, conversation_id: str | None, tool_call_id: str) -> Message | None:
        if self._store is None or not conversation_id:
            return None
        stored = await self._store.load_messages(conversation_id)
        return find_tool_result(stored, tool_call_id)

    # ------------------------------------------------------------------
    # Turn setup
    # ------------------------------------------------------------------

    async def _initial_messages(
        self,
        history: Sequence[Message | Mapping[str, Any]] | None,
        conversation_id: str | None,
    ) -> list[Message]:
        if history:
            return ensure_tool_call_order([_coerce_message(item) for item in history])
        if self._store is not None and conversation_id:
            return ensure_tool_call_order(await self._store.load_messages(conversation_id))
        return []

    async def _supersede_pending(self, messages: list[Message], context: _TurnContext) -> list[Message]:
        """Decline an outstanding pending action and stub any unanswered calls."""

        conversation_id = context.conversation_id
        payloads: dict[str, Mapping[str, Any]] = {}
        pending_call = find_pending_tool_call(messages, self._registry)
        if pending_call is not None:
            payloads[pending_call.id] = rejection_payload(superseded=True)
        if self._store is not None and conversation_id:
            stored_action = await self._store.load_pending_action(conversation_id)
            if stored_action is not None:
                payloads[stored_action.resumable_state.tool_call_id] = rejection_payload(superseded=True)
                await self._store.clear_pending_action(conversation_id)
                context.run_log.log_decision(action=stored_action.with_status(PendingStatus.REJECTED).to_dict())
                context.log.info("Pending action %s superseded by a new message", stored_action.id)

        repaired, added = repair_dangling_tool_calls(messages, payloads=payloads)
        for stub in added:
            await self._persist_message(conversation_id, stub)
        return repaired

    def _with_system_prompt(self, messages: list[Message]) -> list[Message]:
        if not self._config.include_system_prompt or any(item.role == "system" for item in messages):
            return list(messages)
        prompt = system_prompt(operations=self._registry, project_context=self._project_context)
        return [Message.system(prompt), *messages]

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    async def _finish(self, context: _TurnContext, content: str) -> AsyncIterator[StreamEvent]:
        context.checkpoint.state = LoopState.DONE
        context.checkpoint.content = content
        await self._write_checkpoint(context)
        await self._set_status(context.conversation_id, ConversationStatus.COMPLETED)
        context.run_log.log_completion(reason=CompleteReason.DONE, iterations=context.iteration, content=content)
        yield StreamEvent.complete(CompleteReason.DONE, iterations=context.iteration, content=content)

    async def _fail(
        self,
        context: _TurnContext,
        error: AgentError,
        *,
        emit_error: bool = True,
    ) -> AsyncIterator[StreamEvent]:
        context.log.warning("Turn failed: %s", error)
        payload = error.to_dict()
        context.checkpoint.state = LoopState.FAILED
        context.checkpoint.error = payload
        await self._write_checkpoint(context)
        await self._set_status(context.conversation_id, ConversationStatus.COMPLETED)
        context.run_log.log_failure(message=str(error), details=payload)
        if emit_error:
            yield StreamEvent.error({**payload, "iterationNumber": context.iteration})
        yield StreamEvent.complete(CompleteReason.ERROR, iterations=context.iteration, error=payload)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_message(self, conversation_id: str | None, message: Message) -> None:
        if self._store is None or not conversation_id:
            return
        await self._store.append_message(conversation_id, message)

    async def _set_status(self, conversation_id: str | None, status: ConversationStatus) -> None:
        if self._store is None or not conversation_id:
            return
        await self._store.set_status(conversation_id, status)

    async def _clear_pending(self, conversation_id: str | None) -> None:
        if self._store is None or not conversation_id:
            return
        await self._store.clear_pending_action(conversation_id)

    async def _checkpoint(
        self,
        context: _TurnContext,
        accumulator: StreamAccumulator,
        *,
        force: bool = False,
    ) -> None:
        context.checkpoint.thinking = accumulator.reasoning
        context.checkpoint.content = accumulator.content
        if self._store is None or not context.conversation_id:
            return
        now = time.monotonic()
        if not force and now - context.last_checkpoint_at < self._config.checkpoint_interval:
            return
        await self._write_checkpoint(context)

    async def _write_checkpoint(self, context: _TurnContext) -> None:
        if self._store is None or not context.conversation_id:
            return
        context.checkpoint.updated_at = datetime.now(timezone.utc)
        await self._store.update_checkpoint(context.conversation_id, context.checkpoint)
        context.last_checkpoint_at = time.monotonic()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _coerce_message(item: Message | Mapping[str, Any]) -> Message:
    if isinstance(item, Message):
        return item
    return Message.from_chat_param(item)


def _result_from_event(event: StreamEvent) -> DispatchResult:
    data = event.data
    return DispatchResult(
        success=bool(data.get("success")),
        data=data.get("data"),
        error=data.get("error"),
        side_effect_reference=data.get("jobId"),
    )
