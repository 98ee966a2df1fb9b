"""Async streaming client for OpenAI-compatible chat endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.errors import UpstreamError
from .orchestration.types import Message

__all__ = ["AIClient", "ClientSettings", "DeltaKind", "ModelDelta"]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)
_UPSTREAM_ERRORS = (APIError, httpx.HTTPError, asyncio.TimeoutError)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    # Retries only cover opening the stream; 1 disables them.
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = 0.2
    max_completion_tokens: int | None = None
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class DeltaKind:
    """Kinds of deltas produced by :meth:`AIClient.stream_chat`."""

    REASONING = "reasoning"
    CONTENT = "content"
    TOOL_NAME = "tool_name"
    TOOL_ID = "tool_id"
    TOOL_ARGUMENTS = "tool_arguments"
    END = "end"


@dataclass(slots=True, frozen=True)
class ModelDelta:
    """One fragment of a streamed model response."""

    kind: str
    text: str = ""
    finish_reason: str | None = None


class AIClient:
    """Async client that normalizes streamed chat completions into deltas.

    The iterator returned by :meth:`stream_chat` is forward-only and finite.
    Only the first tool call of a response is surfaced; additional parallel
    calls are logged and dropped.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Message | Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[Mapping[str, Any] | ChatCompletionToolParam] | None = None,
        temperature: float | None = None,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[ModelDelta]:
        """Stream one chat completion as :class:`ModelDelta` items.

        Raises:
            UpstreamError: On transport or backend failure.
        """

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=tools,
            temperature=temperature if temperature is not None else self._settings.temperature,
            max_completion_tokens=(
                max_completion_tokens
                if max_completion_tokens is not None
                else self._settings.max_completion_tokens
            ),
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            stream = await self._open_stream(payload)
        except _UPSTREAM_ERRORS as exc:
            LOGGER.warning("Chat completion request failed: %s", exc)
            raise UpstreamError.from_exception(exc) from exc

        primary_index: int | None = None
        dropped: set[int] = set()
        finish_reason: str | None = None
        try:
            async with stream:
                async for chunk in stream:
                    choices = getattr(chunk, "choices", None) or ()
                    if not choices:
                        continue
                    choice = choices[0]
                    finish_reason = getattr(choice, "finish_reason", None) or finish_reason
                    delta = getattr(choice, "delta", None)
                    if delta is None:
                        continue

                    reasoning = _reasoning_text(delta)
                    if reasoning:
                        yield ModelDelta(DeltaKind.REASONING, reasoning)
                    content = getattr(delta, "content", None)
                    if content:
                        yield ModelDelta(DeltaKind.CONTENT, str(content))

                    for tool_call in getattr(delta, "tool_calls", None) or ():
                        index = getattr(tool_call, "index", None) or 0
                        if primary_index is None:
                            primary_index = index
                        if index != primary_index:
                            if index not in dropped:
                                dropped.add(index)
                                LOGGER.warning(
                                    "Dropping additional tool call at index %s; only one call per response is supported",
                                    index,
                                )
                            continue
                        call_id = getattr(tool_call, "id", None)
                        if call_id:
                            yield ModelDelta(DeltaKind.TOOL_ID, str(call_id))
                        function = getattr(tool_call, "function", None)
                        if function is None:
                            continue
                        name = getattr(function, "name", None)
                        if name:
                            yield ModelDelta(DeltaKind.TOOL_NAME, str(name))
                        arguments = getattr(function, "arguments", None)
                        if arguments:
                            yield ModelDelta(DeltaKind.TOOL_ARGUMENTS, str(arguments))
        except _UPSTREAM_ERRORS as exc:
            LOGGER.warning("Chat completion stream failed: %s", exc)
            raise UpstreamError.from_exception(exc) from exc

        yield ModelDelta(DeltaKind.END, finish_reason=finish_reason)

    async def _open_stream(self, payload: Mapping[str, Any]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload, stream=True)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )

    def _coerce_messages(
        self, messages: Iterable[Message | Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, Message):
                normalized.append(message.to_chat_param())
                continue
            try:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            except TypeError as exc:  # pragma: no cover
                raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[Mapping[str, Any] | ChatCompletionToolParam] | None,
        temperature: float | None,
        max_completion_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
        }

        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        tool_list = [dict(tool) for tool in tools or ()]
        if tool_list:
            payload["tools"] = tool_list
        if temperature is not None:
            payload["temperature"] = temperature
        if max_completion_tokens is not None:
            payload["max_completion_tokens"] = max_completion_tokens
        if extra_params:
            payload.update(extra_params)
        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover
            LOGGER.debug("AI client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result


def _reasoning_text(delta: Any) -> str | None:
    """Reasoning arrives as ``reasoning_content`` (or ``reasoning``) on compatible backends."""

    for attr in ("reasoning_content", "reasoning"):
        value = getattr(delta, attr, None)
        if isinstance(value, str) and value:
            return value
    extra = getattr(delta, "model_extra", None)
    if isinstance(extra, Mapping):
        for key in ("reasoning_content", "reasoning"):
            value = extra.get(key)
            if isinstance(value, str) and value:
                return value
    return None
