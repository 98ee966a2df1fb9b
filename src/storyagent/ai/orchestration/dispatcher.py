"""Execution dispatcher routing approved invocations to their handlers.

Handlers live outside this package. Each is a callable taking the argument
mapping and returning (or awaiting) a result; the dispatcher normalizes
whatever comes back, or whatever is raised, into a :class:`DispatchResult`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Union

from ..operations.registry import OperationRegistry
from .errors import MissingHandlerError, UnknownOperationError
from .types import OperationInvocation

__all__ = [
    "DispatchResult",
    "ExecutionDispatcher",
    "OperationHandler",
]

LOGGER = logging.getLogger(__name__)

OperationHandler = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]


# -----------------------------------------------------------------------------
# Dispatch Result
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class DispatchResult:
    """Normalized outcome of one dispatch.

    Attributes:
        success: Whether the handler completed successfully.
        data: Handler payload on success.
        error: Error description on failure.
        side_effect_reference: Identifier of an asynchronous job the handler started.
        duration_ms: Handler wall-clock time.
    """

    success: bool
    data: Any = None
    error: str | None = None
    side_effect_reference: str | None = None
    duration_ms: float = 0.0

    @classmethod
    def ok(cls, data: Any = None, *, side_effect_reference: str | None = None) -> DispatchResult:
        return cls(success=True, data=data, side_effect_reference=side_effect_reference)

    @classmethod
    def failed(cls, error: str, *, data: Any = None) -> DispatchResult:
        return cls(success=False, error=error, data=data)

    def to_dict(self) -> dict[str, Any]:
        """Envelope written into the tool message content."""
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.side_effect_reference is not None:
            payload["jobId"] = self.side_effect_reference
        return payload


def _normalize(value: Any) -> DispatchResult:
    if isinstance(value, DispatchResult):
        return value
    if isinstance(value, Mapping) and isinstance(value.get("success"), bool):
        reference = value.get("side_effect_reference") or value.get("jobId") or value.get("job_id")
        return DispatchResult(
            success=value["success"],
            data=value.get("data"),
            error=None if value["success"] else str(value.get("error") or "Operation failed"),
            side_effect_reference=str(reference) if reference else None,
        )
    return DispatchResult.ok(value)


# -----------------------------------------------------------------------------
# Dispatcher
# -----------------------------------------------------------------------------


class ExecutionDispatcher:
    """Routes invocations to handlers bound by operation name.

    Example:
        dispatcher = ExecutionDispatcher({"query_assets": fetch_assets}, registry=registry)
        result = await dispatcher.dispatch(invocation, {"limit": 5})
    """

    def __init__(
        self,
        handlers: Mapping[str, OperationHandler],
        *,
        registry: OperationRegistry | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._handlers = dict(handlers)
        self._registry = registry
        self._timeout = timeout

    @property
    def handlers(self) -> Mapping[str, OperationHandler]:
        return dict(self._handlers)

    def missing_handlers(self) -> list[str]:
        """Registered operations with no handler bound."""
        if self._registry is None:
            return []
        return [name for name in self._registry.names() if name not in self._handlers]

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    def require_handler(self, name: str) -> OperationHandler:
        """Return the handler bound to ``name``.

        Raises:
            MissingHandlerError: The operation is registered but has no handler.
            UnknownOperationError: The operation is neither registered nor bound.
        """

        handler = self._handlers.get(name)
        if handler is None:
            if self._registry is not None and name not in self._registry:
                raise UnknownOperationError.for_name(name)
            raise MissingHandlerError(
                message=f"No handler bound for operation '{name}'",
                details={"name": name},
            )
        return handler

    async def dispatch(
        self,
        invocation: OperationInvocation,
        arguments: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """Run the handler for ``invocation``.

        Raises the same errors as :meth:`require_handler`.
        """

        name = invocation.name
        handler = self.require_handler(name)

        call_arguments = dict(arguments if arguments is not None else invocation.parsed_arguments or {})
        LOGGER.debug("Dispatching %s (call_id=%s)", name, invocation.id)
        start_time = time.perf_counter()
        try:
            result = handler(call_arguments)
            if inspect.isawaitable(result):
                if self._timeout is not None and self._timeout > 0:
                    result = await asyncio.wait_for(result, timeout=self._timeout)
                else:
                    result = await result
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Operation %s timed out after %.1fms (timeout=%.1fs)", name, duration_ms, self._timeout)
            return DispatchResult(
                success=False,
                error=f"Operation '{name}' timed out after {self._timeout}s",
                duration_ms=duration_ms,
            )
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Operation %s failed after %.1fms: %s", name, duration_ms, exc)
            return DispatchResult(success=False, error=str(exc) or type(exc).__name__, duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        outcome = _normalize(result)
        LOGGER.debug("Operation %s completed in %.1fms (success=%s)", name, duration_ms, outcome.success)
        return DispatchResult(
            success=outcome.success,
            data=outcome.data,
            error=outcome.error,
            side_effect_reference=outcome.side_effect_reference,
            duration_ms=duration_ms,
        )
