"""Error taxonomy for the orchestration loop.

Every failure that can end a turn is represented by a subclass of
:class:`AgentError`. Errors serialize to the same ``{"error", "message"}``
envelope used by the streaming wire format so that the loop can forward them
to callers without additional translation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ErrorCode",
    "AgentError",
    "UpstreamError",
    "UnknownOperationError",
    "ArgumentParseError",
    "ValidationFailure",
    "DispatchFailure",
    "MissingHandlerError",
    "CostEstimationFailure",
    "MaxIterationsExceeded",
    "ResumeError",
    "RegistryFrozenError",
    "DuplicateOperationError",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Machine-readable error identifiers surfaced to callers."""

    UPSTREAM_ERROR = "upstream_error"
    UNKNOWN_OPERATION = "unknown_operation"
    ARGUMENT_PARSE_ERROR = "argument_parse_error"
    VALIDATION_FAILED = "validation_failed"
    DISPATCH_FAILED = "dispatch_failed"
    MISSING_HANDLER = "missing_handler"
    COST_ESTIMATION_FAILED = "cost_estimation_failed"
    MAX_ITERATIONS = "max_iterations"
    RESUME_MISMATCH = "resume_mismatch"
    REGISTRY_FROZEN = "registry_frozen"
    DUPLICATE_OPERATION = "duplicate_operation"
    USER_REJECTED = "USER_REJECTED"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class AgentError(Exception):
    """Base exception for every orchestration failure.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for wire events and tool results."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Turn-ending Errors
# -----------------------------------------------------------------------------


@dataclass
class UpstreamError(AgentError):
    """The model backend failed (transport error, timeout, malformed stream)."""

    error_code: str = field(default=ErrorCode.UPSTREAM_ERROR)
    message: str = field(default="Model backend request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Retry the request")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "UpstreamError":
        return cls(
            message=str(exc) or type(exc).__name__,
            details={"type": type(exc).__name__},
        )


@dataclass
class UnknownOperationError(AgentError):
    """The model requested an operation that is not in the registry."""

    error_code: str = field(default=ErrorCode.UNKNOWN_OPERATION)
    message: str = field(default="Unknown operation")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    @classmethod
    def for_name(cls, name: str) -> "UnknownOperationError":
        return cls(message=f"Unknown operation: {name}", details={"name": name})


@dataclass
class ArgumentParseError(AgentError):
    """The accumulated argument text is not valid JSON."""

    error_code: str = field(default=ErrorCode.ARGUMENT_PARSE_ERROR)
    message: str = field(default="Operation arguments are not valid JSON")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class ValidationFailure(AgentError):
    """Arguments parsed but violate the operation's checks."""

    error_code: str = field(default=ErrorCode.VALIDATION_FAILED)
    message: str = field(default="Operation arguments failed validation")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = list(self.errors)
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result


@dataclass
class DispatchFailure(AgentError):
    """A handler raised, timed out or reported failure."""

    error_code: str = field(default=ErrorCode.DISPATCH_FAILED)
    message: str = field(default="Operation execution failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class MissingHandlerError(AgentError):
    """A registered operation has no bound handler (configuration error)."""

    error_code: str = field(default=ErrorCode.MISSING_HANDLER)
    message: str = field(default="No handler bound for operation")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Bind a handler for every registered operation")


@dataclass
class CostEstimationFailure(AgentError):
    """Cost estimation failed; always swallowed by the estimator."""

    error_code: str = field(default=ErrorCode.COST_ESTIMATION_FAILED)
    message: str = field(default="Unable to estimate cost")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class MaxIterationsExceeded(AgentError):
    """The iteration cap was reached before the model produced an answer."""

    error_code: str = field(default=ErrorCode.MAX_ITERATIONS)
    message: str = field(default="Reached the maximum number of iterations")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class ResumeError(AgentError):
    """A resume request does not match an outstanding pending invocation."""

    error_code: str = field(default=ErrorCode.RESUME_MISMATCH)
    message: str = field(default="No pending operation matches the resume request")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


# -----------------------------------------------------------------------------
# Registry Errors
# -----------------------------------------------------------------------------


@dataclass
class RegistryFrozenError(AgentError):
    """Raised when registering into a registry that has been frozen."""

    error_code: str = field(default=ErrorCode.REGISTRY_FROZEN)
    message: str = field(default="Operation registry is read-only")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class DuplicateOperationError(AgentError):
    """Raised when an operation name is registered twice."""

    error_code: str = field(default=ErrorCode.DUPLICATE_OPERATION)
    message: str = field(default="Operation is already registered")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""
