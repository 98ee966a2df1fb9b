"""Orchestration loop building blocks.

Only the error taxonomy and the shared types are re-exported here; import the
loop, dispatcher and stores from their modules (``.loop``, ``.dispatcher``,
``.state_store``) so the client can depend on this package without cycles.
"""

# Error taxonomy
from .errors import (
    AgentError,
    ArgumentParseError,
    CostEstimationFailure,
    DispatchFailure,
    DuplicateOperationError,
    ErrorCode,
    MaxIterationsExceeded,
    MissingHandlerError,
    RegistryFrozenError,
    ResumeError,
    UnknownOperationError,
    UpstreamError,
    ValidationFailure,
)

# Core types
from .types import (
    CompleteReason,
    ConversationStatus,
    CostEstimate,
    CostLineItem,
    EventType,
    IterationStep,
    LoopState,
    Message,
    OperationInvocation,
    PendingAction,
    PendingStatus,
    ResumableState,
    ResumeDecision,
    ResumeRequest,
    StreamEvent,
    TurnCheckpoint,
)

__all__ = [
    # Errors
    "AgentError",
    "ArgumentParseError",
    "CostEstimationFailure",
    "DispatchFailure",
    "DuplicateOperationError",
    "ErrorCode",
    "MaxIterationsExceeded",
    "MissingHandlerError",
    "RegistryFrozenError",
    "ResumeError",
    "UnknownOperationError",
    "UpstreamError",
    "ValidationFailure",
    # Types
    "CompleteReason",
    "ConversationStatus",
    "CostEstimate",
    "CostLineItem",
    "EventType",
    "IterationStep",
    "LoopState",
    "Message",
    "OperationInvocation",
    "PendingAction",
    "PendingStatus",
    "ResumableState",
    "ResumeDecision",
    "ResumeRequest",
    "StreamEvent",
    "TurnCheckpoint",
]
