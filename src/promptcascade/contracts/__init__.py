"""Shared contracts for cross-boundary data types.

This package is a leaf module with no outbound dependencies to core/engine.
Settings classes are not re-exported here; import them from
promptcascade.core.config.
"""

from promptcascade.contracts.actions import ActionExecutionResult, ActionValidation
from promptcascade.contracts.enums import (
    ActionStatus,
    AttemptOutcome,
    CascadeState,
    ErrorCategory,
    ExecutionType,
    NodeType,
    Placement,
    RecoveryDecision,
    SkipReason,
    SpanStatus,
    SpanType,
    TraceStatus,
)
from promptcascade.contracts.errors import (
    ActionCancelledByUser,
    ActionParseError,
    ActionValidationError,
    CascadeCancelled,
    CascadeError,
    CascadeStopped,
    DepthLimitReached,
    ErrorEvidence,
    GenerationError,
    HierarchyFetchError,
    QuotaExhaustedError,
    RateLimitError,
    RateLimitWaitsExhausted,
)
from promptcascade.contracts.generation import (
    GenerationCompleted,
    GenerationEvent,
    GenerationFailed,
    GenerationProgress,
    GenerationRateLimited,
    GenerationStarted,
    ThreadingOptions,
    TokenUsage,
    decode_generation_event,
)
from promptcascade.contracts.nodes import (
    ActionOutcome,
    FailedNode,
    HistoryEntry,
    PromptNode,
    SkippedNode,
    UserIdentity,
)
from promptcascade.contracts.protocols import (
    ActionExecutor,
    ActionPreviewPrompt,
    GenerationClient,
    NodeStore,
    ProgressObserver,
    RecoveryPrompt,
    TracingRecorder,
)

__all__ = [
    "ActionCancelledByUser",
    "ActionExecutionResult",
    "ActionExecutor",
    "ActionOutcome",
    "ActionParseError",
    "ActionPreviewPrompt",
    "ActionStatus",
    "ActionValidation",
    "ActionValidationError",
    "AttemptOutcome",
    "CascadeCancelled",
    "CascadeError",
    "CascadeState",
    "CascadeStopped",
    "DepthLimitReached",
    "ErrorCategory",
    "ErrorEvidence",
    "ExecutionType",
    "FailedNode",
    "GenerationClient",
    "GenerationCompleted",
    "GenerationError",
    "GenerationEvent",
    "GenerationFailed",
    "GenerationProgress",
    "GenerationRateLimited",
    "GenerationStarted",
    "HierarchyFetchError",
    "HistoryEntry",
    "NodeStore",
    "NodeType",
    "Placement",
    "ProgressObserver",
    "PromptNode",
    "QuotaExhaustedError",
    "RateLimitError",
    "RateLimitWaitsExhausted",
    "RecoveryDecision",
    "RecoveryPrompt",
    "SkipReason",
    "SkippedNode",
    "SpanStatus",
    "SpanType",
    "ThreadingOptions",
    "TokenUsage",
    "TraceStatus",
    "TracingRecorder",
    "UserIdentity",
    "decode_generation_event",
]
