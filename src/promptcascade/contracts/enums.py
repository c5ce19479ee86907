"""All status codes, modes, and kinds used across subsystem boundaries."""

from enum import StrEnum


class NodeType(StrEnum):
    """Behaviour class of a prompt node.

    Stored in the database (prompts.node_type).
    """

    NORMAL = "normal"
    ACTION = "action"


class CascadeState(StrEnum):
    """Lifecycle state of a cascade run.

    idle -> loading_hierarchy -> running -> {paused <-> running}
    -> {completed | cancelled | fatal}
    """

    IDLE = "idle"
    LOADING_HIERARCHY = "loading_hierarchy"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FATAL = "fatal"

    @property
    def is_terminal(self) -> bool:
        return self in (CascadeState.COMPLETED, CascadeState.CANCELLED, CascadeState.FATAL)


class RecoveryDecision(StrEnum):
    """Human decision after a node exhausts its retry budget."""

    STOP = "stop"
    SKIP = "skip"
    RETRY = "retry"


class SkipReason(StrEnum):
    """Why a node was not executed."""

    EXCLUDED_FROM_CASCADE = "excluded_from_cascade"
    CONTEXT_ROOT = "context_root"
    USER_SKIPPED = "user_skipped"


class AttemptOutcome(StrEnum):
    """Terminal outcome of one node's attempt state machine."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    STOPPED = "stopped"
    FAILED = "failed"


class ActionStatus(StrEnum):
    """Status of a post-action execution.

    Stored on the originating node (prompts.last_action_result).
    """

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class Placement(StrEnum):
    """Where action-created nodes are attached."""

    CHILDREN = "children"
    SIBLINGS = "siblings"
    TOP_LEVEL = "top_level"
    SPECIFIC_PROMPT = "specific_prompt"


class SpanStatus(StrEnum):
    """Status of an execution span.

    Stored in the database (cascade_spans.status).
    """

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SpanType(StrEnum):
    """Kind of work a span records."""

    GENERATION = "generation"
    RETRY = "retry"
    ACTION = "action"


class TraceStatus(StrEnum):
    """Final status of an execution trace.

    Stored in the database (cascade_traces.status).
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionType(StrEnum):
    """Which driver opened a trace."""

    CASCADE_TOP = "cascade_top"
    CASCADE_CHILD = "cascade_child"


class ErrorCategory(StrEnum):
    """Classification of generation failures."""

    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    CONTEXT_LENGTH = "context_length"
    CONTENT_POLICY = "content_policy"
    UNKNOWN = "unknown"
