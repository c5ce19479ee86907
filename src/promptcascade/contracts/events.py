"""Observability events for cascade execution.

Emitted by the orchestrator and child cascade driver through the event bus
and consumed by CLI formatters or any other observer. The engine never knows
who is listening.
"""

from dataclasses import dataclass
from typing import Any

from promptcascade.contracts.enums import (
    ActionStatus,
    CascadeState,
    RecoveryDecision,
    SkipReason,
)


@dataclass(frozen=True, slots=True)
class CascadeStarted:
    """Emitted once the hierarchy is loaded and totals are known."""

    root_node_id: str
    total_levels: int
    total_runnable: int
    trace_id: str | None = None


@dataclass(frozen=True, slots=True)
class LevelStarted:
    level: int
    node_count: int


@dataclass(frozen=True, slots=True)
class NodeStarted:
    """Emitted before the first attempt of a node."""

    node_id: str
    node_name: str
    level: int
    depth: int = 0


@dataclass(frozen=True, slots=True)
class NodeProgress:
    """Streaming output received for the in-flight node."""

    node_id: str
    text_delta: str


@dataclass(frozen=True, slots=True)
class NodeCompleted:
    node_id: str
    node_name: str
    level: int
    response_length: int
    nodes_completed: int
    total_runnable: int
    depth: int = 0


@dataclass(frozen=True, slots=True)
class NodeRetrying:
    """A normal attempt failed and another will follow.

    Attributes:
        attempt: Number of the attempt that just failed (1-based)
        max_attempts: Budget for the current round
    """

    node_id: str
    attempt: int
    max_attempts: int
    error: str


@dataclass(frozen=True, slots=True)
class NodeRateLimited:
    node_id: str
    wait_seconds: float
    wait_number: int
    max_waits: int


@dataclass(frozen=True, slots=True)
class NodeSkipped:
    node_id: str
    node_name: str
    level: int
    reason: SkipReason
    message: str | None = None


@dataclass(frozen=True, slots=True)
class NodeFailed:
    """A node reached a terminal failure.

    ``decision`` is the human recovery decision, when one was taken.
    """

    node_id: str
    node_name: str
    error: str
    decision: RecoveryDecision | None = None


@dataclass(frozen=True, slots=True)
class PreflightWarning:
    """Runnable nodes that have no content and will use the fallback message."""

    node_ids: tuple[str, ...]
    message: str


@dataclass(frozen=True, slots=True)
class ActionExecuted:
    node_id: str
    action_id: str
    status: ActionStatus
    created_count: int
    message: str | None = None


@dataclass(frozen=True, slots=True)
class DepthLimitHit:
    parent_node_id: str
    depth: int
    max_depth: int


@dataclass(frozen=True, slots=True)
class CascadeFinished:
    """Emitted exactly once per top-level run, whatever the outcome."""

    root_node_id: str
    state: CascadeState
    nodes_completed: int
    skipped_count: int
    failed_count: int
    duration_ms: float
    error: str | None = None


CASCADE_EVENT_TYPES: tuple[type[Any], ...] = (
    CascadeStarted,
    LevelStarted,
    NodeStarted,
    NodeProgress,
    NodeCompleted,
    NodeRetrying,
    NodeRateLimited,
    NodeSkipped,
    NodeFailed,
    PreflightWarning,
    ActionExecuted,
    DepthLimitHit,
    CascadeFinished,
)
