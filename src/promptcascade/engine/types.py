"""Run state and result types for the cascade engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from promptcascade.contracts.enums import CascadeState
from promptcascade.contracts.nodes import FailedNode, HistoryEntry, SkippedNode
from promptcascade.engine.variables import ExecutedNode


@dataclass
class CascadeRun:
    """Ephemeral state of one traversal.

    Mutated only by the orchestrator's thread. Pause and cancel requests live
    in RunControl, not here.
    """

    root_node_id: str
    total_levels: int = 0
    total_runnable: int = 0
    current_level: int = 0
    current_node_id: str | None = None
    nodes_completed: int = 0
    state: CascadeState = CascadeState.IDLE
    history: list[HistoryEntry] = field(default_factory=list)
    skipped: list[SkippedNode] = field(default_factory=list)
    failed: list[FailedNode] = field(default_factory=list)
    executed: dict[str, ExecutedNode] = field(default_factory=dict)
    trace_id: str | None = None

    def advance(self) -> None:
        """Count a node as attempted, whatever its outcome."""
        self.nodes_completed += 1


@dataclass(frozen=True, slots=True)
class CascadeResult:
    """Summary of a finished top-level cascade."""

    root_node_id: str
    state: CascadeState
    history: tuple[HistoryEntry, ...]
    skipped: tuple[SkippedNode, ...]
    failed: tuple[FailedNode, ...]
    nodes_completed: int
    total_runnable: int
    duration_ms: float
    trace_id: str | None = None
    error: str | None = None

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass(frozen=True, slots=True)
class ChildNodeResult:
    node_id: str
    node_name: str
    success: bool
    depth: int
    response: str | None = None
    error: str | None = None


@dataclass
class ChildCascadeResult:
    """Outcome of one child cascade, including nested recursion."""

    success: bool = True
    results: list[ChildNodeResult] = field(default_factory=list)
    depth_limit_reached: bool = False
    cancelled: bool = False

