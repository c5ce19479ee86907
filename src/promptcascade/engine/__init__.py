"""Cascade execution engine.

Exports the orchestrator and the pieces callers wire together.
"""

from promptcascade.engine.actions import (
    ActionStage,
    extract_json_from_response,
    validate_action_response,
)
from promptcascade.engine.attempts import NodeAttempt, rate_limit_delay_seconds
from promptcascade.engine.child_cascade import ChildCascadeDriver
from promptcascade.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from promptcascade.engine.control import RunControl
from promptcascade.engine.hierarchy import Hierarchy, HierarchyLoader
from promptcascade.engine.orchestrator import CascadeOrchestrator
from promptcascade.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from promptcascade.engine.spans import SpanFactory
from promptcascade.engine.types import CascadeResult, CascadeRun, ChildCascadeResult, ChildNodeResult
from promptcascade.engine.variables import VariableContextBuilder

__all__ = [
    "DEFAULT_CLOCK",
    "ActionStage",
    "CascadeOrchestrator",
    "CascadeResult",
    "CascadeRun",
    "ChildCascadeDriver",
    "ChildCascadeResult",
    "ChildNodeResult",
    "Clock",
    "Hierarchy",
    "HierarchyLoader",
    "MaxRetriesExceeded",
    "MockClock",
    "NodeAttempt",
    "RetryConfig",
    "RetryManager",
    "RunControl",
    "SpanFactory",
    "SystemClock",
    "VariableContextBuilder",
    "extract_json_from_response",
    "rate_limit_delay_seconds",
    "validate_action_response",
]
