# src/promptcascade/engine/spans.py
"""OpenTelemetry span factory for cascade execution.

Falls back to no-op mode when no tracer is configured.

Span Hierarchy:
    cascade:{root_node_id}
    ├── node:{node_id}
    │   └── action:{action_id}
    │       └── child_cascade:{parent_node_id}
    │           └── node:{child_id}
    └── node:{node_id}
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer


class NoOpSpan:
    """No-op span for when tracing is disabled."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_status(self, status: Any) -> None:
        pass

    def record_exception(self, exception: Exception) -> None:
        pass

    def is_recording(self) -> bool:
        return False


class SpanFactory:
    """Factory for creating OpenTelemetry spans.

    When no tracer is provided, all span methods yield a shared NoOpSpan.

    Example:
        factory = SpanFactory(tracer=opentelemetry.trace.get_tracer("promptcascade"))

        with factory.cascade_span("root-1") as span:
            with factory.node_span("node-1", level=1) as node_span:
                ...
    """

    _NOOP_SPAN = NoOpSpan()

    def __init__(self, tracer: "Tracer | None" = None) -> None:
        """Initialize with optional tracer.

        Args:
            tracer: OpenTelemetry tracer. If None, spans are no-ops.
        """
        self._tracer = tracer

    @property
    def enabled(self) -> bool:
        return self._tracer is not None

    @contextmanager
    def cascade_span(self, root_node_id: str) -> Iterator["Span | NoOpSpan"]:
        """Create a span for an entire top-level cascade."""
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span(f"cascade:{root_node_id}") as span:
            span.set_attribute("cascade.root_node_id", root_node_id)
            yield span

    @contextmanager
    def node_span(self, node_id: str, *, level: int, depth: int = 0) -> Iterator["Span | NoOpSpan"]:
        """Create a span covering every attempt of one node."""
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span(f"node:{node_id}") as span:
            span.set_attribute("node.id", node_id)
            span.set_attribute("node.level", level)
            span.set_attribute("cascade.depth", depth)
            yield span

    @contextmanager
    def action_span(self, node_id: str, action_id: str) -> Iterator["Span | NoOpSpan"]:
        """Create a span for a post-action."""
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span(f"action:{action_id}") as span:
            span.set_attribute("node.id", node_id)
            span.set_attribute("action.id", action_id)
            yield span

    @contextmanager
    def child_cascade_span(self, parent_node_id: str, *, depth: int, child_count: int) -> Iterator["Span | NoOpSpan"]:
        """Create a span for one level of child cascade recursion."""
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span(f"child_cascade:{parent_node_id}") as span:
            span.set_attribute("node.parent_id", parent_node_id)
            span.set_attribute("cascade.depth", depth)
            span.set_attribute("cascade.child_count", child_count)
            yield span
