"""Best-effort wrapper around a TracingRecorder.

Tracing must never abort a cascade: every recorder call is guarded, failures
are logged and reported as None. With no recorder configured every method is
a no-op.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import structlog

from promptcascade.contracts.enums import ExecutionType, SpanType, TraceStatus
from promptcascade.contracts.errors import ErrorEvidence
from promptcascade.contracts.protocols import TracingRecorder

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EXCLUDED_SPAN_OUTPUT = "Excluded from cascade via exclude_from_cascade flag"
USER_SKIPPED_SPAN_OUTPUT = "User skipped after error: {error}"


class TraceSession:
    """Guards recorder calls and remembers span lineage per node."""

    def __init__(self, recorder: TracingRecorder | None) -> None:
        self._recorder = recorder

    @property
    def enabled(self) -> bool:
        return self._recorder is not None

    def _guard(self, operation: str, call: Callable[[TracingRecorder], T], **context: Any) -> T | None:
        if self._recorder is None:
            return None
        try:
            return call(self._recorder)
        except Exception as exc:
            logger.warning(
                "Tracing call failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
                **context,
            )
            return None

    def start_trace(self, root_node_id: str, execution_type: ExecutionType) -> str | None:
        return self._guard(
            "start_trace",
            lambda recorder: recorder.start_trace(root_node_id, execution_type),
            root_node_id=root_node_id,
        )

    def create_span(
        self,
        trace_id: str | None,
        node_id: str,
        *,
        attempt_number: int,
        previous_span_id: str | None,
        span_type: SpanType = SpanType.GENERATION,
    ) -> str | None:
        if trace_id is None:
            return None
        return self._guard(
            "create_span",
            lambda recorder: recorder.create_span(trace_id, node_id, attempt_number, previous_span_id, span_type),
            node_id=node_id,
            attempt=attempt_number,
        )

    def complete_span(self, span_id: str | None, outcome: Mapping[str, Any]) -> None:
        if span_id is None:
            return
        self._guard("complete_span", lambda recorder: recorder.complete_span(span_id, outcome), span_id=span_id)

    def fail_span(self, span_id: str | None, evidence: ErrorEvidence) -> None:
        if span_id is None:
            return
        self._guard("fail_span", lambda recorder: recorder.fail_span(span_id, evidence), span_id=span_id)

    def skip_span(self, trace_id: str | None, node_id: str, output: str) -> str | None:
        if trace_id is None:
            return None
        return self._guard("skip_span", lambda recorder: recorder.skip_span(trace_id, node_id, output), node_id=node_id)

    def complete_trace(self, trace_id: str | None, status: TraceStatus) -> None:
        if trace_id is None:
            return
        self._guard("complete_trace", lambda recorder: recorder.complete_trace(trace_id, status), trace_id=trace_id)
