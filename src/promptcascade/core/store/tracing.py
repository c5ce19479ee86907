"""SQL-backed trace recorder.

One trace per cascade (top-level or child), one span per generation attempt,
skipped node or action execution.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update

from promptcascade.contracts.enums import ExecutionType, SpanStatus, SpanType, TraceStatus
from promptcascade.contracts.errors import ErrorEvidence
from promptcascade.core.store.database import PromptDB
from promptcascade.core.store.repository import generate_id
from promptcascade.core.store.schema import spans_table, traces_table


class SQLTraceRecorder:
    """TracingRecorder implementation over PromptDB.

    Raises on storage errors like any repository; the engine wraps every call
    in a best-effort TraceSession.
    """

    def __init__(self, db: PromptDB) -> None:
        self._db = db

    def start_trace(self, root_node_id: str, execution_type: ExecutionType) -> str:
        trace_id = generate_id()
        with self._db.connection() as conn:
            conn.execute(
                traces_table.insert().values(
                    trace_id=trace_id,
                    root_node_id=root_node_id,
                    execution_type=execution_type.value,
                    status=TraceStatus.RUNNING.value,
                    started_at=datetime.now(UTC),
                )
            )
        return trace_id

    def create_span(
        self,
        trace_id: str,
        node_id: str,
        attempt_number: int,
        previous_span_id: str | None,
        span_type: SpanType,
    ) -> str:
        span_id = generate_id()
        with self._db.connection() as conn:
            conn.execute(
                spans_table.insert().values(
                    span_id=span_id,
                    trace_id=trace_id,
                    node_id=node_id,
                    span_type=span_type.value,
                    status=SpanStatus.RUNNING.value,
                    attempt_number=attempt_number,
                    previous_attempt_span_id=previous_span_id,
                    started_at=datetime.now(UTC),
                )
            )
        return span_id

    def complete_span(self, span_id: str, outcome: Mapping[str, Any]) -> None:
        """Mark a span successful.

        ``outcome`` keys: latency_ms, prompt_tokens, completion_tokens, model,
        output. All optional.
        """
        self._finish_span(
            span_id,
            status=SpanStatus.SUCCESS,
            latency_ms=outcome.get("latency_ms"),
            prompt_tokens=outcome.get("prompt_tokens"),
            completion_tokens=outcome.get("completion_tokens"),
            model=outcome.get("model"),
            output=outcome.get("output"),
        )

    def fail_span(self, span_id: str, evidence: ErrorEvidence) -> None:
        self._finish_span(span_id, status=SpanStatus.FAILED, error_evidence_json=json.dumps(dict(evidence)))

    def skip_span(self, trace_id: str, node_id: str, output: str) -> str:
        span_id = generate_id()
        now = datetime.now(UTC)
        with self._db.connection() as conn:
            conn.execute(
                spans_table.insert().values(
                    span_id=span_id,
                    trace_id=trace_id,
                    node_id=node_id,
                    span_type=SpanType.GENERATION.value,
                    status=SpanStatus.SKIPPED.value,
                    attempt_number=1,
                    started_at=now,
                    completed_at=now,
                    output=output,
                )
            )
        return span_id

    def complete_trace(self, trace_id: str, status: TraceStatus) -> None:
        with self._db.connection() as conn:
            conn.execute(
                update(traces_table)
                .where(traces_table.c.trace_id == trace_id)
                .values(status=status.value, completed_at=datetime.now(UTC))
            )

    def _finish_span(self, span_id: str, *, status: SpanStatus, **values: Any) -> None:
        with self._db.connection() as conn:
            conn.execute(
                update(spans_table)
                .where(spans_table.c.span_id == span_id)
                .values(status=status.value, completed_at=datetime.now(UTC), **values)
            )

    # === Queries ===

    def get_trace(self, trace_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(select(traces_table).where(traces_table.c.trace_id == trace_id)).mappings().first()
        return dict(row) if row is not None else None

    def get_spans(self, trace_id: str) -> list[dict[str, Any]]:
        query = select(spans_table).where(spans_table.c.trace_id == trace_id).order_by(spans_table.c.started_at, spans_table.c.attempt_number)
        with self._db.connection() as conn:
            rows = conn.execute(query).mappings().all()
        return [dict(row) for row in rows]
