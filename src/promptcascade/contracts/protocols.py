"""Protocols for the collaborators the engine consumes but does not implement.

Structural typing: any object with the right methods satisfies these, so
tests can pass small fakes and production wiring can pass SQL-backed or
HTTP-backed implementations without inheritance.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from promptcascade.contracts.actions import ActionExecutionResult
    from promptcascade.contracts.enums import ExecutionType, RecoveryDecision, SpanType, TraceStatus
    from promptcascade.contracts.errors import ErrorEvidence
    from promptcascade.contracts.generation import GenerationEvent, ThreadingOptions
    from promptcascade.contracts.nodes import PromptNode, UserIdentity


@runtime_checkable
class GenerationClient(Protocol):
    """Performs one streaming generation call per node."""

    def generate(
        self,
        node_id: str,
        message: str,
        variables: Mapping[str, str],
        threading_options: ThreadingOptions,
    ) -> Iterable[GenerationEvent]:
        """Stream events for one call, ending with a completion or an error."""
        ...

    def cancel(self, response_id: str) -> None:
        """Ask the service to stop generating ``response_id``."""
        ...


class ActionExecutor(Protocol):
    """Interprets structured output and performs a side effect."""

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        action_id: str,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult: ...

    def requires_preview(self, action_id: str) -> bool:
        """Whether the action mutates the tree and should be confirmed first."""
        ...


class TracingRecorder(Protocol):
    """Records traces and spans. Callers treat every method as best-effort."""

    def start_trace(self, root_node_id: str, execution_type: ExecutionType) -> str: ...

    def create_span(
        self,
        trace_id: str,
        node_id: str,
        attempt_number: int,
        previous_span_id: str | None,
        span_type: SpanType,
    ) -> str: ...

    def complete_span(self, span_id: str, outcome: Mapping[str, Any]) -> None: ...

    def skip_span(self, trace_id: str, node_id: str, output: str) -> str: ...

    def fail_span(self, span_id: str, evidence: ErrorEvidence) -> None: ...

    def complete_trace(self, trace_id: str, status: TraceStatus) -> None: ...


class RecoveryPrompt(Protocol):
    """Blocking human decision after a node exhausts its retries."""

    def ask_recovery_decision(self, node: PromptNode, error_message: str) -> RecoveryDecision: ...


class ActionPreviewPrompt(Protocol):
    """Blocking human confirmation before an action mutates the tree."""

    def confirm_action(self, extracted_data: Any, config: Mapping[str, Any], node_name: str) -> bool: ...


class NodeStore(Protocol):
    """Prompt tree storage.

    Write methods touch only the columns they name, so concurrent edits to
    other fields of the same node are never overwritten with stale reads.
    """

    def get_node(self, node_id: str) -> PromptNode | None: ...

    def get_children(self, parent_id: str) -> list[PromptNode]: ...

    def get_children_of_many(self, parent_ids: Sequence[str]) -> list[PromptNode]: ...

    def get_variables(self, node_id: str) -> dict[str, str]: ...

    def upsert_variable(self, node_id: str, name: str, value: str, *, create: bool) -> bool: ...

    def save_result(self, node_id: str, response: str) -> None: ...

    def save_extracted_json(self, node_id: str, data: Any) -> None: ...

    def save_action_result(self, node_id: str, result: Mapping[str, Any]) -> None: ...

    def create_node(self, node: PromptNode) -> PromptNode: ...

    def next_position(self, parent_id: str | None) -> int: ...


class ProgressObserver(Protocol):
    """Receives every cascade event."""

    def on_progress(self, event: Any) -> None: ...
