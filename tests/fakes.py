# tests/fakes.py
"""Test doubles for the cascade engine's collaborators.

Every fake records what it was asked so tests can assert on the exact
sequence of calls.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from promptcascade.contracts.enums import ExecutionType, NodeType, RecoveryDecision, SpanType, TraceStatus
from promptcascade.contracts.errors import ErrorEvidence
from promptcascade.contracts.events import CASCADE_EVENT_TYPES
from promptcascade.contracts.generation import (
    GenerationCompleted,
    GenerationEvent,
    GenerationFailed,
    GenerationRateLimited,
    GenerationStarted,
    ThreadingOptions,
    TokenUsage,
)
from promptcascade.contracts.nodes import PromptNode
from promptcascade.core.config import PromptCascadeSettings
from promptcascade.core.events import EventBus
from promptcascade.core.store import PromptRepository
from promptcascade.engine.clock import MockClock
from promptcascade.engine.orchestrator import CascadeOrchestrator
from promptcascade.engine.retry import RetryConfig

Script = Sequence[GenerationEvent] | Exception

# =============================================================================
# Generation events
# =============================================================================


def reply(text: str, *, response_id: str | None = None) -> list[GenerationEvent]:
    return [
        GenerationStarted(response_id=response_id),
        GenerationCompleted(response=text, usage=TokenUsage(prompt_tokens=10, completion_tokens=5), model="test-model"),
    ]


def fail(message: str = "boom", *, code: str = "server_error", status: int | None = 500) -> list[GenerationEvent]:
    return [GenerationFailed(code=code, message=message, status=status)]


def rate_limited(retry_after_s: float | None = None, message: str = "Too many requests") -> list[GenerationEvent]:
    return [GenerationRateLimited(message=message, retry_after_s=retry_after_s)]


# =============================================================================
# Generation client
# =============================================================================


@dataclass(frozen=True)
class GenerationCall:
    node_id: str
    message: str
    variables: dict[str, str]
    threading_options: ThreadingOptions


class ScriptedGenerationClient:
    """GenerationClient that plays back scripted event sequences per node.

    Each call for a node consumes the next script entry. An entry is either
    a list of events or an exception to raise. Once a node's script is used
    up (or when it has none), ``default`` decides the events.
    """

    def __init__(
        self,
        scripts: Mapping[str, Sequence[Script]] | None = None,
        *,
        default: Callable[[str, str], Script] | None = None,
        on_generate: Callable[[str], None] | None = None,
    ) -> None:
        self._scripts = {node_id: list(entries) for node_id, entries in (scripts or {}).items()}
        self._default = default or (lambda node_id, message: reply(f"out:{node_id}"))
        self._on_generate = on_generate
        self.calls: list[GenerationCall] = []
        self.cancelled: list[str] = []
        self.closed = False

    def generate(
        self,
        node_id: str,
        message: str,
        variables: Mapping[str, str],
        threading_options: ThreadingOptions,
    ) -> Iterator[GenerationEvent]:
        self.calls.append(GenerationCall(node_id, message, dict(variables), threading_options))
        if self._on_generate is not None:
            self._on_generate(node_id)
        queue = self._scripts.get(node_id)
        script = queue.pop(0) if queue else self._default(node_id, message)
        if isinstance(script, Exception):
            raise script
        yield from script

    def cancel(self, response_id: str) -> None:
        self.cancelled.append(response_id)

    def close(self) -> None:
        self.closed = True

    def calls_for(self, node_id: str) -> list[GenerationCall]:
        return [call for call in self.calls if call.node_id == node_id]

    @property
    def called_node_ids(self) -> list[str]:
        return [call.node_id for call in self.calls]


# =============================================================================
# Prompts
# =============================================================================


class RecordingRecoveryPrompt:
    """Answers with queued decisions, then ``default``."""

    def __init__(self, *decisions: RecoveryDecision, default: RecoveryDecision = RecoveryDecision.STOP) -> None:
        self._decisions = list(decisions)
        self._default = default
        self.calls: list[tuple[str, str]] = []

    def ask_recovery_decision(self, node: PromptNode, error_message: str) -> RecoveryDecision:
        self.calls.append((node.node_id, error_message))
        return self._decisions.pop(0) if self._decisions else self._default


class RecordingPreviewPrompt:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.calls: list[tuple[Any, str]] = []

    def confirm_action(self, extracted_data: Any, config: Mapping[str, Any], node_name: str) -> bool:
        self.calls.append((extracted_data, node_name))
        return self.answer


# =============================================================================
# Recorders and stores
# =============================================================================


@dataclass
class RecordedSpan:
    span_id: str
    trace_id: str
    node_id: str
    attempt_number: int
    previous_span_id: str | None
    span_type: SpanType
    status: str = "running"
    outcome: dict[str, Any] = field(default_factory=dict)


class InMemoryTraceRecorder:
    """TracingRecorder keeping traces and spans in lists."""

    def __init__(self) -> None:
        self.traces: dict[str, dict[str, Any]] = {}
        self.spans: list[RecordedSpan] = []

    def start_trace(self, root_node_id: str, execution_type: ExecutionType) -> str:
        trace_id = f"trace-{len(self.traces) + 1}"
        self.traces[trace_id] = {"root_node_id": root_node_id, "execution_type": execution_type, "status": None}
        return trace_id

    def create_span(
        self,
        trace_id: str,
        node_id: str,
        attempt_number: int,
        previous_span_id: str | None,
        span_type: SpanType,
    ) -> str:
        span = RecordedSpan(f"span-{len(self.spans) + 1}", trace_id, node_id, attempt_number, previous_span_id, span_type)
        self.spans.append(span)
        return span.span_id

    def complete_span(self, span_id: str, outcome: Mapping[str, Any]) -> None:
        span = self._span(span_id)
        span.status = "success"
        span.outcome = dict(outcome)

    def fail_span(self, span_id: str, evidence: ErrorEvidence) -> None:
        span = self._span(span_id)
        span.status = "failed"
        span.outcome = dict(evidence)

    def skip_span(self, trace_id: str, node_id: str, output: str) -> str:
        span = RecordedSpan(f"span-{len(self.spans) + 1}", trace_id, node_id, 1, None, SpanType.GENERATION, "skipped", {"output": output})
        self.spans.append(span)
        return span.span_id

    def complete_trace(self, trace_id: str, status: TraceStatus) -> None:
        self.traces[trace_id]["status"] = status

    def spans_for(self, node_id: str) -> list[RecordedSpan]:
        return [span for span in self.spans if span.node_id == node_id]

    def _span(self, span_id: str) -> RecordedSpan:
        return next(span for span in self.spans if span.span_id == span_id)


class FailingRecorder:
    """TracingRecorder whose every call raises."""

    def __getattr__(self, name: str) -> Callable[..., Any]:
        def fail_call(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError(f"recorder unavailable: {name}")

        return fail_call


class FlakyRepository(PromptRepository):
    """PromptRepository whose result writes fail for chosen nodes."""

    def __init__(self, db: Any, *, fail_save_for: Sequence[str] = ()) -> None:
        super().__init__(db)
        self._fail_save_for = set(fail_save_for)

    def save_result(self, node_id: str, response: str) -> None:
        if node_id in self._fail_save_for:
            raise OSError("disk full")
        super().save_result(node_id, response)


# =============================================================================
# Observers and clocks
# =============================================================================


class EventRecorder:
    """EventBus with a subscriber that keeps every cascade event."""

    def __init__(self) -> None:
        self.bus = EventBus()
        self.events: list[Any] = []
        for event_type in CASCADE_EVENT_TYPES:
            self.bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


class CallbackClock(MockClock):
    """MockClock that runs a callback after every sleep."""

    def __init__(self, on_sleep: Callable[[float], None] | None = None) -> None:
        super().__init__()
        self.on_sleep = on_sleep

    def sleep(self, seconds: float) -> None:
        super().sleep(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


# =============================================================================
# Trees and wiring
# =============================================================================


def add_node(repository: PromptRepository, node_id: str, parent_id: str | None = None, **fields: Any) -> PromptNode:
    """Insert a node at the next position under ``parent_id``."""
    fields.setdefault("name", node_id.upper())
    fields.setdefault("user_prompt", f"Prompt {node_id}")
    if "position" not in fields:
        fields["position"] = repository.next_position(parent_id)
    return repository.create_node(PromptNode(node_id=node_id, parent_id=parent_id, **fields))


def add_action_node(
    repository: PromptRepository,
    node_id: str,
    parent_id: str | None,
    config: Mapping[str, Any],
    *,
    action_id: str = "create_children_json",
    auto_run_children: bool = True,
    **fields: Any,
) -> PromptNode:
    return add_node(
        repository,
        node_id,
        parent_id,
        node_type=NodeType.ACTION,
        post_action=action_id,
        post_action_config=dict(config),
        auto_run_children=auto_run_children,
        **fields,
    )


def build_basic_tree(repository: PromptRepository, *, root_is_context: bool = True) -> None:
    """root -> (a -> a1), b"""
    add_node(repository, "root", name="Report", is_assistant=root_is_context, admin_prompt="You write reports.")
    add_node(repository, "a", "root", name="A")
    add_node(repository, "b", "root", name="B")
    add_node(repository, "a1", "a", name="A1")


def build_orchestrator(
    store: PromptRepository,
    client: ScriptedGenerationClient,
    *,
    recovery: RecordingRecoveryPrompt | None = None,
    preview: RecordingPreviewPrompt | None = None,
    recorder: Any = None,
    settings: PromptCascadeSettings | None = None,
    event_bus: EventBus | None = None,
    clock: MockClock | None = None,
    max_attempts: int = 3,
    **kwargs: Any,
) -> CascadeOrchestrator:
    """Orchestrator with fakes and zero backoff between normal attempts."""
    return CascadeOrchestrator(
        store,
        client,
        recovery=recovery or RecordingRecoveryPrompt(),
        preview=preview or RecordingPreviewPrompt(),
        recorder=recorder,
        settings=settings,
        event_bus=event_bus,
        clock=clock or MockClock(),
        retry_config=RetryConfig.immediate(max_attempts),
        **kwargs,
    )
