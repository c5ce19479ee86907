"""CascadeOrchestrator: drives a cascade run over a prompt tree.

Nodes run strictly one at a time, level by level and by position within a
level. Each node gets a freshly built variable context, a bounded attempt
loop against the generation client, a human recovery decision when its retry
budget is exhausted, and (for action nodes) the post-action stage, which may
hand newly created children to the child cascade driver.

State machine:
    idle -> loading_hierarchy -> running -> {paused <-> running}
    -> {completed | cancelled | fatal}
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from promptcascade.contracts.enums import (
    ActionStatus,
    AttemptOutcome,
    CascadeState,
    ExecutionType,
    RecoveryDecision,
    SkipReason,
    TraceStatus,
)
from promptcascade.contracts.errors import (
    CascadeCancelled,
    CascadeStopped,
    HierarchyFetchError,
    QuotaExhaustedError,
    RateLimitWaitsExhausted,
)
from promptcascade.contracts.events import (
    CascadeFinished,
    CascadeStarted,
    LevelStarted,
    NodeCompleted,
    NodeFailed,
    NodeSkipped,
    NodeStarted,
    PreflightWarning,
)
from promptcascade.contracts.generation import ThreadingOptions
from promptcascade.contracts.nodes import FailedNode, HistoryEntry, PromptNode, SkippedNode, UserIdentity
from promptcascade.contracts.protocols import (
    ActionExecutor,
    ActionPreviewPrompt,
    GenerationClient,
    NodeStore,
    RecoveryPrompt,
    TracingRecorder,
)
from promptcascade.core.config import PromptCascadeSettings
from promptcascade.core.events import EventBusProtocol, NullEventBus
from promptcascade.core.logging import bind_trace_id, cascade_log_context
from promptcascade.engine.actions import ActionStage
from promptcascade.engine.attempts import NodeAttempt
from promptcascade.engine.child_cascade import ChildCascadeDriver
from promptcascade.engine.clock import DEFAULT_CLOCK, Clock
from promptcascade.engine.control import RunControl
from promptcascade.engine.generation import GenerationRunner, resolve_message
from promptcascade.engine.hierarchy import Hierarchy, HierarchyLoader
from promptcascade.engine.retry import MaxRetriesExceeded, RetryConfig
from promptcascade.engine.spans import SpanFactory
from promptcascade.engine.tracing import EXCLUDED_SPAN_OUTPUT, USER_SKIPPED_SPAN_OUTPUT, TraceSession
from promptcascade.engine.types import CascadeResult, CascadeRun
from promptcascade.engine.variables import ExecutedNode, VariableContextBuilder

logger = structlog.get_logger(__name__)

_TRACE_STATUS = {
    CascadeState.COMPLETED: TraceStatus.COMPLETED,
    CascadeState.CANCELLED: TraceStatus.CANCELLED,
    CascadeState.FATAL: TraceStatus.FAILED,
}


class CascadeOrchestrator:
    """Runs cascades against one store and one generation client.

    Example:
        orchestrator = CascadeOrchestrator(
            repository,
            client,
            recovery=ConsoleRecoveryPrompt(),
            preview=ConsolePreviewPrompt(),
            recorder=SQLTraceRecorder(db),
            event_bus=bus,
        )
        control = RunControl()
        result = orchestrator.execute_cascade(root_id, control=control)
    """

    def __init__(
        self,
        store: NodeStore,
        client: GenerationClient,
        *,
        recovery: RecoveryPrompt,
        preview: ActionPreviewPrompt,
        executor: ActionExecutor | None = None,
        recorder: TracingRecorder | None = None,
        settings: PromptCascadeSettings | None = None,
        event_bus: EventBusProtocol | None = None,
        clock: Clock | None = None,
        span_factory: SpanFactory | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        from promptcascade.plugins.actions import ActionRegistry

        self._settings = settings or PromptCascadeSettings()
        cascade = self._settings.cascade
        self._store = store
        self._recovery = recovery
        self._bus: EventBusProtocol = event_bus or NullEventBus()
        self._clock = clock or DEFAULT_CLOCK
        self._spans = span_factory or SpanFactory()
        self._trace = TraceSession(recorder if self._settings.tracing.enabled else None)
        self._loader = HierarchyLoader(store, max_levels=cascade.max_levels)
        self._variables = VariableContextBuilder()
        self._runner = GenerationRunner(
            client,
            settings=cascade,
            retry_config=retry_config or RetryConfig.from_settings(cascade, self._settings.retry),
            trace=self._trace,
            event_bus=self._bus,
            clock=self._clock,
        )
        self._actions = ActionStage(
            store,
            executor or ActionRegistry.with_builtins(store),
            preview,
            trace=self._trace,
            event_bus=self._bus,
            clock=self._clock,
            span_factory=self._spans,
            skip_all_previews=cascade.skip_all_previews,
        )
        self._children = ChildCascadeDriver(
            store,
            self._runner,
            self._actions,
            settings=cascade,
            max_depth=self._settings.child_cascade.max_depth,
            trace=self._trace,
            event_bus=self._bus,
            clock=self._clock,
            span_factory=self._spans,
        )

    @property
    def child_driver(self) -> ChildCascadeDriver:
        return self._children

    def execute_cascade(
        self,
        root_node_id: str,
        generation_context_id: str | None = None,
        *,
        control: RunControl | None = None,
        user: UserIdentity | None = None,
    ) -> CascadeResult:
        """Run every eligible node under ``root_node_id``.

        Never raises for run-level failures: the returned result's state is
        ``completed``, ``cancelled`` or ``fatal``, and whatever was produced
        before an abort stays persisted.

        Args:
            root_node_id: Root of the tree to run
            generation_context_id: Conversation context forwarded to the client
            control: Pause/cancel handle; the caller keeps a reference
            user: Identity exposed as q.user.* variables
        """
        control = control or RunControl()
        run = CascadeRun(root_node_id=root_node_id)
        started = self._clock.monotonic()

        with self._spans.cascade_span(root_node_id), cascade_log_context(root_node_id):
            run.state = CascadeState.LOADING_HIERARCHY
            try:
                hierarchy = self._loader.load(root_node_id)
            except HierarchyFetchError as exc:
                logger.error("Hierarchy load failed", root_node_id=root_node_id, error=str(exc))
                return self._finish(run, CascadeState.FATAL, started, error=str(exc))

            runnable = self._partition(hierarchy, run)
            run.total_levels = hierarchy.total_levels
            run.total_runnable = len(runnable)
            if not runnable:
                return self._finish(run, CascadeState.FATAL, started, error="No prompts to run")

            run.trace_id = self._trace.start_trace(root_node_id, ExecutionType.CASCADE_TOP)
            bind_trace_id(run.trace_id)
            run.state = CascadeState.RUNNING
            logger.info(
                "Cascade started",
                root_node_id=root_node_id,
                total_levels=run.total_levels,
                total_runnable=run.total_runnable,
                skipped=len(run.skipped),
                trace_id=run.trace_id,
            )
            self._bus.emit(
                CascadeStarted(
                    root_node_id=root_node_id,
                    total_levels=run.total_levels,
                    total_runnable=run.total_runnable,
                    trace_id=run.trace_id,
                )
            )
            self._announce_skipped(run)
            self._preflight(runnable)

            threading_options = ThreadingOptions(context_id=generation_context_id)
            try:
                current_level = -1
                for level, node in runnable:
                    if level != current_level:
                        current_level = level
                        run.current_level = level
                        self._bus.emit(
                            LevelStarted(level=level, node_count=sum(1 for lvl, _ in runnable if lvl == level))
                        )
                    self._checkpoint(run, control)
                    self._run_node(run, hierarchy, level, node, control, user, threading_options)
            except CascadeCancelled as exc:
                logger.info("Cascade cancelled", root_node_id=root_node_id, reason=str(exc))
                return self._finish(run, CascadeState.CANCELLED, started, error=str(exc))
            except CascadeStopped as exc:
                logger.info("Cascade stopped by user", root_node_id=root_node_id, node_id=exc.node_id)
                return self._finish(run, CascadeState.CANCELLED, started, error=exc.reason)
            except QuotaExhaustedError as exc:
                logger.error("Generation quota exhausted", root_node_id=root_node_id, error=str(exc))
                return self._finish(run, CascadeState.FATAL, started, error=f"Quota exhausted: {exc}")

            return self._finish(run, CascadeState.COMPLETED, started)

    # === Setup ===

    def _partition(self, hierarchy: Hierarchy, run: CascadeRun) -> list[tuple[int, PromptNode]]:
        """Split nodes into runnable and skipped; skipped ones are recorded now."""
        runnable: list[tuple[int, PromptNode]] = []
        for level, node in hierarchy.iter_nodes():
            if level == 0 and node.is_assistant:
                reason = SkipReason.CONTEXT_ROOT
            elif node.exclude_from_cascade:
                reason = SkipReason.EXCLUDED_FROM_CASCADE
            else:
                runnable.append((level, node))
                continue
            run.skipped.append(SkippedNode(node_id=node.node_id, node_name=node.display_name, level=level, reason=reason))
        return runnable

    def _announce_skipped(self, run: CascadeRun) -> None:
        for skipped in run.skipped:
            if skipped.reason == SkipReason.EXCLUDED_FROM_CASCADE:
                self._trace.skip_span(run.trace_id, skipped.node_id, EXCLUDED_SPAN_OUTPUT)
            self._bus.emit(
                NodeSkipped(
                    node_id=skipped.node_id,
                    node_name=skipped.node_name,
                    level=skipped.level,
                    reason=skipped.reason,
                )
            )

    def _preflight(self, runnable: list[tuple[int, PromptNode]]) -> None:
        empty = tuple(node.node_id for _, node in runnable if not node.has_content)
        if not empty:
            return
        message = f"{len(empty)} prompt(s) have no content and will be sent the fallback message"
        logger.warning("Prompts without content", node_ids=list(empty))
        self._bus.emit(PreflightWarning(node_ids=empty, message=message))

    # === Per node ===

    def _checkpoint(self, run: CascadeRun, control: RunControl) -> None:
        if control.cancelled:
            raise CascadeCancelled("Cascade cancelled")
        if not control.paused:
            return
        run.state = CascadeState.PAUSED
        logger.info("Cascade paused", root_node_id=run.root_node_id, nodes_completed=run.nodes_completed)
        proceed = control.wait_while_paused(self._clock, self._settings.cascade.pause_poll_interval_seconds)
        if not proceed:
            raise CascadeCancelled("Cascade cancelled while paused")
        run.state = CascadeState.RUNNING
        logger.info("Cascade resumed", root_node_id=run.root_node_id)

    def _run_node(
        self,
        run: CascadeRun,
        hierarchy: Hierarchy,
        level: int,
        node: PromptNode,
        control: RunControl,
        user: UserIdentity | None,
        threading_options: ThreadingOptions,
    ) -> None:
        run.current_node_id = node.node_id
        self._bus.emit(NodeStarted(node_id=node.node_id, node_name=node.display_name, level=level))
        parent = hierarchy.find(node.parent_id) if node.parent_id else None
        stored = self._read_variables(node)
        message = resolve_message(node, self._settings.cascade.fallback_message)
        attempt = self._runner.new_attempt(node)

        with self._spans.node_span(node.node_id, level=level):
            while True:
                variables = self._variables.build(
                    run.history,
                    node,
                    level=level,
                    now=self._clock.now(),
                    executed=run.executed,
                    user=user,
                    top_level=hierarchy.root,
                    parent=parent,
                    stored_variables=stored,
                )
                try:
                    completed = self._runner.run_budget(
                        node,
                        message,
                        variables,
                        attempt=attempt,
                        control=control,
                        trace_id=run.trace_id,
                        threading_options=threading_options,
                    )
                    break
                except (MaxRetriesExceeded, RateLimitWaitsExhausted) as exc:
                    error_message = str(exc.last_error) if isinstance(exc, MaxRetriesExceeded) else str(exc)
                    if self._recover(run, level, node, attempt, error_message):
                        continue
                    return
                except QuotaExhaustedError as exc:
                    attempt.finish(AttemptOutcome.FAILED)
                    self._record_failure(run, level, node, str(exc), None)
                    raise

            attempt.finish(AttemptOutcome.SUCCEEDED)
            response = completed.response
            run.history.append(
                HistoryEntry(level=level, node_id=node.node_id, node_name=node.display_name, response=response)
            )
            run.executed[node.node_id] = ExecutedNode(
                node=node.with_result(response),
                response=response,
                variables={**node.system_variables, **stored},
            )
            saved = self._persist(run, level, node, response)
            run.advance()
            logger.info(
                "Prompt completed",
                node_id=node.node_id,
                level=level,
                attempts=attempt.span_attempts,
                nodes_completed=run.nodes_completed,
                total_runnable=run.total_runnable,
            )
            self._bus.emit(
                NodeCompleted(
                    node_id=node.node_id,
                    node_name=node.display_name,
                    level=level,
                    response_length=len(response),
                    nodes_completed=run.nodes_completed,
                    total_runnable=run.total_runnable,
                )
            )

            if saved and node.is_action_node:
                self._run_action(run, node, response, variables, control, user, threading_options)

    def _recover(
        self,
        run: CascadeRun,
        level: int,
        node: PromptNode,
        attempt: NodeAttempt,
        error_message: str,
    ) -> bool:
        """Ask for a recovery decision. True means try again with a fresh budget."""
        logger.warning(
            "Prompt exhausted retries",
            node_id=node.node_id,
            failures=attempt.failures,
            rate_limit_waits=attempt.rate_limit_waits,
            error=error_message,
        )
        decision = self._recovery.ask_recovery_decision(node, error_message)
        logger.info("Recovery decision", node_id=node.node_id, decision=decision.value)

        if decision == RecoveryDecision.RETRY:
            attempt.reset()
            return True
        if decision == RecoveryDecision.SKIP:
            attempt.finish(AttemptOutcome.SKIPPED)
            self._trace.skip_span(run.trace_id, node.node_id, USER_SKIPPED_SPAN_OUTPUT.format(error=error_message))
            run.history.append(HistoryEntry.skipped_entry(level, node, error_message))
            run.skipped.append(
                SkippedNode(node_id=node.node_id, node_name=node.display_name, level=level, reason=SkipReason.USER_SKIPPED)
            )
            run.advance()
            self._bus.emit(NodeFailed(node_id=node.node_id, node_name=node.display_name, error=error_message, decision=decision))
            self._bus.emit(
                NodeSkipped(
                    node_id=node.node_id,
                    node_name=node.display_name,
                    level=level,
                    reason=SkipReason.USER_SKIPPED,
                    message=error_message,
                )
            )
            return False

        attempt.finish(AttemptOutcome.STOPPED)
        self._record_failure(run, level, node, error_message, decision)
        raise CascadeStopped(node.node_id, f"Cascade stopped by user at '{node.display_name}': {error_message}")

    def _record_failure(
        self,
        run: CascadeRun,
        level: int,
        node: PromptNode,
        error: str,
        decision: RecoveryDecision | None,
    ) -> None:
        run.failed.append(FailedNode(node_id=node.node_id, node_name=node.display_name, level=level, error=error))
        run.advance()
        self._bus.emit(NodeFailed(node_id=node.node_id, node_name=node.display_name, error=error, decision=decision))

    def _read_variables(self, node: PromptNode) -> dict[str, str]:
        try:
            return self._store.get_variables(node.node_id)
        except Exception as exc:
            logger.warning("Failed to read stored variables", node_id=node.node_id, error=str(exc))
            return {}

    def _persist(self, run: CascadeRun, level: int, node: PromptNode, response: str) -> bool:
        try:
            self._store.save_result(node.node_id, response)
        except Exception as exc:
            logger.error("Failed to store prompt result", node_id=node.node_id, error=str(exc))
            run.failed.append(
                FailedNode(node_id=node.node_id, node_name=node.display_name, level=level, error=f"Failed to save result: {exc}")
            )
            return False
        return True

    def _run_action(
        self,
        run: CascadeRun,
        node: PromptNode,
        response: str,
        variables: Mapping[str, str],
        control: RunControl,
        user: UserIdentity | None,
        threading_options: ThreadingOptions,
    ) -> None:
        stage = self._actions.run(node.with_result(response), response, caller=user, trace_id=run.trace_id)
        if not node.auto_run_children or stage.outcome.status != ActionStatus.SUCCESS:
            return

        children = stage.children
        if not children and stage.outcome.created_count > 0:
            try:
                children = self._store.get_children(stage.outcome.target_parent_id or node.node_id)
            except Exception as exc:
                logger.warning("Failed to re-read created children", node_id=node.node_id, error=str(exc))
                children = []
        if not children:
            return

        child_result = self._children.run(
            children,
            parent=node.with_result(response),
            inherited_variables=variables,
            control=control,
            caller=user,
            trace_id=run.trace_id,
            threading_options=threading_options,
        )
        if child_result.cancelled:
            raise CascadeCancelled("Cascade cancelled during child cascade")

    # === Completion ===

    def _finish(self, run: CascadeRun, state: CascadeState, started: float, *, error: str | None = None) -> CascadeResult:
        run.state = state
        duration_ms = (self._clock.monotonic() - started) * 1000
        self._trace.complete_trace(run.trace_id, _TRACE_STATUS[state])
        logger.info(
            "Cascade finished",
            root_node_id=run.root_node_id,
            state=state.value,
            nodes_completed=run.nodes_completed,
            skipped=len(run.skipped),
            failed=len(run.failed),
            duration_ms=round(duration_ms, 1),
            error=error,
        )
        self._bus.emit(
            CascadeFinished(
                root_node_id=run.root_node_id,
                state=state,
                nodes_completed=run.nodes_completed,
                skipped_count=len(run.skipped),
                failed_count=len(run.failed),
                duration_ms=duration_ms,
                error=error,
            )
        )
        return CascadeResult(
            root_node_id=run.root_node_id,
            state=state,
            history=tuple(run.history),
            skipped=tuple(run.skipped),
            failed=tuple(run.failed),
            nodes_completed=run.nodes_completed,
            total_runnable=run.total_runnable,
            duration_ms=duration_ms,
            trace_id=run.trace_id,
            error=error,
        )
