"""Child cascade driver: recursive execution of action-created nodes.

When an action node flagged ``auto_run_children`` creates children, those
children run here, one at a time, in position order. A child that is itself
such an action node recurses one level deeper. Recursion is bounded by
``max_depth``; hitting the bound stops that branch only and is reported in
the result, never raised to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from promptcascade.contracts.enums import ActionStatus, AttemptOutcome, ExecutionType, TraceStatus
from promptcascade.contracts.errors import CascadeCancelled, DepthLimitReached, RateLimitWaitsExhausted
from promptcascade.contracts.events import DepthLimitHit, NodeCompleted, NodeFailed, NodeStarted
from promptcascade.contracts.generation import ThreadingOptions
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.contracts.protocols import NodeStore
from promptcascade.core.config import CascadeSettings
from promptcascade.core.events import EventBusProtocol
from promptcascade.engine.actions import ActionStage
from promptcascade.engine.clock import Clock
from promptcascade.engine.control import RunControl
from promptcascade.engine.generation import GenerationRunner, resolve_message
from promptcascade.engine.retry import MaxRetriesExceeded
from promptcascade.engine.spans import SpanFactory
from promptcascade.engine.tracing import TraceSession
from promptcascade.engine.types import ChildCascadeResult, ChildNodeResult
from promptcascade.engine.variables import node_scoped_variables

logger = structlog.get_logger(__name__)


class ChildCascadeDriver:
    """Runs action-created subtrees under a depth bound.

    Unlike the top-level orchestrator there is no human recovery decision: a
    child that exhausts its retries is recorded as failed and its siblings
    still run. Quota exhaustion propagates, as it does everywhere.
    """

    def __init__(
        self,
        store: NodeStore,
        runner: GenerationRunner,
        actions: ActionStage,
        *,
        settings: CascadeSettings,
        max_depth: int,
        trace: TraceSession,
        event_bus: EventBusProtocol,
        clock: Clock,
        span_factory: SpanFactory | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self._actions = actions
        self._settings = settings
        self._max_depth = max_depth
        self._trace = trace
        self._bus = event_bus
        self._clock = clock
        self._spans = span_factory or SpanFactory()

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def run(
        self,
        children: Sequence[PromptNode],
        *,
        parent: PromptNode,
        inherited_variables: Mapping[str, str],
        control: RunControl,
        caller: UserIdentity | None = None,
        trace_id: str | None = None,
        depth: int = 0,
        threading_options: ThreadingOptions | None = None,
    ) -> ChildCascadeResult:
        """Execute ``children`` of ``parent`` and, recursively, their auto-run children.

        When no ``trace_id`` is supplied, the driver opens and completes its
        own trace.
        """
        own_trace_id = None
        if trace_id is None:
            own_trace_id = self._trace.start_trace(parent.node_id, ExecutionType.CASCADE_CHILD)
            trace_id = own_trace_id

        result = ChildCascadeResult()
        status = TraceStatus.FAILED
        try:
            self._run_branch(
                children,
                parent=parent,
                inherited_variables=inherited_variables,
                control=control,
                caller=caller,
                trace_id=trace_id,
                depth=depth,
                threading_options=threading_options or ThreadingOptions(),
                result=result,
            )
            if result.cancelled:
                status = TraceStatus.CANCELLED
            elif result.success:
                status = TraceStatus.COMPLETED
        finally:
            if own_trace_id is not None:
                self._trace.complete_trace(own_trace_id, status)

        logger.info(
            "Child cascade finished",
            parent_node_id=parent.node_id,
            depth=depth,
            children=len(result.results),
            success=result.success,
            depth_limit_reached=result.depth_limit_reached,
            cancelled=result.cancelled,
        )
        return result

    def _run_branch(
        self,
        children: Sequence[PromptNode],
        *,
        parent: PromptNode,
        inherited_variables: Mapping[str, str],
        control: RunControl,
        caller: UserIdentity | None,
        trace_id: str | None,
        depth: int,
        threading_options: ThreadingOptions,
        result: ChildCascadeResult,
    ) -> None:
        try:
            self._check_depth(depth)
        except DepthLimitReached as exc:
            logger.warning("Child cascade depth limit reached", parent_node_id=parent.node_id, depth=exc.depth)
            self._bus.emit(DepthLimitHit(parent_node_id=parent.node_id, depth=exc.depth, max_depth=exc.max_depth))
            result.depth_limit_reached = True
            return

        with self._spans.child_cascade_span(parent.node_id, depth=depth, child_count=len(children)):
            for listed in sorted(children, key=lambda child: child.position):
                if not control.wait_while_paused(self._clock, self._settings.pause_poll_interval_seconds):
                    result.cancelled = True
                    return
                try:
                    self._run_child(
                        listed.node_id,
                        inherited_variables=inherited_variables,
                        control=control,
                        caller=caller,
                        trace_id=trace_id,
                        depth=depth,
                        threading_options=threading_options,
                        result=result,
                    )
                except CascadeCancelled:
                    result.cancelled = True
                    return

    def _check_depth(self, depth: int) -> None:
        if depth >= self._max_depth:
            raise DepthLimitReached(depth, self._max_depth)

    def _run_child(
        self,
        node_id: str,
        *,
        inherited_variables: Mapping[str, str],
        control: RunControl,
        caller: UserIdentity | None,
        trace_id: str | None,
        depth: int,
        threading_options: ThreadingOptions,
        result: ChildCascadeResult,
    ) -> None:
        child_depth = depth + 1
        # Re-read: the executor's copy may predate later edits
        try:
            node = self._store.get_node(node_id)
            stored = self._store.get_variables(node_id) if node is not None else {}
        except Exception as exc:
            logger.warning("Failed to read child prompt", node_id=node_id, error=str(exc))
            node = None
            stored = {}
        if node is None:
            self._record_failure(result, node_id, node_id, "Prompt not found", child_depth)
            return

        variables = {**inherited_variables, **node_scoped_variables(node, stored)}
        message = resolve_message(node, self._settings.fallback_message)
        self._bus.emit(NodeStarted(node_id=node.node_id, node_name=node.display_name, level=child_depth, depth=child_depth))

        attempt = self._runner.new_attempt(node)
        try:
            completed = self._runner.run_budget(
                node,
                message,
                variables,
                attempt=attempt,
                control=control,
                trace_id=trace_id,
                threading_options=threading_options,
            )
        except (MaxRetriesExceeded, RateLimitWaitsExhausted) as exc:
            attempt.finish(AttemptOutcome.FAILED)
            error = str(exc.last_error) if isinstance(exc, MaxRetriesExceeded) else str(exc)
            self._record_failure(result, node.node_id, node.display_name, error, child_depth)
            return

        attempt.finish(AttemptOutcome.SUCCEEDED)
        try:
            self._store.save_result(node.node_id, completed.response)
        except Exception as exc:
            logger.warning("Failed to store child result", node_id=node.node_id, error=str(exc))
            self._record_failure(result, node.node_id, node.display_name, f"Failed to save result: {exc}", child_depth)
            return

        result.results.append(
            ChildNodeResult(
                node_id=node.node_id,
                node_name=node.display_name,
                success=True,
                depth=child_depth,
                response=completed.response,
            )
        )
        self._bus.emit(
            NodeCompleted(
                node_id=node.node_id,
                node_name=node.display_name,
                level=child_depth,
                response_length=len(completed.response),
                nodes_completed=len(result.results),
                total_runnable=len(result.results),
                depth=child_depth,
            )
        )

        if not node.is_action_node:
            return
        stage = self._actions.run(
            node.with_result(completed.response),
            completed.response,
            caller=caller,
            trace_id=trace_id,
            allow_preview=False,
        )
        if not node.auto_run_children or stage.outcome.status != ActionStatus.SUCCESS:
            return

        grandchildren = stage.children
        if not grandchildren and stage.outcome.created_count > 0:
            grandchildren = self._refetch_children(stage.outcome.target_parent_id or node.node_id)
        if not grandchildren:
            return

        self._run_branch(
            grandchildren,
            parent=node,
            inherited_variables=variables,
            control=control,
            caller=caller,
            trace_id=trace_id,
            depth=child_depth,
            threading_options=threading_options,
            result=result,
        )

    def _refetch_children(self, parent_id: str) -> list[PromptNode]:
        try:
            return self._store.get_children(parent_id)
        except Exception as exc:
            logger.warning("Failed to re-read created children", parent_node_id=parent_id, error=str(exc))
            return []

    def _record_failure(
        self,
        result: ChildCascadeResult,
        node_id: str,
        node_name: str,
        error: str,
        depth: int,
    ) -> None:
        logger.warning("Child prompt failed", node_id=node_id, depth=depth, error=error)
        result.success = False
        result.results.append(ChildNodeResult(node_id=node_id, node_name=node_name, success=False, depth=depth, error=error))
        self._bus.emit(NodeFailed(node_id=node_id, node_name=node_name, error=error))
