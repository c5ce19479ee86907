"""GenerationRunner: attempts of one node against the generation client.

Shared by the top-level orchestrator and the child cascade driver. One call
to ``run_budget`` spends at most one retry budget; rate-limit waits happen
inside a single normal attempt and never consume it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from promptcascade.contracts.enums import SpanType
from promptcascade.contracts.errors import CascadeCancelled, ErrorEvidence, GenerationError, RateLimitError
from promptcascade.contracts.events import NodeProgress, NodeRateLimited, NodeRetrying
from promptcascade.contracts.generation import (
    GenerationCompleted,
    GenerationFailed,
    GenerationProgress,
    GenerationRateLimited,
    GenerationStarted,
    ThreadingOptions,
)
from promptcascade.contracts.nodes import PromptNode
from promptcascade.contracts.protocols import GenerationClient
from promptcascade.core.config import CascadeSettings
from promptcascade.core.events import EventBusProtocol
from promptcascade.engine.attempts import NodeAttempt, rate_limit_delay_seconds
from promptcascade.engine.classify import to_exception
from promptcascade.engine.clock import Clock
from promptcascade.engine.control import RunControl
from promptcascade.engine.retry import RetryConfig, RetryManager
from promptcascade.engine.tracing import TraceSession

logger = structlog.get_logger(__name__)

_CANCELLED_EVIDENCE: ErrorEvidence = {
    "error_type": "CANCELLED",
    "error_code": "cancelled",
    "error_message": "Cascade cancelled during generation",
    "retry_recommended": False,
}


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GenerationError) and error.retryable and not isinstance(error, RateLimitError)


def resolve_message(node: PromptNode, fallback: str) -> str:
    """User text, else admin text, else the fallback. Never empty."""
    if node.user_prompt.strip():
        return node.user_prompt
    if node.admin_prompt.strip():
        return node.admin_prompt
    return fallback


class GenerationRunner:
    """Runs generation attempts for one node at a time."""

    def __init__(
        self,
        client: GenerationClient,
        *,
        settings: CascadeSettings,
        retry_config: RetryConfig,
        trace: TraceSession,
        event_bus: EventBusProtocol,
        clock: Clock,
    ) -> None:
        self._client = client
        self._settings = settings
        self._retry_config = retry_config
        self._trace = trace
        self._bus = event_bus
        self._clock = clock

    def new_attempt(self, node: PromptNode) -> NodeAttempt:
        return NodeAttempt(
            node_id=node.node_id,
            max_retries=self._retry_config.max_attempts,
            max_rate_limit_waits=self._settings.max_rate_limit_waits,
        )

    def run_budget(
        self,
        node: PromptNode,
        message: str,
        variables: Mapping[str, str],
        *,
        attempt: NodeAttempt,
        control: RunControl,
        trace_id: str | None,
        threading_options: ThreadingOptions,
    ) -> GenerationCompleted:
        """Spend one retry budget on ``node``.

        Raises:
            MaxRetriesExceeded: Every normal attempt in the budget failed
            RateLimitWaitsExhausted: The rate-limit wait cap was exceeded
            QuotaExhaustedError: The service quota is exhausted
            CascadeCancelled: Cancellation observed mid-attempt
        """
        manager = RetryManager(self._retry_config, sleep=self._clock.sleep)

        def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.info(
                "Generation attempt failed, retrying",
                node_id=node.node_id,
                attempt=attempt_number,
                max_attempts=manager.max_attempts,
                error=str(error),
            )
            self._bus.emit(
                NodeRetrying(
                    node_id=node.node_id,
                    attempt=attempt_number,
                    max_attempts=manager.max_attempts,
                    error=str(error),
                )
            )

        return manager.execute_with_retry(
            lambda: self._attempt(node, message, variables, attempt, control, trace_id, threading_options),
            is_retryable=_is_retryable,
            on_retry=on_retry,
        )

    def _attempt(
        self,
        node: PromptNode,
        message: str,
        variables: Mapping[str, str],
        attempt: NodeAttempt,
        control: RunControl,
        trace_id: str | None,
        threading_options: ThreadingOptions,
    ) -> GenerationCompleted:
        """One normal attempt, including any rate-limit waits it needs."""
        while True:
            span_number = attempt.next_span_attempt()
            span_id = self._trace.create_span(
                trace_id,
                node.node_id,
                attempt_number=span_number,
                previous_span_id=attempt.last_span_id,
                span_type=SpanType.GENERATION if span_number == 1 else SpanType.RETRY,
            )
            if span_id is not None:
                attempt.last_span_id = span_id
            started = self._clock.monotonic()

            try:
                completed = self._consume(node, message, variables, control, threading_options)
            except RateLimitError as exc:
                self._trace.fail_span(span_id, exc.evidence())
                attempt.record_rate_limit(exc)
                self._wait_for_rate_limit(node, exc, attempt, control)
                continue
            except GenerationError as exc:
                self._trace.fail_span(span_id, exc.evidence())
                if exc.retryable:
                    attempt.record_failure()
                raise
            except CascadeCancelled:
                self._trace.fail_span(span_id, _CANCELLED_EVIDENCE)
                raise

            self._trace.complete_span(
                span_id,
                {
                    "latency_ms": (self._clock.monotonic() - started) * 1000,
                    "prompt_tokens": completed.usage.prompt_tokens,
                    "completion_tokens": completed.usage.completion_tokens,
                    "model": completed.model,
                    "output": completed.response,
                },
            )
            return completed

    def _wait_for_rate_limit(
        self,
        node: PromptNode,
        error: RateLimitError,
        attempt: NodeAttempt,
        control: RunControl,
    ) -> None:
        delay = rate_limit_delay_seconds(
            error,
            fallback_seconds=self._settings.rate_limit_fallback_seconds,
            padding_ms=self._settings.rate_limit_padding_ms,
        )
        logger.warning(
            "Rate limited, waiting before retry",
            node_id=node.node_id,
            wait_seconds=delay,
            wait_number=attempt.rate_limit_waits,
            max_waits=attempt.max_rate_limit_waits,
        )
        self._bus.emit(
            NodeRateLimited(
                node_id=node.node_id,
                wait_seconds=delay,
                wait_number=attempt.rate_limit_waits,
                max_waits=attempt.max_rate_limit_waits,
            )
        )
        self._clock.sleep(delay)
        if control.cancelled:
            raise CascadeCancelled(f"Cancelled while rate limited on {node.node_id}")

    def _consume(
        self,
        node: PromptNode,
        message: str,
        variables: Mapping[str, str],
        control: RunControl,
        threading_options: ThreadingOptions,
    ) -> GenerationCompleted:
        """Drain one generation stream.

        Cancellation is checked between events; a cancel() arriving while
        the call is in flight is forwarded to the service once the response
        id is known.
        """
        state: dict[str, Any] = {"response_id": None}

        def cancel_remote() -> None:
            response_id = state["response_id"]
            if response_id is not None:
                self._client.cancel(response_id)

        unregister = control.on_cancel(cancel_remote)
        try:
            for event in self._client.generate(node.node_id, message, variables, threading_options):
                if control.cancelled:
                    if isinstance(event, GenerationStarted) and event.response_id is not None:
                        self._cancel_quietly(event.response_id)
                    raise CascadeCancelled(f"Cancelled during generation of {node.node_id}")
                match event:
                    case GenerationStarted(response_id=response_id):
                        state["response_id"] = response_id
                    case GenerationProgress(text_delta=delta):
                        self._bus.emit(NodeProgress(node_id=node.node_id, text_delta=delta))
                    case GenerationCompleted():
                        return event
                    case GenerationFailed() | GenerationRateLimited():
                        raise to_exception(event, node_name=node.display_name)
        except (GenerationError, CascadeCancelled):
            raise
        except Exception as exc:
            raise GenerationError(
                f"Generation client failed: {exc}",
                code="client_error",
                node_name=node.display_name,
            ) from exc
        finally:
            unregister()

        if control.cancelled:
            raise CascadeCancelled(f"Cancelled during generation of {node.node_id}")
        raise GenerationError(
            "Generation stream ended without a completion",
            code="incomplete_stream",
            node_name=node.display_name,
        )

    def _cancel_quietly(self, response_id: str) -> None:
        try:
            self._client.cancel(response_id)
        except Exception as exc:
            logger.warning("Remote cancel failed", response_id=response_id, error=str(exc))
