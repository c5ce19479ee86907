"""Post-action stage: interpret a node's output and run its action.

Every failure in here is node-local. Parse errors, validation errors, a
rejected preview and executor errors are recorded on the originating node as
an ActionOutcome and the cascade moves on to the next sibling.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from promptcascade.contracts.actions import ActionValidation
from promptcascade.contracts.enums import ActionStatus, SpanType
from promptcascade.contracts.errors import (
    ActionCancelledByUser,
    ActionParseError,
    ActionValidationError,
    ErrorEvidence,
)
from promptcascade.contracts.events import ActionExecuted
from promptcascade.contracts.nodes import ActionOutcome, PromptNode, UserIdentity
from promptcascade.contracts.protocols import ActionExecutor, ActionPreviewPrompt, NodeStore
from promptcascade.core.events import EventBusProtocol
from promptcascade.engine.clock import Clock
from promptcascade.engine.spans import SpanFactory
from promptcascade.engine.tracing import TraceSession

logger = structlog.get_logger(__name__)

CREATE_CHILDREN_JSON = "create_children_json"
DEFAULT_JSON_PATH = "sections"
DEFAULT_ASSIGNMENTS_PATH = "variable_assignments"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
_RESERVED_VARIABLE_PREFIXES = ("q.", "cascade_")


def extract_json_from_response(text: str) -> Any:
    """Parse JSON from generated text, tolerating a Markdown code fence.

    Raises:
        ActionParseError: If no valid JSON can be read.
    """
    candidate = text.strip()
    match = _FENCE_PATTERN.search(candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ActionParseError(f"JSON parse error: {exc}", response_preview=text[:300]) from exc


def normalize_json_path(path: str | Sequence[str] | None, default: str = DEFAULT_JSON_PATH) -> str:
    """A json_path may be configured as a string or a list; lists use their first entry."""
    if path is None:
        return default
    if isinstance(path, str):
        return path
    return path[0] if path else ""


def resolve_json_path(data: Any, path: str) -> Any:
    """Follow a dotted path through dicts and list indices.

    An empty path or ``root`` means the whole document. Missing segments
    resolve to None.
    """
    if not path or path == "root":
        return data
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return None
    return current


def validate_action_response(data: Any, action_id: str, config: Mapping[str, Any]) -> ActionValidation:
    """Check extracted data against what ``action_id`` expects.

    Only ``create_children_json`` has a required shape: an array at the
    configured json_path.
    """
    path = normalize_json_path(config.get("json_path"))
    if action_id != CREATE_CHILDREN_JSON:
        return ActionValidation(valid=True, json_path=path)

    response_keys = list(data.keys()) if isinstance(data, dict) else []
    available_arrays = [key for key, value in data.items() if isinstance(value, list)] if isinstance(data, dict) else []
    value = resolve_json_path(data, path)

    if isinstance(value, list):
        return ActionValidation(
            valid=True,
            json_path=path,
            item_count=len(value),
            items=value,
            available_arrays=available_arrays,
            response_keys=response_keys,
            value_type="array",
        )

    if available_arrays:
        suggestion = f"Set json_path to '{available_arrays[0]}'"
    elif isinstance(data, list):
        suggestion = "Set json_path to 'root'"
    else:
        suggestion = "Ask the model to return an array of items"
    return ActionValidation(
        valid=False,
        json_path=path,
        error=f"No array found at path '{path or 'root'}'",
        available_arrays=available_arrays,
        suggestion=suggestion,
        response_keys=response_keys,
        value_type=type(value).__name__ if value is not None else "missing",
    )


@dataclass(frozen=True, slots=True)
class VariableAssignmentResult:
    updated: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.updated) + len(self.created)


def process_variable_assignments(
    data: Any,
    node_id: str,
    config: Mapping[str, Any],
    store: NodeStore,
) -> VariableAssignmentResult:
    """Write ``{name, value}`` items from the output into stored variables.

    Existing variables are updated; missing ones are created only when
    ``auto_create_variables`` is set. Reserved names are skipped.
    """
    path = normalize_json_path(config.get("json_path"), default=DEFAULT_ASSIGNMENTS_PATH)
    items = resolve_json_path(data, path)
    result = VariableAssignmentResult()
    if not isinstance(items, list):
        return result

    create = bool(config.get("auto_create_variables", False))
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
            result.skipped.append(repr(item)[:50])
            continue
        name = item["name"].strip()
        if name.startswith(_RESERVED_VARIABLE_PREFIXES):
            result.skipped.append(name)
            continue
        raw = item.get("value", "")
        value = raw if isinstance(raw, str) else json.dumps(raw)
        existed = name in store.get_variables(node_id)
        if store.upsert_variable(node_id, name, value, create=create):
            (result.updated if existed else result.created).append(name)
        else:
            result.skipped.append(name)
    return result


@dataclass(frozen=True, slots=True)
class ActionStageResult:
    """What the action stage did for one node."""

    outcome: ActionOutcome
    children: list[PromptNode] = field(default_factory=list)
    extracted: Any = None


class ActionStage:
    """Runs the post-action of a completed action node."""

    def __init__(
        self,
        store: NodeStore,
        executor: ActionExecutor,
        preview: ActionPreviewPrompt,
        *,
        trace: TraceSession,
        event_bus: EventBusProtocol,
        clock: Clock,
        span_factory: SpanFactory | None = None,
        skip_all_previews: bool = False,
    ) -> None:
        self._store = store
        self._executor = executor
        self._preview = preview
        self._trace = trace
        self._bus = event_bus
        self._clock = clock
        self._spans = span_factory or SpanFactory()
        self._skip_all_previews = skip_all_previews

    def run(
        self,
        node: PromptNode,
        response: str,
        *,
        caller: UserIdentity | None,
        trace_id: str | None,
        allow_preview: bool = True,
    ) -> ActionStageResult:
        """Interpret ``response`` and execute ``node.post_action``.

        Args:
            node: The completed action node
            response: Its generated text
            caller: Identity forwarded to the executor
            trace_id: Trace to attach the action span to
            allow_preview: False suppresses the preview prompt (child cascades)
        """
        action_id = node.post_action or ""
        config = node.post_action_config
        with self._spans.action_span(node.node_id, action_id):
            span_id = self._trace.create_span(
                trace_id, node.node_id, attempt_number=1, previous_span_id=None, span_type=SpanType.ACTION
            )
            result = self._run(node, response, action_id, config, caller, allow_preview)
            outcome = result.outcome
            if outcome.status == ActionStatus.FAILED:
                self._trace.fail_span(span_id, self._evidence(outcome))
            else:
                self._trace.complete_span(span_id, {"output": outcome.message or outcome.status.value})

        self._record(node, outcome)
        self._bus.emit(
            ActionExecuted(
                node_id=node.node_id,
                action_id=action_id,
                status=outcome.status,
                created_count=outcome.created_count,
                message=outcome.message or outcome.error,
            )
        )
        return result

    def _run(
        self,
        node: PromptNode,
        response: str,
        action_id: str,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
        allow_preview: bool,
    ) -> ActionStageResult:
        try:
            data = extract_json_from_response(response)
        except ActionParseError as exc:
            logger.warning("Action output is not valid JSON", node_id=node.node_id, action_id=action_id, error=str(exc))
            return ActionStageResult(
                outcome=self._outcome(
                    ActionStatus.FAILED,
                    error=str(exc),
                    details={"response_preview": exc.response_preview},
                )
            )

        self._save_extracted(node.node_id, data)

        assignments = config.get("variable_assignments")
        if isinstance(assignments, Mapping) and assignments.get("enabled"):
            self._assign_variables(node.node_id, data, assignments)

        validation = validate_action_response(data, action_id, config)
        try:
            if not validation.valid:
                raise ActionValidationError(validation.error or "Invalid action response", validation)
            if action_id == CREATE_CHILDREN_JSON and validation.is_empty:
                message = f"Action skipped: array at '{validation.json_path or 'root'}' is empty"
                return ActionStageResult(
                    outcome=self._outcome(ActionStatus.SKIPPED, message=message, details={"item_count": 0}),
                    extracted=data,
                )
            if allow_preview and self._needs_preview(action_id, config):
                preview_data = validation.items if validation.items else data
                if not self._preview.confirm_action(preview_data, config, node.display_name):
                    raise ActionCancelledByUser(f"Action {action_id} cancelled at preview")
        except ActionValidationError as exc:
            logger.warning("Action output failed validation", node_id=node.node_id, error=str(exc))
            return ActionStageResult(
                outcome=self._outcome(ActionStatus.FAILED, error=str(exc), details=exc.details()),
                extracted=data,
            )
        except ActionCancelledByUser as exc:
            logger.info("Action cancelled by user", node_id=node.node_id, action_id=action_id)
            return ActionStageResult(
                outcome=self._outcome(ActionStatus.CANCELLED, message=str(exc), details={"reason": "user_cancelled"}),
                extracted=data,
            )

        try:
            executed = self._executor.execute(node, data, action_id, config, caller)
        except Exception as exc:
            logger.exception("Action executor raised", node_id=node.node_id, action_id=action_id)
            return ActionStageResult(
                outcome=self._outcome(ActionStatus.FAILED, error=f"{type(exc).__name__}: {exc}"),
                extracted=data,
            )

        status = ActionStatus.SUCCESS if executed.success else ActionStatus.FAILED
        return ActionStageResult(
            outcome=self._outcome(
                status,
                created_count=executed.created_count,
                target_parent_id=executed.target_parent_id,
                message=executed.message,
                error=executed.error,
            ),
            children=list(executed.children),
            extracted=data,
        )

    def _needs_preview(self, action_id: str, config: Mapping[str, Any]) -> bool:
        if self._skip_all_previews or config.get("skip_preview"):
            return False
        return self._executor.requires_preview(action_id)

    def _outcome(self, status: ActionStatus, **kwargs: Any) -> ActionOutcome:
        return ActionOutcome(status=status, executed_at=self._clock.now(), **kwargs)

    def _assign_variables(self, node_id: str, data: Any, config: Mapping[str, Any]) -> None:
        try:
            assigned = process_variable_assignments(data, node_id, config, self._store)
        except Exception as exc:
            logger.warning("Failed to apply variable assignments", node_id=node_id, error=str(exc))
            return
        logger.info(
            "Variable assignments applied",
            node_id=node_id,
            updated=assigned.updated,
            created=assigned.created,
            skipped=assigned.skipped,
        )

    def _save_extracted(self, node_id: str, data: Any) -> None:
        try:
            self._store.save_extracted_json(node_id, data)
        except Exception as exc:
            logger.warning("Failed to store extracted JSON", node_id=node_id, error=str(exc))

    def _record(self, node: PromptNode, outcome: ActionOutcome) -> None:
        try:
            self._store.save_action_result(node.node_id, outcome.to_dict())
        except Exception as exc:
            logger.warning("Failed to store action result", node_id=node.node_id, error=str(exc))

    @staticmethod
    def _evidence(outcome: ActionOutcome) -> ErrorEvidence:
        return {
            "error_type": "ACTION_FAILED",
            "error_code": outcome.status.value,
            "error_message": outcome.error or "",
            "retry_recommended": False,
        }
