# tests/engine/test_actions.py
"""Tests for the post-action stage and its JSON helpers."""

import json
from collections.abc import Mapping
from typing import Any

import pytest

from promptcascade.contracts.actions import ActionExecutionResult
from promptcascade.contracts.enums import ActionStatus, ExecutionType, SpanType
from promptcascade.contracts.errors import ActionParseError
from promptcascade.contracts.events import ActionExecuted
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.core.events import NullEventBus
from promptcascade.core.store import PromptDB, PromptRepository
from promptcascade.engine.actions import (
    ActionStage,
    extract_json_from_response,
    normalize_json_path,
    process_variable_assignments,
    resolve_json_path,
    validate_action_response,
)
from promptcascade.engine.clock import MockClock
from promptcascade.engine.tracing import TraceSession
from promptcascade.plugins.actions import ActionRegistry
from tests.fakes import EventRecorder, InMemoryTraceRecorder, RecordingPreviewPrompt, add_action_node


class ExplodingExecutor:
    def requires_preview(self, action_id: str) -> bool:
        return False

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        action_id: str,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult:
        raise RuntimeError("executor exploded")


def make_stage(
    repository: PromptRepository,
    *,
    preview: RecordingPreviewPrompt | None = None,
    executor: Any = None,
    events: EventRecorder | None = None,
    recorder: InMemoryTraceRecorder | None = None,
) -> ActionStage:
    return ActionStage(
        repository,
        executor or ActionRegistry.with_builtins(repository),
        preview or RecordingPreviewPrompt(),
        trace=TraceSession(recorder),
        event_bus=events.bus if events else NullEventBus(),
        clock=MockClock(),
    )


class TestExtractJson:
    def test_plain_json(self) -> None:
        assert extract_json_from_response('{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize(
        "text",
        [
            '```json\n{"a": 1}\n```',
            '```\n{"a": 1}\n```',
            'Here you go:\n```JSON\n{"a": 1}\n```\nAnything else?',
        ],
    )
    def test_fenced_json(self, text: str) -> None:
        assert extract_json_from_response(text) == {"a": 1}

    def test_invalid_json_raises_with_preview(self) -> None:
        with pytest.raises(ActionParseError) as exc_info:
            extract_json_from_response("not json " * 100)

        assert len(exc_info.value.response_preview) == 300
        assert str(exc_info.value).startswith("JSON parse error")


class TestJsonPaths:
    def test_normalize(self) -> None:
        assert normalize_json_path(None) == "sections"
        assert normalize_json_path("items") == "items"
        assert normalize_json_path(["items", "other"]) == "items"
        assert normalize_json_path([]) == ""

    def test_resolve(self) -> None:
        data = {"data": {"items": [{"x": 1}, {"x": 2}]}}

        assert resolve_json_path(data, "data.items") == [{"x": 1}, {"x": 2}]
        assert resolve_json_path(data, "data.items.1") == {"x": 2}
        assert resolve_json_path(data, "root") is data
        assert resolve_json_path(data, "") is data
        assert resolve_json_path(data, "data.missing") is None
        assert resolve_json_path(data, "data.items.9") is None


class TestValidation:
    def test_array_at_path_is_valid(self) -> None:
        validation = validate_action_response({"sections": [1, 2]}, "create_children_json", {})

        assert validation.valid is True
        assert validation.item_count == 2
        assert validation.is_empty is False

    def test_suggests_available_array(self) -> None:
        validation = validate_action_response({"items": [1], "title": "x"}, "create_children_json", {})

        assert validation.valid is False
        assert validation.error == "No array found at path 'sections'"
        assert validation.available_arrays == ["items"]
        assert validation.suggestion == "Set json_path to 'items'"
        assert validation.diagnostics()["response_keys"] == ["items", "title"]
        assert validation.value_type == "missing"

    def test_suggests_root_for_top_level_array(self) -> None:
        validation = validate_action_response([1, 2], "create_children_json", {})

        assert validation.suggestion == "Set json_path to 'root'"

    def test_other_actions_accept_any_shape(self) -> None:
        assert validate_action_response("text", "create_children_text", {}).valid is True


class TestVariableAssignments:
    def test_creates_updates_and_skips(self, repository: PromptRepository) -> None:
        add_action_node(repository, "n", None, {})
        repository.upsert_variable("n", "audience", "everyone", create=True)
        data = {
            "variable_assignments": [
                {"name": "audience", "value": "engineers"},
                {"name": "count", "value": 3},
                {"name": "q.today", "value": "never"},
                {"value": "nameless"},
            ]
        }

        result = process_variable_assignments(data, "n", {"auto_create_variables": True}, repository)

        assert result.updated == ["audience"]
        assert result.created == ["count"]
        assert result.skipped[0] == "q.today"
        assert len(result.skipped) == 2
        assert repository.get_variables("n") == {"audience": "engineers", "count": "3"}

    def test_missing_variables_not_created_by_default(self, repository: PromptRepository) -> None:
        add_action_node(repository, "n", None, {})

        result = process_variable_assignments(
            {"variable_assignments": [{"name": "fresh", "value": "x"}]}, "n", {}, repository
        )

        assert result.processed == 0
        assert result.skipped == ["fresh"]
        assert repository.get_variables("n") == {}


class TestActionStage:
    def test_success_creates_children(self, repository: PromptRepository, events: EventRecorder) -> None:
        node = add_action_node(repository, "plan", None, {"json_path": "items"})
        response = json.dumps({"items": ["First", "Second"]})

        result = make_stage(repository, events=events).run(node, response, caller=None, trace_id=None)

        assert result.outcome.status == ActionStatus.SUCCESS
        assert [child.name for child in result.children] == ["First", "Second"]
        [event] = events.of_type(ActionExecuted)
        assert event.action_id == "create_children_json"
        assert event.created_count == 2

    def test_empty_array_is_skipped(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {})

        result = make_stage(repository).run(node, '{"sections": []}', caller=None, trace_id=None)

        assert result.outcome.status == ActionStatus.SKIPPED
        assert result.outcome.message == "Action skipped: array at 'sections' is empty"
        assert repository.get_children("plan") == []

    def test_validation_failure_records_diagnostics(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {})

        make_stage(repository).run(node, '{"parts": [1]}', caller=None, trace_id=None)

        stored = repository.get_node("plan")
        assert stored is not None and stored.last_action_result is not None
        assert stored.last_action_result["status"] == "failed"
        assert stored.last_action_result["suggestion"] == "Set json_path to 'parts'"
        assert stored.extracted_json == {"parts": [1]}

    def test_preview_suppressed_when_not_allowed(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {})
        preview = RecordingPreviewPrompt(False)

        result = make_stage(repository, preview=preview).run(
            node, '{"sections": ["x"]}', caller=None, trace_id=None, allow_preview=False
        )

        assert preview.calls == []
        assert result.outcome.status == ActionStatus.SUCCESS

    def test_skip_preview_config(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {"skip_preview": True})
        preview = RecordingPreviewPrompt(False)

        result = make_stage(repository, preview=preview).run(node, '{"sections": ["x"]}', caller=None, trace_id=None)

        assert preview.calls == []
        assert result.outcome.status == ActionStatus.SUCCESS

    def test_executor_exception_is_node_local(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {})
        recorder = InMemoryTraceRecorder()
        trace_id = recorder.start_trace("plan", ExecutionType.CASCADE_TOP)

        result = make_stage(repository, executor=ExplodingExecutor(), recorder=recorder).run(
            node, '{"sections": ["x"]}', caller=None, trace_id=trace_id
        )

        assert result.outcome.status == ActionStatus.FAILED
        assert result.outcome.error == "RuntimeError: executor exploded"
        [span] = recorder.spans
        assert span.span_type == SpanType.ACTION
        assert span.status == "failed"
        assert span.outcome["error_type"] == "ACTION_FAILED"

    def test_unknown_action_fails(self, repository: PromptRepository) -> None:
        node = add_action_node(repository, "plan", None, {}, action_id="launch_rockets")

        result = make_stage(repository).run(node, "{}", caller=None, trace_id=None)

        assert result.outcome.status == ActionStatus.FAILED
        assert result.outcome.error == "Unknown action: launch_rockets"

    def test_variable_assignments_applied(self, repository: PromptRepository) -> None:
        config = {"variable_assignments": {"enabled": True, "auto_create_variables": True}}
        node = add_action_node(repository, "plan", None, config)
        response = json.dumps({"sections": ["x"], "variable_assignments": [{"name": "audience", "value": "ops"}]})

        make_stage(repository).run(node, response, caller=None, trace_id=None)

        assert repository.get_variables("plan") == {"audience": "ops"}

    def test_variable_assignment_failure_does_not_stop_action(self, db: PromptDB) -> None:
        class BrokenVariables(PromptRepository):
            def upsert_variable(self, node_id: str, name: str, value: str, *, create: bool) -> bool:
                raise OSError("variables table locked")

        broken = BrokenVariables(db)
        config = {"variable_assignments": {"enabled": True, "auto_create_variables": True}}
        node = add_action_node(broken, "plan", None, config)
        response = json.dumps({"sections": ["x"], "variable_assignments": [{"name": "audience", "value": "ops"}]})

        result = make_stage(broken).run(node, response, caller=None, trace_id=None)

        assert result.outcome.status == ActionStatus.SUCCESS
        assert broken.get_variables("plan") == {}
