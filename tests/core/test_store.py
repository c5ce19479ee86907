# tests/core/test_store.py
"""Tests for the SQL prompt store, tree files and trace recorder."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from promptcascade.contracts.enums import ExecutionType, NodeType, SpanType, TraceStatus
from promptcascade.contracts.nodes import PromptNode
from promptcascade.core.store import PromptDB, PromptRepository, SQLTraceRecorder
from promptcascade.core.tree_file import PromptTreeFile, insert_tree, read_tree_file
from tests.fakes import add_node


class TestPromptRepository:
    def test_create_assigns_id(self, repository: PromptRepository) -> None:
        created = repository.create_node(PromptNode("", name="Anon"))

        assert len(created.node_id) == 32
        stored = repository.get_node(created.node_id)
        assert stored is not None and stored.name == "Anon"

    def test_round_trip_of_json_columns(self, repository: PromptRepository) -> None:
        add_node(
            repository,
            "n",
            node_type=NodeType.ACTION,
            post_action="create_children_json",
            post_action_config={"json_path": "sections"},
            system_variables={"tone": "dry"},
        )

        node = repository.get_node("n")

        assert node is not None
        assert node.is_action_node is True
        assert node.post_action_config == {"json_path": "sections"}
        assert node.system_variables == {"tone": "dry"}

    def test_children_by_position(self, repository: PromptRepository) -> None:
        add_node(repository, "root")
        add_node(repository, "second", "root", position=1)
        add_node(repository, "first", "root", position=0)

        assert [node.node_id for node in repository.get_children("root")] == ["first", "second"]

    def test_deleted_nodes_hidden(self, repository: PromptRepository) -> None:
        add_node(repository, "root")
        add_node(repository, "gone", "root")
        repository.mark_deleted("gone")

        assert repository.get_node("gone") is None
        assert repository.get_children("root") == []

    def test_next_position(self, repository: PromptRepository) -> None:
        assert repository.next_position(None) == 0
        add_node(repository, "root")
        assert repository.next_position(None) == 1
        assert repository.next_position("root") == 0
        add_node(repository, "c", "root", position=4)
        assert repository.next_position("root") == 5

    def test_save_results(self, repository: PromptRepository) -> None:
        add_node(repository, "n")

        repository.save_result("n", "text")
        repository.save_extracted_json("n", [{"name": "x"}])
        repository.save_action_result("n", {"status": "success"})

        node = repository.get_node("n")
        assert node is not None
        assert node.output_response == "text"
        assert node.extracted_json == [{"name": "x"}]
        assert node.last_action_result == {"status": "success"}

    def test_save_unknown_node(self, repository: PromptRepository) -> None:
        with pytest.raises(KeyError):
            repository.save_result("missing", "text")

    def test_variables(self, repository: PromptRepository) -> None:
        add_node(repository, "n")
        repository.set_variable_default("n", "tone", "neutral")

        assert repository.get_variables("n") == {"tone": "neutral"}
        assert repository.upsert_variable("n", "tone", "dry", create=False) is True
        assert repository.upsert_variable("n", "audience", "kids", create=False) is False
        assert repository.upsert_variable("n", "audience", "kids", create=True) is True
        assert repository.get_variables("n") == {"audience": "kids", "tone": "dry"}

    def test_get_roots(self, repository: PromptRepository) -> None:
        add_node(repository, "r1")
        add_node(repository, "r2")
        add_node(repository, "c", "r1")

        assert [node.node_id for node in repository.get_roots()] == ["r1", "r2"]

    def test_file_database_persists(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'prompts.db'}"
        with PromptDB(url) as db:
            add_node(PromptRepository(db), "n", name="Kept")

        with PromptDB(url) as db:
            node = PromptRepository(db).get_node("n")

        assert node is not None and node.name == "Kept"


TREE_YAML = """
prompts:
  - id: brief
    name: Brief
    is_assistant: true
    admin_prompt: You are drafting a report.
    children:
      - name: Outline
        node_type: action
        post_action: create_children_json
        post_action_config:
          json_path: sections
        user_prompt: List sections about {{topic}}
        variables:
          topic: tidal energy
      - name: Summary
        user_prompt: Summarise {{cascade_previous_response}}
"""


class TestTreeFile:
    def test_read_and_insert(self, tmp_path: Path, repository: PromptRepository) -> None:
        path = tmp_path / "tree.yaml"
        path.write_text(TREE_YAML)

        roots = insert_tree(repository, read_tree_file(path))

        assert [root.node_id for root in roots] == ["brief"]
        outline, summary = repository.get_children("brief")
        assert (outline.name, outline.position, summary.name, summary.position) == ("Outline", 0, "Summary", 1)
        assert outline.is_action_node is True
        assert outline.post_action_config == {"json_path": "sections"}
        assert repository.get_variables(outline.node_id) == {"topic": "tidal energy"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_tree_file(tmp_path / "none.yaml")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PromptTreeFile.model_validate({"prompts": [{"name": "x", "colour": "red"}]})

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.yaml"
        path.write_text("prompts: [unclosed")

        with pytest.raises(yaml.YAMLError):
            read_tree_file(path)

    def test_second_tree_goes_after_first(self, repository: PromptRepository) -> None:
        tree = PromptTreeFile.model_validate({"prompts": [{"name": "One"}]})

        first = insert_tree(repository, tree)[0]
        second = insert_tree(repository, tree)[0]

        assert (first.position, second.position) == (0, 1)
        assert first.node_id != second.node_id


class TestSQLTraceRecorder:
    def test_trace_lifecycle(self, repository: PromptRepository, recorder: SQLTraceRecorder) -> None:
        add_node(repository, "n")
        trace_id = recorder.start_trace("n", ExecutionType.CASCADE_CHILD)
        span_id = recorder.create_span(trace_id, "n", 1, None, SpanType.GENERATION)

        recorder.complete_span(span_id, {"latency_ms": 12.5, "output": "done"})
        recorder.complete_trace(trace_id, TraceStatus.COMPLETED)

        trace = recorder.get_trace(trace_id)
        assert trace is not None
        assert (trace["status"], trace["execution_type"]) == ("completed", "cascade_child")
        assert trace["completed_at"] is not None
        (span,) = recorder.get_spans(trace_id)
        assert (span["status"], span["latency_ms"], span["output"]) == ("success", 12.5, "done")

    def test_unknown_trace(self, recorder: SQLTraceRecorder) -> None:
        assert recorder.get_trace("missing") is None
        assert recorder.get_spans("missing") == []
