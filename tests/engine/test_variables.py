# tests/engine/test_variables.py
"""Tests for VariableContext building."""

import json
from datetime import UTC, datetime

from hypothesis import given
from hypothesis import strategies as st

from promptcascade.contracts.nodes import HistoryEntry, PromptNode, UserIdentity
from promptcascade.engine.variables import (
    ExecutedNode,
    VariableContextBuilder,
    build_cascade_variables,
    build_reference_variables,
    build_system_variables,
    node_scoped_variables,
)

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


class TestSystemVariables:
    def test_dates_and_names(self) -> None:
        parent = PromptNode("p", name="Parent", output_response="parent text")
        node = PromptNode("n", parent_id="p", name="Child")

        variables = build_system_variables(node, parent=parent, top_level=PromptNode("t", name="Top"), user=None, now=NOW)

        assert variables["q.today"] == "2026-03-04"
        assert variables["q.year"] == "2026"
        assert variables["q.month"] == "March"
        assert variables["q.user.name"] == "Unknown"
        assert variables["q.user.email"] == ""
        assert variables["q.toplevel.prompt.name"] == "Top"
        assert variables["q.parent.prompt.name"] == "Parent"
        assert variables["q.parent.output_response"] == "parent text"
        assert variables["q.prompt.name"] == "Child"

    def test_top_level_falls_back_to_parent_then_self(self) -> None:
        node = PromptNode("n", name="")

        alone = build_system_variables(node, parent=None, top_level=None, user=None, now=NOW)
        with_parent = build_system_variables(node, parent=PromptNode("p", name="P"), top_level=None, user=None, now=NOW)

        assert alone["q.toplevel.prompt.name"] == "Untitled"
        assert alone["q.parent.prompt.id"] == ""
        assert with_parent["q.toplevel.prompt.name"] == "P"

    def test_user_display_name_wins(self) -> None:
        user = UserIdentity(email="ada@example.com", display_name="Ada Lovelace")

        variables = build_system_variables(PromptNode("n"), parent=None, top_level=None, user=user, now=NOW)

        assert variables["q.user.name"] == "Ada Lovelace"


class TestCascadeVariables:
    def test_empty_history(self) -> None:
        variables = build_cascade_variables([], level=1)

        assert variables["cascade_previous_response"] == ""
        assert variables["cascade_all_responses"] == "[]"
        assert variables["cascade_prompt_count"] == "0"

    def test_all_responses_is_json(self) -> None:
        history = [HistoryEntry(1, "a", "A", "alpha"), HistoryEntry(2, "b", "B", "beta")]

        variables = build_cascade_variables(history, level=2)

        assert json.loads(variables["cascade_all_responses"]) == [
            {"level": 1, "name": "A", "response": "alpha"},
            {"level": 2, "name": "B", "response": "beta"},
        ]
        assert variables["cascade_previous_name"] == "B"
        assert variables["cascade_level_2_response_0"] == "beta"

    @given(levels=st.lists(st.integers(min_value=0, max_value=5), max_size=30))
    def test_one_indexed_key_per_history_entry(self, levels: list[int]) -> None:
        history = [HistoryEntry(level, f"n{i}", f"N{i}", f"r{i}") for i, level in enumerate(levels)]

        variables = build_cascade_variables(history, level=0)

        indexed = [key for key in variables if key.startswith("cascade_level_")]
        assert len(indexed) == len(history)
        for level in set(levels):
            count = levels.count(level)
            assert f"cascade_level_{level}_response_{count - 1}" in variables
            assert f"cascade_level_{level}_response_{count}" not in variables


class TestReferenceVariables:
    def test_fields_and_user_variables(self) -> None:
        done = ExecutedNode(
            node=PromptNode("a", name="A", admin_prompt="sys", user_prompt="usr"),
            response="alpha",
            variables={"topic": "tides", "q.today": "leak", "cascade_level": "leak"},
        )

        variables = build_reference_variables({"a": done})

        assert variables == {
            "q.ref[a].output_response": "alpha",
            "q.ref[a].prompt_name": "A",
            "q.ref[a].admin_prompt": "sys",
            "q.ref[a].user_prompt": "usr",
            "q.ref[a].topic": "tides",
        }


class TestVariableContextBuilder:
    def test_node_scoped_values_override_everything(self) -> None:
        node = PromptNode("n", admin_prompt="Be brief", system_variables={"q.today": "pinned", "blank": ""})

        variables = VariableContextBuilder().build(
            [HistoryEntry(0, "r", "R", "root text")],
            node,
            level=1,
            now=NOW,
            stored_variables={"cascade_previous_response": "override"},
        )

        assert variables["q.today"] == "pinned"
        assert "blank" not in variables
        assert variables["cascade_previous_response"] == "override"
        assert variables["cascade_admin_prompt"] == "Be brief"

    def test_inputs_are_not_mutated(self) -> None:
        history = [HistoryEntry(0, "r", "R", "root text")]
        stored = {"x": "1"}

        VariableContextBuilder().build(history, PromptNode("n"), level=1, now=NOW, stored_variables=stored)

        assert history == [HistoryEntry(0, "r", "R", "root text")]
        assert stored == {"x": "1"}

    def test_node_scoped_helper(self) -> None:
        node = PromptNode("n", system_variables={"a": "1", "b": ""})

        assert node_scoped_variables(node, {"b": "2"}) == {"a": "1", "b": "2"}
