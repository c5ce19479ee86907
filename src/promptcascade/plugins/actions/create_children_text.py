"""create_children_text: a fixed number of prompts seeded with the response text."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from promptcascade.contracts.actions import ActionExecutionResult
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.contracts.protocols import NodeStore
from promptcascade.plugins.actions.helpers import PlacementError, resolve_target_parent

MAX_CHILDREN = 50


class CreateChildrenTextAction:
    """Creates ``children_count`` prompts named ``<name_prefix> <n>``.

    The node's generated text becomes each child's admin text.
    """

    action_id = "create_children_text"
    requires_preview = False

    def __init__(self, store: NodeStore) -> None:
        self._store = store

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult:
        count = int(config.get("children_count", 3))
        if not 1 <= count <= MAX_CHILDREN:
            return ActionExecutionResult(success=False, error=f"children_count must be between 1 and {MAX_CHILDREN}")
        try:
            _, target_parent_id = resolve_target_parent(node, config)
        except PlacementError as exc:
            return ActionExecutionResult(success=False, error=str(exc))

        prefix = str(config.get("name_prefix") or "Child")
        content = node.output_response or ""
        position = self._store.next_position(target_parent_id)
        created = [
            self._store.create_node(
                PromptNode(
                    node_id="",
                    parent_id=target_parent_id,
                    position=position + index,
                    name=f"{prefix} {index + 1}",
                    admin_prompt=content,
                )
            )
            for index in range(count)
        ]
        return ActionExecutionResult(
            success=True,
            created_count=len(created),
            target_parent_id=target_parent_id,
            children=created,
            message=f"Created {len(created)} node(s) from text",
        )
