"""create_children_json: one new prompt per item of a JSON array."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from promptcascade.contracts.actions import ActionExecutionResult
from promptcascade.contracts.enums import NodeType, Placement
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.contracts.protocols import NodeStore
from promptcascade.engine.actions import CREATE_CHILDREN_JSON, normalize_json_path, resolve_json_path
from promptcascade.plugins.actions.helpers import PlacementError, detect_content, detect_name, resolve_target_parent

logger = structlog.get_logger(__name__)

_PLACEMENT_LABELS = {
    Placement.CHILDREN: "children",
    Placement.SIBLINGS: "siblings",
    Placement.TOP_LEVEL: "top-level prompts",
    Placement.SPECIFIC_PROMPT: "children of the target prompt",
}


class CreateChildrenJsonAction:
    """Creates prompts from an array found at ``json_path``.

    Config keys:
        json_path: Where the array lives (default "sections"; "root" for the document)
        placement: children | siblings | top_level | specific_prompt
        target_prompt_id: Parent for specific_prompt
        name_field: Item key used as the prompt name (default "prompt_name")
        content_field: Item key used as prompt text (default "admin_prompt")
        content_destination: "system" (admin text, default) or "user"
        child_node_type: "normal" (default) or "action"
        child_post_action, child_post_action_config, child_auto_run_children:
            copied onto action children
    """

    action_id = CREATE_CHILDREN_JSON
    requires_preview = True

    def __init__(self, store: NodeStore) -> None:
        self._store = store

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult:
        items = resolve_json_path(extracted_data, normalize_json_path(config.get("json_path")))
        if not isinstance(items, list):
            return ActionExecutionResult(success=False, error="No JSON array found at the configured path")
        try:
            placement, target_parent_id = resolve_target_parent(node, config)
        except PlacementError as exc:
            return ActionExecutionResult(success=False, error=str(exc))
        if not items:
            return ActionExecutionResult(
                success=True,
                created_count=0,
                target_parent_id=target_parent_id,
                message="No items found in JSON array",
            )

        child_type = NodeType(config.get("child_node_type", NodeType.NORMAL.value))
        to_user = config.get("content_destination", "system") == "user"
        name_field = config.get("name_field", "prompt_name")
        content_field = config.get("content_field", "admin_prompt")
        position = self._store.next_position(target_parent_id)

        created: list[PromptNode] = []
        for index, item in enumerate(items):
            content = detect_content(item, content_field)
            child = PromptNode(
                node_id="",
                parent_id=target_parent_id,
                position=position + index,
                name=detect_name(item, index, name_field),
                admin_prompt="" if to_user else content,
                user_prompt=content if to_user else "",
                node_type=child_type,
                post_action=config.get("child_post_action") if child_type == NodeType.ACTION else None,
                post_action_config=dict(config.get("child_post_action_config") or {}) if child_type == NodeType.ACTION else {},
                auto_run_children=bool(config.get("child_auto_run_children", False)) if child_type == NodeType.ACTION else False,
            )
            created.append(self._store.create_node(child))

        kind = " action" if child_type == NodeType.ACTION else ""
        message = f"Created {len(created)}{kind} node(s) as {_PLACEMENT_LABELS[placement]} from JSON array"
        logger.info(
            "Created prompts from JSON",
            node_id=node.node_id,
            target_parent_id=target_parent_id,
            created=len(created),
        )
        return ActionExecutionResult(
            success=True,
            created_count=len(created),
            target_parent_id=target_parent_id,
            children=created,
            message=message,
        )
