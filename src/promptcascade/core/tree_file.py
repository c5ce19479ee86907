# src/promptcascade/core/tree_file.py
"""YAML prompt tree files.

A tree file holds a ``prompts`` list. Each entry describes one node and may
nest its own ``children`` and ``variables``:

    prompts:
      - name: Brief
        is_assistant: true
        admin_prompt: You are drafting a report.
        children:
          - name: Outline
            node_type: action
            post_action: create_children_json
            user_prompt: List the sections of a report about {{topic}}
            variables:
              topic: tidal energy
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from promptcascade.contracts.enums import NodeType
from promptcascade.contracts.nodes import PromptNode
from promptcascade.core.store.repository import PromptRepository


class PromptEntry(BaseModel):
    """One node of a tree file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = Field(default=None, description="Explicit node id; generated when omitted")
    name: str = ""
    admin_prompt: str = ""
    user_prompt: str = ""
    note: str = ""
    exclude_from_cascade: bool = False
    node_type: NodeType = NodeType.NORMAL
    post_action: str | None = None
    post_action_config: dict[str, Any] = Field(default_factory=dict)
    auto_run_children: bool = False
    is_assistant: bool = False
    variables: dict[str, str] = Field(default_factory=dict, description="Stored user variables")
    children: list[PromptEntry] = Field(default_factory=list)


class PromptTreeFile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    prompts: list[PromptEntry] = Field(default_factory=list)


def read_tree_file(path: Path) -> PromptTreeFile:
    """Parse and validate a tree file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file is not valid YAML
        ValidationError: If the content does not match the tree schema
    """
    if not path.exists():
        raise FileNotFoundError(f"Tree file not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return PromptTreeFile.model_validate(raw)


def insert_tree(repository: PromptRepository, tree: PromptTreeFile) -> list[PromptNode]:
    """Insert every entry of ``tree`` and return the created top-level nodes."""
    return [_insert_entry(repository, entry, parent_id=None) for entry in tree.prompts]


def _insert_entry(repository: PromptRepository, entry: PromptEntry, *, parent_id: str | None) -> PromptNode:
    node = repository.create_node(
        PromptNode(
            node_id=entry.id or "",
            parent_id=parent_id,
            position=repository.next_position(parent_id),
            name=entry.name,
            admin_prompt=entry.admin_prompt,
            user_prompt=entry.user_prompt,
            note=entry.note,
            exclude_from_cascade=entry.exclude_from_cascade,
            node_type=entry.node_type,
            post_action=entry.post_action,
            post_action_config=entry.post_action_config,
            auto_run_children=entry.auto_run_children,
            is_assistant=entry.is_assistant,
        )
    )
    for name, value in entry.variables.items():
        repository.upsert_variable(node.node_id, name, value, create=True)
    for child in entry.children:
        _insert_entry(repository, child, parent_id=node.node_id)
    return node
