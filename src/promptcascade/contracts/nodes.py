"""Prompt tree data types shared between the engine and its collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from promptcascade.contracts.enums import ActionStatus, NodeType, SkipReason


@dataclass(frozen=True, slots=True)
class PromptNode:
    """A single prompt in the tree.

    Children are discovered by parent_id, never embedded, so a node never
    holds references to other nodes.

    Attributes:
        node_id: Unique identifier
        parent_id: Parent identifier, None for a top-level node
        position: Sort position among siblings
        name: Display name
        admin_prompt: Admin-facing instruction text (system prompt)
        user_prompt: User-facing message text
        note: Free-form note, never sent
        exclude_from_cascade: Skip this node during cascade traversal
        node_type: NORMAL or ACTION
        post_action: Identifier of the side-effecting action, if any
        post_action_config: Action-specific options
        auto_run_children: Execute action-created children automatically
        is_assistant: At level 0, the node supplies context only
        output_response: Last textual result
        extracted_json: Last extracted structured result
        last_action_result: Last action outcome as a JSON-safe dict
        system_variables: Stored variable values for this node
    """

    node_id: str
    parent_id: str | None = None
    position: int = 0
    name: str = ""
    admin_prompt: str = ""
    user_prompt: str = ""
    note: str = ""
    exclude_from_cascade: bool = False
    node_type: NodeType = NodeType.NORMAL
    post_action: str | None = None
    post_action_config: Mapping[str, Any] = field(default_factory=dict)
    auto_run_children: bool = False
    is_assistant: bool = False
    output_response: str | None = None
    extracted_json: Any = None
    last_action_result: Mapping[str, Any] | None = None
    system_variables: Mapping[str, str] = field(default_factory=dict)
    is_deleted: bool = False

    @property
    def display_name(self) -> str:
        return self.name or "Untitled"

    @property
    def is_action_node(self) -> bool:
        """Node type ACTION with a configured post-action."""
        return self.node_type == NodeType.ACTION and bool(self.post_action)

    @property
    def has_content(self) -> bool:
        return bool(self.user_prompt.strip() or self.admin_prompt.strip())

    def with_result(self, response: str) -> PromptNode:
        return replace(self, output_response=response)


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """The caller on whose behalf a cascade runs."""

    user_id: str | None = None
    email: str | None = None
    display_name: str | None = None

    @property
    def resolved_name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One terminal node outcome within a cascade run, in execution order."""

    level: int
    node_id: str
    node_name: str
    response: str
    skipped: bool = False

    @classmethod
    def skipped_entry(cls, level: int, node: PromptNode, reason: str) -> HistoryEntry:
        return cls(
            level=level,
            node_id=node.node_id,
            node_name=node.display_name,
            response=f"[SKIPPED: {reason}]",
            skipped=True,
        )


@dataclass(frozen=True, slots=True)
class SkippedNode:
    """A node that was not executed, with the reason."""

    node_id: str
    node_name: str
    level: int
    reason: SkipReason


@dataclass(frozen=True, slots=True)
class FailedNode:
    """A node that reached a recorded failure."""

    node_id: str
    node_name: str
    level: int
    error: str


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Result of a post-action, recorded on the originating node."""

    status: ActionStatus
    executed_at: datetime
    created_count: int = 0
    target_parent_id: str | None = None
    message: str | None = None
    error: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status.value,
            "created_count": self.created_count,
            "target_parent_id": self.target_parent_id,
            "message": self.message,
            "error": self.error,
            "executed_at": self.executed_at.isoformat(),
        }
        result.update(self.details)
        return result
