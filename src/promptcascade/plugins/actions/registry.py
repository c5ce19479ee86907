"""ActionRegistry: dispatches post-actions to their handlers by id."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from promptcascade.contracts.actions import ActionExecutionResult
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.contracts.protocols import NodeStore


class ActionHandler(Protocol):
    """One post-action implementation."""

    action_id: str
    requires_preview: bool

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult: ...


class ActionRegistry:
    """ActionExecutor that looks up a handler per action id."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    @classmethod
    def with_builtins(cls, store: NodeStore) -> ActionRegistry:
        from promptcascade.plugins.actions.create_children_json import CreateChildrenJsonAction
        from promptcascade.plugins.actions.create_children_text import CreateChildrenTextAction

        registry = cls()
        registry.register(CreateChildrenJsonAction(store))
        registry.register(CreateChildrenTextAction(store))
        return registry

    def register(self, handler: ActionHandler) -> None:
        if handler.action_id in self._handlers:
            raise ValueError(f"Action already registered: {handler.action_id}")
        self._handlers[handler.action_id] = handler

    @property
    def action_ids(self) -> list[str]:
        return sorted(self._handlers)

    def requires_preview(self, action_id: str) -> bool:
        handler = self._handlers.get(action_id)
        return handler.requires_preview if handler is not None else False

    def execute(
        self,
        node: PromptNode,
        extracted_data: Any,
        action_id: str,
        config: Mapping[str, Any],
        caller: UserIdentity | None,
    ) -> ActionExecutionResult:
        handler = self._handlers.get(action_id)
        if handler is None:
            return ActionExecutionResult(success=False, error=f"Unknown action: {action_id}")
        return handler.execute(node, extracted_data, config, caller)
