"""Action executor result and validation types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from promptcascade.contracts.nodes import PromptNode


@dataclass(frozen=True, slots=True)
class ActionValidation:
    """Outcome of checking extracted data against an action's expected shape."""

    valid: bool
    json_path: str
    item_count: int = 0
    items: list[Any] = field(default_factory=list)
    error: str | None = None
    available_arrays: list[str] = field(default_factory=list)
    suggestion: str | None = None
    response_keys: list[str] = field(default_factory=list)
    value_type: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.valid and self.item_count == 0

    def diagnostics(self) -> dict[str, Any]:
        """Detail recorded on the node when validation fails."""
        return {
            "json_path": self.json_path,
            "available_arrays": list(self.available_arrays),
            "suggestion": self.suggestion,
            "response_keys": list(self.response_keys),
            "value_type": self.value_type,
        }


@dataclass(frozen=True, slots=True)
class ActionExecutionResult:
    """What an action executor reports back to the engine."""

    success: bool
    created_count: int = 0
    target_parent_id: str | None = None
    children: list[PromptNode] = field(default_factory=list)
    message: str | None = None
    error: str | None = None
