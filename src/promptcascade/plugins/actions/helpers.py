"""Shared helpers for actions that create nodes."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from promptcascade.contracts.enums import Placement
from promptcascade.contracts.nodes import PromptNode

NAME_CANDIDATES = (
    "prompt_name",
    "name",
    "title",
    "heading",
    "label",
    "section_name",
    "section_title",
    "topic",
    "subject",
    "key",
    "id",
)
CONTENT_CANDIDATES = (
    "admin_prompt",
    "input_admin_prompt",
    "system_prompt",
    "content",
    "text",
    "body",
    "description",
)
MAX_NAME_LENGTH = 100
_SHORT_STRING_LENGTH = 150


class PlacementError(ValueError):
    """The configured placement cannot be resolved for this node."""


def resolve_target_parent(node: PromptNode, config: Mapping[str, Any]) -> tuple[Placement, str | None]:
    """Parent id for created nodes. None means top level.

    Raises:
        PlacementError: Unknown placement, or specific_prompt without a target.
    """
    raw = config.get("placement", Placement.CHILDREN.value)
    try:
        placement = Placement(raw)
    except ValueError as exc:
        raise PlacementError(f"Unknown placement: {raw!r}") from exc

    match placement:
        case Placement.CHILDREN:
            return placement, node.node_id
        case Placement.SIBLINGS:
            return placement, node.parent_id
        case Placement.TOP_LEVEL:
            return placement, None
        case Placement.SPECIFIC_PROMPT:
            target = config.get("target_prompt_id")
            if not target:
                raise PlacementError("placement 'specific_prompt' requires target_prompt_id")
            return placement, str(target)


def detect_name(item: Any, index: int, name_field: str | None = None) -> str:
    """Pick a display name for the ``index``-th item (0-based)."""
    name: str | None = None
    if isinstance(item, Mapping):
        if name_field and _is_text(item.get(name_field)):
            name = str(item[name_field])
        else:
            for candidate in NAME_CANDIDATES:
                if _is_text(item.get(candidate)):
                    name = str(item[candidate])
                    break
            else:
                name = next(
                    (value for value in item.values() if isinstance(value, str) and 0 < len(value.strip()) < _SHORT_STRING_LENGTH),
                    None,
                )
    elif isinstance(item, str) and 0 < len(item.strip()) < _SHORT_STRING_LENGTH:
        name = item
    if not name or not name.strip():
        name = f"Item {index + 1}"
    return name.strip()[:MAX_NAME_LENGTH]


def detect_content(item: Any, content_field: str | None = None) -> str:
    """Pick the prompt text for an item; non-strings are serialised as JSON."""
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        if content_field and content_field in item:
            return _as_text(item[content_field])
        for candidate in CONTENT_CANDIDATES:
            if candidate in item:
                return _as_text(item[candidate])
    return json.dumps(item, indent=2)


def _is_text(value: Any) -> bool:
    return isinstance(value, str | int | float) and not isinstance(value, bool) and str(value).strip() != ""


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, indent=2)
