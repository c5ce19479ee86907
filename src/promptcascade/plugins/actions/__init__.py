"""Built-in post-actions."""

from promptcascade.plugins.actions.create_children_json import CreateChildrenJsonAction
from promptcascade.plugins.actions.create_children_text import CreateChildrenTextAction
from promptcascade.plugins.actions.registry import ActionHandler, ActionRegistry

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "CreateChildrenJsonAction",
    "CreateChildrenTextAction",
]
