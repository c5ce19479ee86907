"""VariableContext builder.

Assembles the flat template-variable mapping for one node's generation call.
The mapping is rebuilt for every attempt from the current history; nothing
here caches or mutates its inputs.

Precedence on key collision (lowest first): system variables, cascade state,
cross-node references, node-scoped stored variables.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from promptcascade.contracts.nodes import HistoryEntry, PromptNode, UserIdentity

# Prefixes of keys computed by the engine; never re-exported through q.ref
_CONTEXT_KEY_PREFIXES = ("q.", "cascade_")


@dataclass(frozen=True, slots=True)
class ExecutedNode:
    """A node that completed earlier in this cascade, for q.ref lookups."""

    node: PromptNode
    response: str
    variables: Mapping[str, str] = field(default_factory=dict)


def build_system_variables(
    node: PromptNode,
    *,
    parent: PromptNode | None,
    top_level: PromptNode | None,
    user: UserIdentity | None,
    now: datetime,
) -> dict[str, str]:
    """Derived variables describing the date, the caller and the node's place in the tree."""
    user = user or UserIdentity()
    if top_level is not None:
        top_name = top_level.display_name
    elif parent is not None:
        top_name = parent.display_name
    else:
        top_name = node.display_name

    return {
        "q.today": now.date().isoformat(),
        "q.now": now.isoformat(),
        "q.year": str(now.year),
        "q.month": now.strftime("%B"),
        "q.user.name": user.resolved_name,
        "q.user.email": user.email or "",
        "q.toplevel.prompt.name": top_name,
        "q.parent.prompt.name": parent.display_name if parent else "",
        "q.parent.prompt.id": parent.node_id if parent else "",
        "q.parent.output_response": (parent.output_response or "") if parent else "",
        "q.prompt.name": node.display_name,
        "q.prompt.id": node.node_id,
    }


def build_cascade_variables(history: Sequence[HistoryEntry], level: int) -> dict[str, str]:
    """Variables describing the run so far."""
    previous = history[-1] if history else None
    variables = {
        "cascade_previous_response": previous.response if previous else "",
        "cascade_previous_name": previous.node_name if previous else "",
        "q.previous.response": previous.response if previous else "",
        "q.previous.name": previous.node_name if previous else "",
        "cascade_all_responses": json.dumps(
            [{"level": entry.level, "name": entry.node_name, "response": entry.response} for entry in history]
        ),
        "cascade_level": str(level),
        "cascade_prompt_count": str(len(history)),
    }

    per_level: dict[int, int] = {}
    for entry in history:
        index = per_level.get(entry.level, 0)
        variables[f"cascade_level_{entry.level}_response_{index}"] = entry.response
        per_level[entry.level] = index + 1
    return variables


def build_reference_variables(executed: Mapping[str, ExecutedNode]) -> dict[str, str]:
    """``q.ref[<id>].<field>`` for every node already executed in this run."""
    variables: dict[str, str] = {}
    for node_id, done in executed.items():
        prefix = f"q.ref[{node_id}]"
        variables[f"{prefix}.output_response"] = done.response
        variables[f"{prefix}.prompt_name"] = done.node.display_name
        variables[f"{prefix}.admin_prompt"] = done.node.admin_prompt
        variables[f"{prefix}.user_prompt"] = done.node.user_prompt
        for key, value in done.variables.items():
            if key.startswith(_CONTEXT_KEY_PREFIXES):
                continue
            variables[f"{prefix}.{key}"] = value
    return variables


def node_scoped_variables(node: PromptNode, stored: Mapping[str, str]) -> dict[str, str]:
    """Stored variables of the node itself; empty stored system values are ignored."""
    scoped = {key: str(value) for key, value in node.system_variables.items() if value not in (None, "")}
    scoped.update(stored)
    return scoped


class VariableContextBuilder:
    """Builds the VariableContext for one node attempt."""

    def build(
        self,
        history: Sequence[HistoryEntry],
        node: PromptNode,
        *,
        level: int,
        now: datetime,
        executed: Mapping[str, ExecutedNode] | None = None,
        user: UserIdentity | None = None,
        top_level: PromptNode | None = None,
        parent: PromptNode | None = None,
        stored_variables: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Return a fresh mapping for ``node``.

        Args:
            history: Terminal outcomes so far, in execution order
            node: The node about to run
            level: Traversal level of ``node``
            now: Current wall-clock time
            executed: Completed nodes of this run, keyed by id
            user: Caller identity
            top_level: Root of the cascade
            parent: Parent of ``node``, when known
            stored_variables: The node's own stored user variables
        """
        variables = build_system_variables(node, parent=parent, top_level=top_level, user=user, now=now)
        variables.update(build_cascade_variables(history, level))
        variables.update(build_reference_variables(executed or {}))
        variables["cascade_admin_prompt"] = node.admin_prompt
        variables.update(node_scoped_variables(node, stored_variables or {}))
        return variables
