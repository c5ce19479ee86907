"""Hierarchy loader: materialise a prompt tree level by level.

Level 0 holds only the root; level k+1 holds every non-deleted direct child
of a level-k node. A read failure anywhere fails the whole load: a partial
tree would silently skip branches.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from promptcascade.contracts.errors import HierarchyFetchError
from promptcascade.contracts.nodes import PromptNode
from promptcascade.contracts.protocols import NodeStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Hierarchy:
    """Level-ordered nodes of one tree."""

    root: PromptNode
    levels: tuple[tuple[PromptNode, ...], ...]

    @property
    def total_levels(self) -> int:
        return len(self.levels)

    def iter_nodes(self) -> list[tuple[int, PromptNode]]:
        """All nodes as (level, node) in traversal order."""
        return [(level, node) for level, nodes in enumerate(self.levels) for node in nodes]

    def find(self, node_id: str) -> PromptNode | None:
        for nodes in self.levels:
            for node in nodes:
                if node.node_id == node_id:
                    return node
        return None


class HierarchyLoader:
    """Reads a tree from a NodeStore, one query per level."""

    def __init__(self, store: NodeStore, *, max_levels: int = 1000) -> None:
        self._store = store
        self._max_levels = max_levels

    def load(self, root_node_id: str) -> Hierarchy:
        """Load the tree rooted at ``root_node_id``.

        Raises:
            HierarchyFetchError: If the root is missing or any read fails.
        """
        try:
            root = self._store.get_node(root_node_id)
        except Exception as exc:
            raise HierarchyFetchError(root_node_id, f"root read failed: {exc}") from exc
        if root is None:
            raise HierarchyFetchError(root_node_id, "root prompt not found")

        levels: list[tuple[PromptNode, ...]] = [(root,)]
        while True:
            current = levels[-1]
            if len(levels) > self._max_levels:
                raise HierarchyFetchError(root_node_id, f"more than {self._max_levels} levels (cyclic parent data?)")
            try:
                children = self._store.get_children_of_many([node.node_id for node in current])
            except Exception as exc:
                raise HierarchyFetchError(root_node_id, f"level {len(levels)} read failed: {exc}") from exc
            if not children:
                break
            levels.append(_order_level(children, current))

        logger.debug(
            "Hierarchy loaded",
            root_node_id=root_node_id,
            levels=len(levels),
            nodes=sum(len(level) for level in levels),
        )
        return Hierarchy(root=root, levels=tuple(levels))


def _order_level(children: list[PromptNode], parents: tuple[PromptNode, ...]) -> tuple[PromptNode, ...]:
    """Sort by position; equal positions keep the order of their parents."""
    parent_rank = {node.node_id: index for index, node in enumerate(parents)}
    ranked = sorted(
        enumerate(children),
        key=lambda item: (item[1].position, parent_rank.get(item[1].parent_id or "", len(parent_rank)), item[0]),
    )
    return tuple(node for _, node in ranked)
