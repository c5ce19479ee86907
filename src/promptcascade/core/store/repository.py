# src/promptcascade/core/store/repository.py
"""PromptRepository: SQL-backed prompt tree storage.

Every write method issues a targeted UPDATE of the columns it owns. The
engine never writes back a whole node it read earlier, so concurrent edits
to other fields are not clobbered.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.engine import RowMapping

from promptcascade.contracts.enums import NodeType
from promptcascade.contracts.nodes import PromptNode
from promptcascade.core.store.database import PromptDB
from promptcascade.core.store.schema import prompt_variables_table, prompts_table


def generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


def _load_json(text: str | None) -> Any:
    if text is None:
        return None
    return json.loads(text)


def _row_to_node(row: RowMapping) -> PromptNode:
    return PromptNode(
        node_id=row["node_id"],
        parent_id=row["parent_id"],
        position=row["position"],
        name=row["name"],
        admin_prompt=row["admin_prompt"],
        user_prompt=row["user_prompt"],
        note=row["note"],
        exclude_from_cascade=row["exclude_from_cascade"],
        node_type=NodeType(row["node_type"]),
        post_action=row["post_action"],
        post_action_config=_load_json(row["post_action_config_json"]) or {},
        auto_run_children=row["auto_run_children"],
        is_assistant=row["is_assistant"],
        system_variables=_load_json(row["system_variables_json"]) or {},
        output_response=row["output_response"],
        extracted_json=_load_json(row["extracted_json"]),
        last_action_result=_load_json(row["last_action_result_json"]),
        is_deleted=row["is_deleted"],
    )


class PromptRepository:
    """NodeStore implementation over PromptDB."""

    def __init__(self, db: PromptDB) -> None:
        self._db = db

    # === Reads ===

    def get_node(self, node_id: str) -> PromptNode | None:
        """Return a non-deleted node, or None."""
        query = select(prompts_table).where(
            prompts_table.c.node_id == node_id,
            prompts_table.c.is_deleted.is_(False),
        )
        with self._db.connection() as conn:
            row = conn.execute(query).mappings().first()
        return _row_to_node(row) if row is not None else None

    def get_children(self, parent_id: str) -> list[PromptNode]:
        return self.get_children_of_many([parent_id])

    def get_children_of_many(self, parent_ids: Sequence[str]) -> list[PromptNode]:
        """Non-deleted direct children of any of ``parent_ids``, by position."""
        if not parent_ids:
            return []
        query = (
            select(prompts_table)
            .where(
                prompts_table.c.parent_id.in_(list(parent_ids)),
                prompts_table.c.is_deleted.is_(False),
            )
            .order_by(prompts_table.c.position, prompts_table.c.created_at, prompts_table.c.node_id)
        )
        with self._db.connection() as conn:
            rows = conn.execute(query).mappings().all()
        return [_row_to_node(row) for row in rows]

    def get_roots(self) -> list[PromptNode]:
        query = (
            select(prompts_table)
            .where(prompts_table.c.parent_id.is_(None), prompts_table.c.is_deleted.is_(False))
            .order_by(prompts_table.c.position)
        )
        with self._db.connection() as conn:
            rows = conn.execute(query).mappings().all()
        return [_row_to_node(row) for row in rows]

    def get_variables(self, node_id: str) -> dict[str, str]:
        """Stored variables of a node: value, else default, else empty string."""
        query = (
            select(prompt_variables_table.c.name, prompt_variables_table.c.value, prompt_variables_table.c.default_value)
            .where(prompt_variables_table.c.node_id == node_id)
            .order_by(prompt_variables_table.c.name)
        )
        with self._db.connection() as conn:
            rows = conn.execute(query).all()
        return {name: value or default or "" for name, value, default in rows}

    def next_position(self, parent_id: str | None) -> int:
        """Position after the last existing sibling under ``parent_id``."""
        condition = prompts_table.c.parent_id.is_(None) if parent_id is None else prompts_table.c.parent_id == parent_id
        query = select(func.max(prompts_table.c.position)).where(condition, prompts_table.c.is_deleted.is_(False))
        with self._db.connection() as conn:
            current = conn.execute(query).scalar()
        return 0 if current is None else current + 1

    # === Writes owned by the engine ===

    def save_result(self, node_id: str, response: str) -> None:
        self._update(node_id, output_response=response)

    def save_extracted_json(self, node_id: str, data: Any) -> None:
        self._update(node_id, extracted_json=json.dumps(data))

    def save_action_result(self, node_id: str, result: Mapping[str, Any]) -> None:
        self._update(node_id, last_action_result_json=json.dumps(dict(result)))

    def upsert_variable(self, node_id: str, name: str, value: str, *, create: bool) -> bool:
        """Set a stored variable.

        Returns:
            True if the variable was written, False if it did not exist and
            ``create`` was False.
        """
        now = _now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(prompt_variables_table)
                .where(prompt_variables_table.c.node_id == node_id, prompt_variables_table.c.name == name)
                .values(value=value, updated_at=now)
            )
            if result.rowcount > 0:
                return True
            if not create:
                return False
            conn.execute(
                prompt_variables_table.insert().values(node_id=node_id, name=name, value=value, updated_at=now)
            )
        return True

    def _update(self, node_id: str, **values: Any) -> None:
        with self._db.connection() as conn:
            result = conn.execute(
                update(prompts_table).where(prompts_table.c.node_id == node_id).values(updated_at=_now(), **values)
            )
            updated = result.rowcount
        if updated == 0:
            raise KeyError(f"Prompt {node_id} not found")

    # === Tree editing ===

    def create_node(self, node: PromptNode) -> PromptNode:
        """Insert a node, assigning an id when ``node.node_id`` is empty."""
        stored = node if node.node_id else replace(node, node_id=generate_id())
        now = _now()
        with self._db.connection() as conn:
            conn.execute(
                prompts_table.insert().values(
                    node_id=stored.node_id,
                    parent_id=stored.parent_id,
                    position=stored.position,
                    name=stored.name,
                    admin_prompt=stored.admin_prompt,
                    user_prompt=stored.user_prompt,
                    note=stored.note,
                    exclude_from_cascade=stored.exclude_from_cascade,
                    node_type=stored.node_type.value,
                    post_action=stored.post_action,
                    post_action_config_json=json.dumps(dict(stored.post_action_config)),
                    auto_run_children=stored.auto_run_children,
                    is_assistant=stored.is_assistant,
                    system_variables_json=json.dumps(dict(stored.system_variables)),
                    output_response=stored.output_response,
                    is_deleted=stored.is_deleted,
                    created_at=now,
                    updated_at=now,
                )
            )
        return stored

    def set_variable_default(self, node_id: str, name: str, default_value: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                prompt_variables_table.insert().values(
                    node_id=node_id, name=name, default_value=default_value, updated_at=_now()
                )
            )

    def mark_deleted(self, node_id: str) -> None:
        self._update(node_id, is_deleted=True)
