"""SQLAlchemy table definitions for the prompt tree and execution traces.

Uses SQLAlchemy Core (not ORM) for explicit control over which columns each
write touches.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# === Prompt tree ===

prompts_table = Table(
    "prompts",
    metadata,
    Column("node_id", String(64), primary_key=True),
    Column("parent_id", String(64), ForeignKey("prompts.node_id")),
    Column("position", Integer, nullable=False, default=0),
    Column("name", String(255), nullable=False, default=""),
    Column("admin_prompt", Text, nullable=False, default=""),
    Column("user_prompt", Text, nullable=False, default=""),
    Column("note", Text, nullable=False, default=""),
    Column("exclude_from_cascade", Boolean, nullable=False, default=False),
    Column("node_type", String(16), nullable=False, default="normal"),
    Column("post_action", String(64)),
    Column("post_action_config_json", Text),
    Column("auto_run_children", Boolean, nullable=False, default=False),
    Column("is_assistant", Boolean, nullable=False, default=False),
    Column("system_variables_json", Text),
    # Result columns - the only ones the engine writes during a run
    Column("output_response", Text),
    Column("extracted_json", Text),
    Column("last_action_result_json", Text),
    Column("is_deleted", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index("ix_prompts_parent_position", prompts_table.c.parent_id, prompts_table.c.position)

prompt_variables_table = Table(
    "prompt_variables",
    metadata,
    Column("variable_id", Integer, primary_key=True, autoincrement=True),
    Column("node_id", String(64), ForeignKey("prompts.node_id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("value", Text),
    Column("default_value", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("node_id", "name"),
)

# === Execution traces ===

traces_table = Table(
    "cascade_traces",
    metadata,
    Column("trace_id", String(64), primary_key=True),
    Column("root_node_id", String(64), nullable=False),
    Column("execution_type", String(32), nullable=False),
    Column("status", String(32), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
)

spans_table = Table(
    "cascade_spans",
    metadata,
    Column("span_id", String(64), primary_key=True),
    Column("trace_id", String(64), ForeignKey("cascade_traces.trace_id"), nullable=False),
    Column("node_id", String(64), nullable=False),
    Column("span_type", String(32), nullable=False),
    Column("status", String(32), nullable=False),
    Column("attempt_number", Integer, nullable=False, default=1),
    Column("previous_attempt_span_id", String(64)),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("latency_ms", Float),
    Column("prompt_tokens", Integer),
    Column("completion_tokens", Integer),
    Column("model", String(128)),
    Column("output", Text),
    Column("error_evidence_json", Text),
)

Index("ix_spans_trace", spans_table.c.trace_id)
