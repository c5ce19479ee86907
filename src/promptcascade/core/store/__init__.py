"""Prompt tree and trace storage (SQLAlchemy Core)."""

from promptcascade.core.store.database import PromptDB
from promptcascade.core.store.repository import PromptRepository, generate_id
from promptcascade.core.store.tracing import SQLTraceRecorder

__all__ = [
    "PromptDB",
    "PromptRepository",
    "SQLTraceRecorder",
    "generate_id",
]
