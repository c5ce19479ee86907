"""Streaming generation events.

The generation service reports progress as a stream of tagged JSON objects.
They are decoded exactly once, at the client boundary, into the variants
below; the engine only ever pattern-matches on these types.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting reported by the generation service."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> TokenUsage:
        if not data:
            return cls()
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or data.get("input_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or data.get("output_tokens") or 0),
        )


@dataclass(frozen=True, slots=True)
class ThreadingOptions:
    """Conversation threading passed through to the generation service."""

    context_id: str | None = None
    store_in_history: bool = False


@dataclass(frozen=True, slots=True)
class GenerationStarted:
    """The service accepted the request."""

    response_id: str | None = None


@dataclass(frozen=True, slots=True)
class GenerationProgress:
    """Incremental output."""

    text_delta: str = ""


@dataclass(frozen=True, slots=True)
class GenerationCompleted:
    """Terminal success."""

    response: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    response_id: str | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class GenerationFailed:
    """Terminal failure."""

    code: str
    message: str
    status: int | None = None
    node_name: str | None = None


@dataclass(frozen=True, slots=True)
class GenerationRateLimited:
    """Terminal failure: the service asked us to slow down."""

    message: str
    retry_after_s: float | None = None
    status: int | None = 429


GenerationEvent = GenerationStarted | GenerationProgress | GenerationCompleted | GenerationFailed | GenerationRateLimited


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def decode_generation_event(payload: Mapping[str, Any]) -> GenerationEvent:
    """Decode one raw tagged event object.

    Args:
        payload: Mapping with a ``type`` key naming the variant

    Returns:
        The typed event

    Raises:
        ValueError: If the tag is missing or unknown
    """
    kind = payload.get("type")
    if kind == "started":
        return GenerationStarted(response_id=payload.get("response_id"))
    if kind == "progress":
        return GenerationProgress(text_delta=str(payload.get("text") or payload.get("delta") or ""))
    if kind == "completion":
        return GenerationCompleted(
            response=str(payload.get("response") or ""),
            usage=TokenUsage.from_mapping(payload.get("usage")),
            response_id=payload.get("response_id"),
            model=payload.get("model"),
        )
    if kind == "error":
        return GenerationFailed(
            code=str(payload.get("code") or "generation_failed"),
            message=str(payload.get("message") or payload.get("error") or "Generation failed"),
            status=_optional_int(payload.get("status")),
            node_name=payload.get("prompt_name") or payload.get("node_name"),
        )
    if kind == "rate_limited":
        return GenerationRateLimited(
            message=str(payload.get("message") or "Rate limited"),
            retry_after_s=_optional_float(payload.get("retry_after_s")),
            status=_optional_int(payload.get("status")) or 429,
        )
    raise ValueError(f"Unknown generation event type: {kind!r}")
