"""Classification of generation failures.

Turns a decoded terminal error event into the engine's exception taxonomy.
Quota exhaustion is recognised from the message as well as the code, because
providers report it inconsistently (sometimes as a plain 429).
"""

from __future__ import annotations

import re

from promptcascade.contracts.enums import ErrorCategory
from promptcascade.contracts.errors import GenerationError, QuotaExhaustedError, RateLimitError
from promptcascade.contracts.generation import GenerationFailed, GenerationRateLimited

_QUOTA_PATTERNS = (
    "exceeded your current quota",
    "insufficient_quota",
    "quota exceeded",
    "quota_exceeded",
)
_QUOTA_CODES = frozenset({"quota_exceeded", "insufficient_quota"})
_RATE_LIMIT_CODES = frozenset({"rate_limited", "rate_limit", "too_many_requests"})
_RATE_LIMIT_PATTERNS = (
    re.compile(r"\brate[\s_-]*limit(?:ed|ing)?\b"),
    re.compile(r"\btoo many requests\b"),
    re.compile(r"\bthrottl(?:e|ed|ing)\b"),
)
_SERVER_ERROR_CODE_PATTERN = re.compile(r"\b(?:500|502|503|504|529)\b")
_TIMEOUT_PATTERNS = ("timeout", "timed out", "deadline exceeded")
_NETWORK_PATTERNS = (
    "connection refused",
    "connection reset",
    "connection error",
    "network",
    "failed to fetch",
)
_CONTENT_POLICY_PATTERNS = ("content_policy_violation", "content policy", "safety system")
_CONTEXT_LENGTH_PATTERNS = ("context_length_exceeded", "context length", "maximum context", "too many tokens")


def classify_error(code: str | None, message: str, status: int | None = None) -> ErrorCategory:
    """Classify a generation failure into a canonical category."""
    normalized_code = (code or "").lower()
    text = message.lower()

    if normalized_code in _QUOTA_CODES or any(pattern in text for pattern in _QUOTA_PATTERNS):
        return ErrorCategory.QUOTA_EXCEEDED
    if any(pattern in text for pattern in _CONTENT_POLICY_PATTERNS):
        return ErrorCategory.CONTENT_POLICY
    if any(pattern in text for pattern in _CONTEXT_LENGTH_PATTERNS):
        return ErrorCategory.CONTEXT_LENGTH
    if (
        status == 429
        or normalized_code in _RATE_LIMIT_CODES
        or re.search(r"\b429\b", text)
        or any(pattern.search(text) for pattern in _RATE_LIMIT_PATTERNS)
    ):
        return ErrorCategory.RATE_LIMITED
    if any(pattern in text for pattern in _TIMEOUT_PATTERNS):
        return ErrorCategory.TIMEOUT
    if (status is not None and status >= 500) or _SERVER_ERROR_CODE_PATTERN.search(text) or "internal server error" in text:
        return ErrorCategory.SERVER
    if any(pattern in text for pattern in _NETWORK_PATTERNS):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def is_recoverable(category: ErrorCategory) -> bool:
    return category != ErrorCategory.QUOTA_EXCEEDED


def to_exception(event: GenerationFailed | GenerationRateLimited, node_name: str | None = None) -> GenerationError:
    """Map a terminal error event onto the exception taxonomy."""
    if isinstance(event, GenerationRateLimited):
        if classify_error("rate_limited", event.message, event.status) == ErrorCategory.QUOTA_EXCEEDED:
            return QuotaExhaustedError(event.message, status=event.status, node_name=node_name)
        return RateLimitError(
            event.message,
            retry_after_s=event.retry_after_s,
            status=event.status,
            node_name=node_name,
        )

    name = event.node_name or node_name
    category = classify_error(event.code, event.message, event.status)
    if category == ErrorCategory.QUOTA_EXCEEDED:
        return QuotaExhaustedError(event.message, status=event.status, node_name=name)
    if category == ErrorCategory.RATE_LIMITED:
        return RateLimitError(event.message, retry_after_s=None, status=event.status or 429, node_name=name)
    return GenerationError(event.message, code=event.code, status=event.status, node_name=name)
