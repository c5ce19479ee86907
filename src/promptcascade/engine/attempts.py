"""Per-node attempt state machine and rate-limit wait computation.

A node's execution is bounded two ways, independently:

- a budget of ``max_retries`` normal attempts, after which a human decides
  whether to stop, skip, or start a fresh budget;
- a cap of ``max_rate_limit_waits`` waits, which never consume normal
  attempts.

NodeAttempt owns both counters so the bounds can be tested without any
generation client in the loop.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from promptcascade.contracts.enums import AttemptOutcome
from promptcascade.contracts.errors import RateLimitError, RateLimitWaitsExhausted

_TRY_AGAIN_PATTERN = re.compile(r"try again in\s+(\d+(?:\.\d+)?)\s*s", re.IGNORECASE)


@dataclass
class NodeAttempt:
    """Attempt bookkeeping for one node.

    Attributes:
        failures: Normal failures in the current budget
        rate_limit_waits: Rate-limit waits taken in the current budget
        span_attempts: Attempt number of the latest span, across all budgets
        rounds: Budgets started (a ``retry`` decision starts a new one)
        outcome: Terminal outcome, set exactly once
    """

    node_id: str
    max_retries: int
    max_rate_limit_waits: int
    failures: int = 0
    rate_limit_waits: int = 0
    span_attempts: int = 0
    rounds: int = 1
    outcome: AttemptOutcome | None = None
    last_span_id: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.failures >= self.max_retries

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    def next_span_attempt(self) -> int:
        self.span_attempts += 1
        return self.span_attempts

    def record_failure(self) -> None:
        self._ensure_open()
        self.failures += 1

    def record_rate_limit(self, error: RateLimitError) -> None:
        """Count one rate-limit wait.

        Raises:
            RateLimitWaitsExhausted: If the cap has already been reached.
        """
        self._ensure_open()
        if self.rate_limit_waits >= self.max_rate_limit_waits:
            raise RateLimitWaitsExhausted(self.rate_limit_waits, error)
        self.rate_limit_waits += 1

    def reset(self) -> None:
        """Start a fresh budget after a ``retry`` decision."""
        self._ensure_open()
        self.failures = 0
        self.rate_limit_waits = 0
        self.rounds += 1

    def finish(self, outcome: AttemptOutcome) -> None:
        self._ensure_open()
        self.outcome = outcome

    def _ensure_open(self) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Attempt for node {self.node_id} already finished as {self.outcome}")


def rate_limit_delay_seconds(error: RateLimitError, *, fallback_seconds: float, padding_ms: int = 250) -> float:
    """How long to wait before retrying after ``error``.

    An explicit retry-after wins, then a "try again in Xs" hint in the
    message. Both are padded. A bare "too many requests" gets the fallback.
    """
    if error.retry_after_s is not None:
        return (math.ceil(error.retry_after_s * 1000) + padding_ms) / 1000
    match = _TRY_AGAIN_PATTERN.search(str(error))
    if match:
        return (math.ceil(float(match.group(1)) * 1000) + padding_ms) / 1000
    if error.status == 429 or error.code == "rate_limited":
        return fallback_seconds
    return 0.0
