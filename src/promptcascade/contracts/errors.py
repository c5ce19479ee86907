"""Error taxonomy and structured error payloads.

Node-local failures (action parse/validation/cancel, depth limit) are absorbed
and recorded by the engine. Hierarchy-fetch failures and quota exhaustion are
the only unconditionally fatal classes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from promptcascade.contracts.actions import ActionValidation


class ErrorEvidence(TypedDict):
    """Structured error summary attached to a failed span."""

    error_type: str
    error_code: str
    error_message: str
    retry_recommended: bool
    node_name: NotRequired[str]


class CascadeError(Exception):
    """Base class for cascade execution errors."""


class HierarchyFetchError(CascadeError):
    """Raised when the prompt tree cannot be read in full.

    Fatal: the run aborts before any node executes.
    """

    def __init__(self, root_node_id: str, reason: str) -> None:
        self.root_node_id = root_node_id
        self.reason = reason
        super().__init__(f"Failed to load hierarchy for {root_node_id}: {reason}")


class GenerationError(CascadeError):
    """A generation call failed.

    Transient up to the retry budget, then escalates to a human decision.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        code: str = "generation_failed",
        status: int | None = None,
        node_name: str | None = None,
    ) -> None:
        self.code = code
        self.status = status
        self.node_name = node_name
        super().__init__(message)

    def evidence(self) -> ErrorEvidence:
        evidence: ErrorEvidence = {
            "error_type": type(self).__name__,
            "error_code": self.code,
            "error_message": str(self),
            "retry_recommended": self.retryable,
        }
        if self.node_name:
            evidence["node_name"] = self.node_name
        return evidence


class RateLimitError(GenerationError):
    """The service asked us to slow down.

    Triggers a bounded wait-and-retry outside the normal retry budget.
    """

    def __init__(
        self,
        message: str,
        *,
        retry_after_s: float | None = None,
        status: int | None = 429,
        node_name: str | None = None,
    ) -> None:
        super().__init__(message, code="rate_limited", status=status, node_name=node_name)
        self.retry_after_s = retry_after_s

    def evidence(self) -> ErrorEvidence:
        evidence = super().evidence()
        evidence["error_type"] = "RATE_LIMITED"
        evidence["error_code"] = "429"
        return evidence


class QuotaExhaustedError(GenerationError):
    """Service quota is exhausted. Always fatal, never offered for recovery."""

    retryable = False

    def __init__(self, message: str, *, status: int | None = None, node_name: str | None = None) -> None:
        super().__init__(message, code="quota_exceeded", status=status, node_name=node_name)


class RateLimitWaitsExhausted(GenerationError):
    """A node hit the rate-limit wait cap."""

    retryable = False

    def __init__(self, waits: int, last_error: RateLimitError) -> None:
        self.waits = waits
        self.last_error = last_error
        super().__init__(
            f"Rate limit persisted after {waits} waits: {last_error}",
            code="rate_limit_waits_exhausted",
            status=last_error.status,
            node_name=last_error.node_name,
        )


class ActionParseError(CascadeError):
    """The generated text could not be parsed as structured data."""

    def __init__(self, message: str, *, response_preview: str = "") -> None:
        self.response_preview = response_preview
        super().__init__(message)


class ActionValidationError(CascadeError):
    """Extracted data does not have the shape the action expects."""

    def __init__(self, message: str, validation: ActionValidation) -> None:
        self.validation = validation
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return self.validation.diagnostics()


class ActionCancelledByUser(CascadeError):
    """The action preview was rejected."""


class DepthLimitReached(CascadeError):
    """Child cascade recursion hit the configured depth bound."""

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(f"Depth limit reached at depth {depth} (max {max_depth})")


class CascadeCancelled(CascadeError):
    """Control-flow signal: cancellation observed at a checkpoint.

    Not an error condition. Raised from deep inside an attempt so that the
    orchestrator can unwind to the run boundary.
    """


class CascadeStopped(CascadeError):
    """Control-flow signal: the human recovery decision was ``stop``."""

    def __init__(self, node_id: str, reason: str) -> None:
        self.node_id = node_id
        self.reason = reason
        super().__init__(reason)
