# src/promptcascade/engine/retry.py
"""RetryManager: one budget of normal attempts, via tenacity.

Provides:
- Exponential backoff with jitter between attempts
- Configurable max attempts
- Retryable error filtering
- Injectable sleep, so waits go through the engine Clock

A budget ending in failure raises MaxRetriesExceeded; what happens next
(stop, skip, or a fresh budget) is the caller's decision.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

if TYPE_CHECKING:
    from promptcascade.core.config import CascadeSettings, RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 0.5  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def immediate(cls, max_attempts: int) -> "RetryConfig":
        """Factory for retries without backoff."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, cascade: "CascadeSettings", retry: "RetrySettings") -> "RetryConfig":
        """Factory from validated settings models."""
        return cls(
            max_attempts=cascade.max_retries,
            base_delay=retry.initial_delay_seconds,
            max_delay=retry.max_delay_seconds,
            jitter=retry.jitter_seconds,
            exponential_base=retry.exponential_base,
        )


class RetryManager:
    """Runs an operation under one retry budget.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=clock.sleep)

        result = manager.execute_with_retry(
            operation=lambda: attempt_generation(node),
            is_retryable=lambda e: isinstance(e, GenerationError) and e.retryable,
            on_retry=lambda attempt, error: bus.emit(NodeRetrying(...)),
        )
    """

    def __init__(self, config: RetryConfig, *, sleep: Callable[[float], None] | None = None) -> None:
        """Initialize with config.

        Args:
            config: Retry configuration
            sleep: Sleep function used between attempts (default time.sleep)
        """
        self._config = config
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Callback after a retryable failure that will be retried
                (attempt, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None

        retrying_kwargs: dict[str, object] = {}
        if self._sleep is not None:
            retrying_kwargs["sleep"] = self._sleep_between_attempts

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                reraise=False,  # RetryError is converted to MaxRetriesExceeded below
                **retrying_kwargs,  # type: ignore[arg-type]
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def _sleep_between_attempts(self, seconds: float) -> None:
        # Zero-delay configs still pass through tenacity's sleep hook
        if seconds > 0 and self._sleep is not None:
            self._sleep(seconds)
