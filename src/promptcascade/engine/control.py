"""RunControl: pause and cancel requests for a running cascade.

The caller holds a reference to the RunControl it passed in and may flip the
flags from any thread. The engine only ever reads them at checkpoints.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from promptcascade.engine.clock import Clock

logger = structlog.get_logger(__name__)


class RunControl:
    """Thread-safe pause/cancel flags.

    Cancellation is cooperative and one-way: once cancelled, a control stays
    cancelled. Cancel callbacks run once, on the thread that called cancel().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paused = False
        self._cancelled = False
        self._cancel_callbacks: list[Callable[[], None]] = []

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._cancel_callbacks)
            self._cancel_callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                # Propagating server-side cancel is best-effort
                logger.warning("Cancel callback failed", error=str(exc), error_type=type(exc).__name__)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired once when cancel() is called.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            self._cancel_callbacks.append(callback)

        def unregister() -> None:
            with self._lock:
                if callback in self._cancel_callbacks:
                    self._cancel_callbacks.remove(callback)

        return unregister

    def wait_while_paused(self, clock: Clock, poll_interval: float) -> bool:
        """Sleep in ``poll_interval`` steps while paused.

        Cancellation is re-checked on every wake-up.

        Returns:
            False if the run was cancelled, True if it may proceed.
        """
        while True:
            if self.cancelled:
                return False
            if not self.paused:
                return True
            clock.sleep(poll_interval)
