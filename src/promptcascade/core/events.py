"""Event bus for cascade observability.

A simple synchronous event bus separating domain logic (orchestrator, child
cascade driver) from presentation (CLI formatters, UI adapters).
"""

from collections.abc import Callable, Iterable
from typing import Any, Protocol, TypeVar

from promptcascade.contracts.events import CASCADE_EVENT_TYPES
from promptcascade.contracts.protocols import ProgressObserver

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations.

    Allows both EventBus and NullEventBus to satisfy the interface
    without inheritance.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Synchronous event bus.

    Events are dispatched synchronously to all subscribers in subscription
    order. Handler exceptions propagate to the caller: handlers are our own
    code, so a bug should surface immediately.

    Example:
        bus = EventBus()
        bus.subscribe(NodeCompleted, lambda e: print(f"done {e.node_id}"))
        bus.emit(NodeCompleted(node_id="n1", ...))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(handler)

    def subscribe_all(self, observer: ProgressObserver, event_types: Iterable[type] = CASCADE_EVENT_TYPES) -> None:
        """Attach an observer's ``on_progress`` to every cascade event type."""
        for event_type in event_types:
            self.subscribe(event_type, observer.on_progress)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers.

        Events with no subscribers are silently ignored; formatters subscribe
        only to the events they care about.
        """
        for handler in self._subscribers.get(type(event), []):
            handler(event)


class NullEventBus:
    """Event bus that discards everything.

    Used when nobody is observing (library use, most tests).
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: T) -> None:
        pass
