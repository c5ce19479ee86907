"""Core infrastructure: configuration, logging, events and storage."""

from promptcascade.core.config import PromptCascadeSettings, load_settings
from promptcascade.core.events import EventBus, EventBusProtocol, NullEventBus
from promptcascade.core.logging import configure_logging, get_logger

__all__ = [
    "EventBus",
    "EventBusProtocol",
    "NullEventBus",
    "PromptCascadeSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
