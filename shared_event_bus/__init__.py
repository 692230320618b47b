"""
Shared event bus for the ERP backend services.

In-process publish/subscribe with optional Redis pub/sub fan-out between
services.
"""

from shared_event_bus.config import DistributedOutcome, EventName, Settings, load_settings
from shared_event_bus.events import (
    EventBus,
    EventEnvelope,
    PublishResult,
    UnknownEventError,
    create_event_bus,
    get_event_bus,
    set_event_bus,
)

# Mirrors the EventNames constant object of the Node services
EventNames = EventName

__all__ = [
    "DistributedOutcome",
    "EventBus",
    "EventEnvelope",
    "EventName",
    "EventNames",
    "PublishResult",
    "Settings",
    "UnknownEventError",
    "create_event_bus",
    "get_event_bus",
    "load_settings",
    "set_event_bus",
]
