"""
Event bus module for the ERP backend services.

Exports EventBus, the envelope and payload types, and the per-process bus
accessors.
"""

from shared_event_bus.events.types import (
    EVENT_PAYLOAD_MODELS,
    CustomerCreatedData,
    CustomerUpdatedData,
    EstimationApprovedData,
    EventBusError,
    EventData,
    EventEnvelope,
    InvoiceCreatedData,
    ProjectStatusChangedData,
    PublishResult,
    UnknownEventError,
    payload_model_for,
)
from shared_event_bus.events.bus import EventBus, create_event_bus, get_event_bus, set_event_bus
from shared_event_bus.events.handlers import register_all_handlers

__all__ = [
    "EVENT_PAYLOAD_MODELS",
    "CustomerCreatedData",
    "CustomerUpdatedData",
    "EstimationApprovedData",
    "EventBus",
    "EventBusError",
    "EventData",
    "EventEnvelope",
    "InvoiceCreatedData",
    "ProjectStatusChangedData",
    "PublishResult",
    "UnknownEventError",
    "create_event_bus",
    "get_event_bus",
    "payload_model_for",
    "register_all_handlers",
    "set_event_bus",
]
