"""
PURPOSE: Constants and enumerations shared by every service that uses the event bus.

The event name values are the wire strings used as Redis channel suffixes and
must stay identical across every publishing and subscribing service.
"""

from enum import Enum

DEFAULT_CHANNEL_PREFIX: str = "minierp:events"


class EventName(str, Enum):
    """
    PURPOSE: Closed set of domain event names. Each member implies one payload shape.
    """

    CUSTOMER_CREATED = "customer:created"
    CUSTOMER_UPDATED = "customer:updated"
    PROJECT_STATUS_CHANGED = "project:status:changed"
    ESTIMATION_APPROVED = "estimation:approved"
    INVOICE_CREATED = "invoice:created"

    def __str__(self) -> str:
        return self.value


class DistributedOutcome(str, Enum):
    """
    PURPOSE: Outcome of the broker leg of a single publish call.

    Informational only: used in logs and PublishResult, never raised.
    """

    SENT = "SENT"
    SKIPPED_NO_TRANSPORT = "SKIPPED_NO_TRANSPORT"
    FAILED_SERIALIZATION = "FAILED_SERIALIZATION"
    FAILED_TRANSPORT = "FAILED_TRANSPORT"
