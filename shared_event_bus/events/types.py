"""
Event payload types for the shared event bus.

Defines the per-event payload models, the EventEnvelope that wraps them, and
the PublishResult returned by EventBus.publish. Wire keys are camelCase so the
envelopes stay compatible with the Node services publishing on the same
channels; Python attributes are snake_case.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Type, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from shared_event_bus.config.constants import DistributedOutcome, EventName
from shared_event_bus.utils.time_utils import get_utc_now, to_epoch_millis


class EventBusError(Exception):
    """
    PURPOSE: Base exception for event bus programming errors.
    """
    pass


class UnknownEventError(EventBusError, ValueError):
    """
    PURPOSE: Raised when an event name is not part of the EventName registry.
    """
    pass


class EventData(BaseModel):
    """Base class for event payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# Customer Events
class CustomerCreatedData(EventData):
    customer_id: str
    customer_name: str
    channel: str
    city: str
    status: str
    credit_limit: Optional[float] = None
    no_npwp: Optional[str] = None
    sppkp: Optional[str] = None


class CustomerUpdatedData(EventData):
    """Only customer_id is guaranteed; ``changes`` holds the raw field diff."""

    customer_id: str
    customer_name: Optional[str] = None
    channel: Optional[str] = None
    city: Optional[str] = None
    status: Optional[str] = None
    credit_limit: Optional[float] = None
    no_npwp: Optional[str] = None
    sppkp: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)


# Project Events
class ProjectStatusChangedData(EventData):
    project_id: str
    project_name: str
    customer_id: str
    previous_status: str
    new_status: str
    estimated_value: Optional[float] = None
    contract_value: Optional[float] = None


# Estimation Events
class EstimationApprovedData(EventData):
    estimation_id: str
    project_id: str
    project_name: str
    approved_by: str
    approved_at: datetime
    total_amount: float


# Invoice Events
class InvoiceCreatedData(EventData):
    invoice_id: str
    invoice_number: str
    customer_id: Optional[str] = None
    customer_name: str
    total_amount: float
    currency: str
    status: str
    invoice_date: datetime
    due_date: datetime


EventPayloadData = Union[
    CustomerCreatedData,
    CustomerUpdatedData,
    ProjectStatusChangedData,
    EstimationApprovedData,
    InvoiceCreatedData,
]

EVENT_PAYLOAD_MODELS: Dict[EventName, Type[EventData]] = {
    EventName.CUSTOMER_CREATED: CustomerCreatedData,
    EventName.CUSTOMER_UPDATED: CustomerUpdatedData,
    EventName.PROJECT_STATUS_CHANGED: ProjectStatusChangedData,
    EventName.ESTIMATION_APPROVED: EstimationApprovedData,
    EventName.INVOICE_CREATED: InvoiceCreatedData,
}


def resolve_event_name(event_name: Union[EventName, str]) -> EventName:
    """
    PURPOSE: Normalize an EventName member or its wire string to the member.

    Args:
        event_name: EventName or wire value such as "customer:created".

    Returns:
        EventName: Matching registry member.

    Raises:
        UnknownEventError: If the name is not registered.
    """
    try:
        return EventName(event_name)
    except ValueError:
        raise UnknownEventError(f"Unknown event name: {event_name!r}") from None


def payload_model_for(event_name: Union[EventName, str]) -> Type[EventData]:
    """
    PURPOSE: Look up the payload model registered for an event name.

    Raises:
        UnknownEventError: If the name is not registered.
    """
    return EVENT_PAYLOAD_MODELS[resolve_event_name(event_name)]


def coerce_payload(
    event_name: Union[EventName, str],
    data: Union[EventData, Mapping[str, Any]],
) -> EventData:
    """
    PURPOSE: Validate raw or foreign payload data into the model for event_name.

    Accepts the exact model instance (returned unchanged), another EventData
    instance, or a mapping with camelCase or snake_case keys.

    Raises:
        UnknownEventError: If the name is not registered.
        pydantic.ValidationError: If the data does not fit the payload model.
    """
    model = payload_model_for(event_name)
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return model.model_validate(data)


def new_event_id(source: str, now: Optional[datetime] = None) -> str:
    """
    PURPOSE: Build a unique event id of the form "{source}-{epoch_millis}-{random}".
    """
    millis = to_epoch_millis(now or get_utc_now())
    return f"{source}-{millis}-{uuid4().hex[:9]}"


class EventEnvelope(BaseModel):
    """
    Standardized envelope for every event delivered by the bus.

    PURPOSE: Same shape for in-process and broker deliveries, so handlers never
    need to know where an event came from.
    USED BY: EventBus publish/subscribe operations and the Redis wire codec.

    Attributes:
        event_id: Unique id generated per publish call.
        event_name: Registry member identifying the payload shape.
        source: Name of the service that published the event.
        timestamp: When the envelope was created (UTC).
        data: Payload model matching event_name.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    event_id: str = Field(
        ...,
        min_length=1,
        description="Unique identifier of this event"
    )
    event_name: EventName = Field(
        ...,
        description="Registry name of the event; discriminates the payload type"
    )
    source: str = Field(
        ...,
        min_length=1,
        description="Service that published this event"
    )
    timestamp: datetime = Field(
        default_factory=get_utc_now,
        description="UTC timestamp when the envelope was created"
    )
    data: EventPayloadData = Field(
        ...,
        description="Event-specific payload"
    )

    @model_validator(mode="before")
    @classmethod
    def _resolve_payload_model(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        name = values.get("eventName", values.get("event_name"))
        data = values.get("data")
        if name is None or data is None:
            return values
        resolved = dict(values)
        resolved["data"] = coerce_payload(name, data)
        return resolved

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def build(
        cls,
        event_name: Union[EventName, str],
        data: Union[EventData, Mapping[str, Any]],
        source: str,
    ) -> "EventEnvelope":
        """
        PURPOSE: Create a new envelope with a fresh id and the current timestamp.

        Args:
            event_name: Registry name of the event.
            data: Payload model or mapping for that event.
            source: Publishing service name.

        Returns:
            EventEnvelope: Validated, immutable envelope.
        """
        name = resolve_event_name(event_name)
        now = get_utc_now()
        return cls(
            event_id=new_event_id(source, now),
            event_name=name,
            source=source,
            timestamp=now,
            data=coerce_payload(name, data),
        )

    def to_json(self) -> str:
        """Serialize with camelCase keys for the broker."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(
        cls,
        raw: Union[str, bytes],
        default_event_name: Optional[Union[EventName, str]] = None,
    ) -> "EventEnvelope":
        """
        Parse an envelope received from the broker.

        Node publishers leave the event name out of the body and only encode it
        in the channel; default_event_name fills it in for those messages.

        Raises:
            pydantic.ValidationError: If the message is not a valid envelope.
            ValueError: If the message is not valid JSON.
        """
        if default_event_name is None:
            return cls.model_validate_json(raw)
        values = json.loads(raw)
        if isinstance(values, dict) and "eventName" not in values and "event_name" not in values:
            values["eventName"] = default_event_name
        return cls.model_validate(values)


class PublishResult(BaseModel):
    """
    PURPOSE: Outcome of one EventBus.publish call, for logging and metrics.

    Attributes:
        envelope: The envelope that was delivered.
        handlers_invoked: Local handlers that ran for this publish.
        handlers_failed: Local handlers that raised (already logged).
        distributed: What happened on the broker leg.
    """

    envelope: EventEnvelope
    handlers_invoked: int = Field(default=0, ge=0)
    handlers_failed: int = Field(default=0, ge=0)
    distributed: DistributedOutcome = DistributedOutcome.SKIPPED_NO_TRANSPORT

    @property
    def sent(self) -> bool:
        return self.distributed == DistributedOutcome.SENT
