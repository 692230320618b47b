"""
Audit handlers for ERP domain events.

Provides structured-log handlers for customer, project, estimation and invoice
events, so every service can keep an audit trail of what it published and
received.
"""

from shared_event_bus.config.constants import EventName
from shared_event_bus.events.types import EventEnvelope
from shared_event_bus.utils.logger import get_logger


async def handle_customer_event(envelope: EventEnvelope) -> None:
    """
    Log customer created/updated events.

    CALLED BY: EventBus on CUSTOMER_CREATED and CUSTOMER_UPDATED events.

    Args:
        envelope: EventEnvelope carrying a customer payload.
    """
    logger = get_logger("events.handlers")
    data = envelope.data
    logger.info(
        "customer_event",
        event_name=envelope.event_name.value,
        customer_id=data.customer_id,
        customer_name=data.customer_name,
        status=data.status,
        origin=envelope.source,
        event_id=envelope.event_id
    )


async def handle_project_status_event(envelope: EventEnvelope) -> None:
    """
    Log project status transitions, flagging projects that were won.

    CALLED BY: EventBus on PROJECT_STATUS_CHANGED event.
    """
    logger = get_logger("events.handlers")
    data = envelope.data
    logger.info(
        "project_status_event",
        project_id=data.project_id,
        previous_status=data.previous_status,
        new_status=data.new_status,
        contract_value=data.contract_value,
        origin=envelope.source,
        event_id=envelope.event_id
    )

    if data.new_status.upper() == "WON":
        logger.info(
            "project_won",
            project_id=data.project_id,
            project_name=data.project_name,
            customer_id=data.customer_id,
            event_id=envelope.event_id
        )


async def handle_estimation_event(envelope: EventEnvelope) -> None:
    """
    Log approved estimations with approver and total.

    CALLED BY: EventBus on ESTIMATION_APPROVED event.
    """
    logger = get_logger("events.handlers")
    data = envelope.data
    logger.info(
        "estimation_approved_event",
        estimation_id=data.estimation_id,
        project_id=data.project_id,
        approved_by=data.approved_by,
        total_amount=data.total_amount,
        origin=envelope.source,
        event_id=envelope.event_id
    )


async def handle_invoice_event(envelope: EventEnvelope) -> None:
    """
    Log newly created invoices with amount and due date.

    CALLED BY: EventBus on INVOICE_CREATED event.
    """
    logger = get_logger("events.handlers")
    data = envelope.data
    logger.info(
        "invoice_created_event",
        invoice_id=data.invoice_id,
        invoice_number=data.invoice_number,
        customer_name=data.customer_name,
        total_amount=data.total_amount,
        currency=data.currency,
        due_date=data.due_date.isoformat(),
        origin=envelope.source,
        event_id=envelope.event_id
    )


def register_all_handlers(bus) -> None:
    """
    Wire the audit handlers to the event bus.

    PURPOSE: Centralize audit handler registration during service startup so
    every domain event leaves a log line.

    CALLED BY: Service startup sequence.

    Args:
        bus: EventBus instance to register handlers with.
    """
    logger = get_logger("events.handlers")

    # Customer event handlers
    bus.subscribe(EventName.CUSTOMER_CREATED, handle_customer_event)
    bus.subscribe(EventName.CUSTOMER_UPDATED, handle_customer_event)

    # Project and estimation event handlers
    bus.subscribe(EventName.PROJECT_STATUS_CHANGED, handle_project_status_event)
    bus.subscribe(EventName.ESTIMATION_APPROVED, handle_estimation_event)

    # Finance event handlers
    bus.subscribe(EventName.INVOICE_CREATED, handle_invoice_event)

    logger.info("all_handlers_registered")
