"""
PURPOSE: Smoke checks for the shared event bus.

Runs the in-process scenarios every service relies on and, when a Redis URL is
available, the cross-service scenario. Useful after deploying a broker or
upgrading the library.

Usage:
    REDIS_URL=redis://localhost:6379 python -m shared_event_bus.smoke
"""

import asyncio
import sys
from datetime import timedelta
from typing import Any, Callable, List, Optional

from pydantic import BaseModel

from shared_event_bus.config.constants import EventName
from shared_event_bus.config.settings import Settings, load_settings
from shared_event_bus.events.bus import EventBus, create_event_bus
from shared_event_bus.events.types import EventEnvelope
from shared_event_bus.utils.logger import get_logger, setup_logging
from shared_event_bus.utils.time_utils import get_utc_now

logger = get_logger("smoke")


class SmokeResult(BaseModel):
    name: str
    passed: bool
    detail: str = ""


async def _wait_for(condition: Callable[[], bool], timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.05)
    return True


async def check_in_process(bus: EventBus) -> SmokeResult:
    received: List[EventEnvelope] = []
    unsubscribe = bus.subscribe(EventName.CUSTOMER_CREATED, received.append)
    try:
        await bus.publish(EventName.CUSTOMER_CREATED, {
            "customerId": "test-customer-1",
            "customerName": "Test Customer",
            "channel": "ONLINE",
            "city": "Jakarta",
            "status": "ACTIVE",
        })
    finally:
        unsubscribe()

    passed = len(received) == 1 and received[0].data.customer_id == "test-customer-1"
    return SmokeResult(name="In-process Event", passed=passed, detail=f"deliveries={len(received)}")


async def check_multiple_subscribers(bus: EventBus) -> SmokeResult:
    hits = {"first": 0, "second": 0}

    async def first(envelope: EventEnvelope) -> None:
        hits["first"] += 1

    async def second(envelope: EventEnvelope) -> None:
        hits["second"] += 1

    unsubscribers = [
        bus.subscribe(EventName.CUSTOMER_UPDATED, first),
        bus.subscribe(EventName.CUSTOMER_UPDATED, second),
    ]
    try:
        await bus.publish(EventName.CUSTOMER_UPDATED, {
            "customerId": "test-customer-2",
            "customerName": "Updated Customer",
            "changes": {"status": "INACTIVE"},
        })
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    passed = hits == {"first": 1, "second": 1}
    return SmokeResult(name="Multiple Subscribers", passed=passed, detail=str(hits))


async def check_event_types(crm_bus: EventBus, finance_bus: EventBus) -> SmokeResult:
    projects: List[EventEnvelope] = []
    invoices: List[EventEnvelope] = []
    unsubscribers = [
        crm_bus.subscribe(EventName.PROJECT_STATUS_CHANGED, projects.append),
        finance_bus.subscribe(EventName.INVOICE_CREATED, invoices.append),
    ]
    now = get_utc_now()
    try:
        await crm_bus.publish(EventName.PROJECT_STATUS_CHANGED, {
            "projectId": "test-project-1",
            "projectName": "Test Project",
            "customerId": "test-customer-1",
            "previousStatus": "PROSPECT",
            "newStatus": "WON",
            "estimatedValue": 1000000,
            "contractValue": 1200000,
        })
        await finance_bus.publish(EventName.INVOICE_CREATED, {
            "invoiceId": "test-invoice-1",
            "invoiceNumber": "INV-2024-001",
            "customerId": "test-customer-1",
            "customerName": "Test Customer",
            "totalAmount": 1500000,
            "currency": "IDR",
            "status": "DRAFT",
            "invoiceDate": now,
            "dueDate": now + timedelta(days=30),
        })
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    passed = len(projects) == 1 and len(invoices) == 1
    return SmokeResult(
        name="Different Event Types",
        passed=passed,
        detail=f"project={len(projects)} invoice={len(invoices)}",
    )


async def check_envelope_structure(bus: EventBus) -> SmokeResult:
    received: List[EventEnvelope] = []
    unsubscribe = bus.subscribe(EventName.ESTIMATION_APPROVED, received.append)
    try:
        await bus.publish(EventName.ESTIMATION_APPROVED, {
            "estimationId": "test-estimation-1",
            "projectId": "test-project-1",
            "projectName": "Test Project",
            "approvedBy": "test-user-1",
            "approvedAt": get_utc_now(),
            "totalAmount": 5000000,
        })
    finally:
        unsubscribe()

    passed = False
    if len(received) == 1:
        envelope = received[0]
        passed = bool(
            envelope.event_id
            and envelope.timestamp.tzinfo is not None
            and envelope.source == bus.source
            and envelope.data.estimation_id
            and envelope.data.project_id
            and envelope.data.total_amount
        )
    return SmokeResult(name="Event Payload Structure", passed=passed)


async def check_cross_service(publisher: EventBus, receiver: EventBus, timeout: float = 2.0) -> SmokeResult:
    remote: List[EventEnvelope] = []
    local: List[EventEnvelope] = []
    customer_id = "test-customer-3"

    def on_remote(envelope: EventEnvelope) -> None:
        if envelope.data.customer_id == customer_id:
            remote.append(envelope)

    def on_local(envelope: EventEnvelope) -> None:
        if envelope.data.customer_id == customer_id:
            local.append(envelope)

    unsubscribers = [
        receiver.subscribe(EventName.CUSTOMER_CREATED, on_remote),
        publisher.subscribe(EventName.CUSTOMER_CREATED, on_local),
    ]
    try:
        await publisher.publish(EventName.CUSTOMER_CREATED, {
            "customerId": customer_id,
            "customerName": "Distributed Test Customer",
            "channel": "RETAIL",
            "city": "Bandung",
            "status": "ACTIVE",
        })
        delivered = await _wait_for(lambda: len(remote) >= 1, timeout)
        # let a would-be echo arrive before counting local deliveries
        await asyncio.sleep(0.2)
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    passed = delivered and remote[0].source == publisher.source and len(local) == 1
    return SmokeResult(
        name="Distributed Event",
        passed=passed,
        detail=f"remote={len(remote)} local={len(local)}",
    )


async def run_smoke(
    redis_url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    client_factory: Optional[Callable[[str], Any]] = None,
) -> List[SmokeResult]:
    """
    PURPOSE: Execute every smoke scenario and return the results.

    Args:
        redis_url: Broker URL; the distributed scenario only runs when the buses connect.
        settings: Optional preloaded settings.
        client_factory: Optional Redis client factory.

    Returns:
        List[SmokeResult]: One entry per scenario run.
    """
    settings = settings or load_settings()
    url = redis_url if redis_url is not None else settings.REDIS_URL

    crm_bus = await create_event_bus("crm-service-test", url, settings=settings, client_factory=client_factory)
    finance_bus = await create_event_bus("finance-service-test", url, settings=settings, client_factory=client_factory)
    engineering_bus = await create_event_bus(
        "engineering-service-test", url, settings=settings, client_factory=client_factory
    )

    try:
        results = [
            await check_in_process(crm_bus),
            await check_multiple_subscribers(crm_bus),
            await check_event_types(crm_bus, finance_bus),
            await check_envelope_structure(engineering_bus),
        ]
        if crm_bus.is_connected and finance_bus.is_connected:
            results.append(await check_cross_service(crm_bus, finance_bus))
        else:
            logger.info("distributed_check_skipped", reason="no_broker")
    finally:
        for bus in (crm_bus, finance_bus, engineering_bus):
            await bus.shutdown()

    for result in results:
        logger.info("smoke_result", check=result.name, passed=result.passed, detail=result.detail)
    return results


def main() -> int:
    """
    PURPOSE: CLI entry point for the smoke checks.

    Returns:
        int: 0 when every check passed, 1 otherwise.
    """
    settings = load_settings()
    setup_logging(settings.LOG_LEVEL)
    try:
        results = asyncio.run(run_smoke(settings=settings))
    except Exception as e:
        logger.error("smoke_run_failed", error=str(e))
        return 1

    failed = [result.name for result in results if not result.passed]
    logger.info("smoke_summary", passed=len(results) - len(failed), total=len(results), failed=failed)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
