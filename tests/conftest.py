"""
PURPOSE: Pytest fixtures for the shared event bus tests.

Provides:
- In-memory fake Redis broker with pattern pub/sub that, like Redis, also
  delivers a message back to the connection pattern-subscribed by its publisher
- Test settings with instant connection retries
- Factories for local-only and broker-connected buses
- Sample payloads for every registered event
"""

import asyncio
from datetime import datetime, timezone
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List

import pytest
import pytest_asyncio

from shared_event_bus.config.settings import Settings
from shared_event_bus.events.bus import EventBus, set_event_bus


class FakePubSub:
    """Pattern subscription on the fake broker."""

    def __init__(self, broker: "FakeRedisBroker") -> None:
        self._broker = broker
        self.patterns: List[str] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def psubscribe(self, *patterns: str) -> None:
        if self._broker.down:
            raise ConnectionError("broker unavailable")
        self.patterns.extend(patterns)
        self._broker.attach(self)
        for pattern in patterns:
            self.queue.put_nowait({"type": "psubscribe", "pattern": None, "channel": pattern, "data": 1})

    async def punsubscribe(self, *patterns: str) -> None:
        self.patterns = [p for p in self.patterns if patterns and p not in patterns]
        if not self.patterns:
            self._broker.detach(self)

    def deliver(self, channel: str, data: Any) -> bool:
        for pattern in self.patterns:
            if fnmatchcase(channel, pattern):
                self.queue.put_nowait({"type": "pmessage", "pattern": pattern, "channel": channel, "data": data})
                return True
        return False

    def fail(self, error: Exception) -> None:
        self.queue.put_nowait(error)

    async def listen(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def aclose(self) -> None:
        self.closed = True
        self._broker.detach(self)
        self.queue.put_nowait(None)


class FakeRedis:
    """Async Redis client double covering the calls made by EventBus."""

    def __init__(self, broker: "FakeRedisBroker") -> None:
        self._broker = broker
        self.ping_calls = 0
        self.closed = False

    async def ping(self) -> bool:
        self.ping_calls += 1
        if self._broker.down:
            raise ConnectionError("broker unavailable")
        return True

    async def publish(self, channel: str, message: str) -> int:
        if self._broker.down:
            raise ConnectionError("broker unavailable")
        return self._broker.publish(channel, message)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self._broker)

    async def aclose(self) -> None:
        self.closed = True


class FakeRedisBroker:
    """Shared in-memory broker; every FakeRedis built by the factory talks to it."""

    def __init__(self) -> None:
        self.down = False
        self.published: List[Dict[str, str]] = []
        self.clients: List[FakeRedis] = []
        self._subscribers: List[FakePubSub] = []

    def attach(self, pubsub: FakePubSub) -> None:
        if pubsub not in self._subscribers:
            self._subscribers.append(pubsub)

    def detach(self, pubsub: FakePubSub) -> None:
        if pubsub in self._subscribers:
            self._subscribers.remove(pubsub)

    def publish(self, channel: str, message: str) -> int:
        self.published.append({"channel": channel, "message": message})
        return sum(1 for pubsub in list(self._subscribers) if pubsub.deliver(channel, message))

    def break_listeners(self) -> None:
        for pubsub in list(self._subscribers):
            pubsub.fail(ConnectionError("connection reset by peer"))

    def factory(self, url: str) -> FakeRedis:
        client = FakeRedis(self)
        self.clients.append(client)
        return client


@pytest.fixture
def broker() -> FakeRedisBroker:
    """
    PURPOSE: Fresh fake broker per test.
    """
    return FakeRedisBroker()


@pytest.fixture
def test_settings() -> Settings:
    """
    PURPOSE: Settings override with a broker URL and instant connection retries.
    """
    return Settings(
        REDIS_URL="redis://fake-redis:6379/0",
        EVENT_CHANNEL_PREFIX="minierp:events",
        EVENT_BUS_CONNECT_RETRIES=2,
        EVENT_BUS_CONNECT_RETRY_DELAY=0.0,
        LOG_LEVEL="DEBUG",
    )


@pytest_asyncio.fixture
async def make_bus(broker, test_settings):
    """
    PURPOSE: Factory for buses wired to the fake broker; shuts them down afterwards.

    Returns:
        Callable: async (source, connected=True) -> EventBus.
    """
    created: List[EventBus] = []

    async def _make(source: str, connected: bool = True) -> EventBus:
        bus = EventBus(
            source,
            test_settings.REDIS_URL if connected else None,
            channel_prefix=test_settings.EVENT_CHANNEL_PREFIX,
            connect_retries=test_settings.EVENT_BUS_CONNECT_RETRIES,
            connect_retry_delay=test_settings.EVENT_BUS_CONNECT_RETRY_DELAY,
            client_factory=broker.factory,
        )
        await bus.connect()
        created.append(bus)
        return bus

    yield _make

    for bus in created:
        await bus.shutdown()


@pytest_asyncio.fixture
async def local_bus(make_bus) -> EventBus:
    """
    PURPOSE: Local-only bus sourced "crm-service-test".
    """
    return await make_bus("crm-service-test", connected=False)


@pytest.fixture
def wait_until() -> Callable:
    """
    PURPOSE: Poll a condition on the running loop until it holds or times out.
    """
    async def _wait(condition: Callable[[], bool], timeout: float = 1.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    return _wait


@pytest.fixture(autouse=True)
def reset_event_bus_singleton():
    yield
    set_event_bus(None)


@pytest.fixture
def customer_created_data() -> Dict[str, Any]:
    return {
        "customerId": "test-customer-1",
        "customerName": "Test Customer",
        "channel": "ONLINE",
        "city": "Jakarta",
        "status": "ACTIVE",
    }


@pytest.fixture
def sample_payloads(customer_created_data) -> Dict[str, Dict[str, Any]]:
    """
    PURPOSE: One valid camelCase payload per registered event name.
    """
    moment = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    return {
        "customer:created": customer_created_data,
        "customer:updated": {
            "customerId": "test-customer-2",
            "customerName": "Updated Customer",
            "changes": {"status": "INACTIVE"},
        },
        "project:status:changed": {
            "projectId": "test-project-1",
            "projectName": "Test Project",
            "customerId": "test-customer-1",
            "previousStatus": "PROSPECT",
            "newStatus": "WON",
            "estimatedValue": 1000000,
            "contractValue": 1200000,
        },
        "estimation:approved": {
            "estimationId": "test-estimation-1",
            "projectId": "test-project-1",
            "projectName": "Test Project",
            "approvedBy": "test-user-1",
            "approvedAt": moment,
            "totalAmount": 5000000,
        },
        "invoice:created": {
            "invoiceId": "test-invoice-1",
            "invoiceNumber": "INV-2024-001",
            "customerId": "test-customer-1",
            "customerName": "Test Customer",
            "totalAmount": 1500000,
            "currency": "IDR",
            "status": "DRAFT",
            "invoiceDate": moment,
            "dueDate": moment,
        },
    }
