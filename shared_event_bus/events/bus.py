"""
Redis-backed event bus shared by the ERP backend services.

Provides pub/sub delivery to handlers registered in the same process and, when
a Redis URL is configured, fan-out to other processes over Redis pub/sub.
Without a broker the bus keeps working in local-only mode.
"""

import asyncio
import inspect
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

import redis.asyncio as redis
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from shared_event_bus.config.constants import DEFAULT_CHANNEL_PREFIX, DistributedOutcome, EventName
from shared_event_bus.config.settings import Settings, load_settings
from shared_event_bus.events.types import (
    EventBusError,
    EventData,
    EventEnvelope,
    PublishResult,
    payload_model_for,
    resolve_event_name,
)
from shared_event_bus.utils.decorators import retry
from shared_event_bus.utils.logger import get_logger

EventHandler = Callable[[EventEnvelope], Union[Awaitable[None], None]]
Middleware = Callable[[EventName, EventEnvelope], Union[Awaitable[EventEnvelope], EventEnvelope]]
ClientFactory = Callable[[str], Any]

# Remote delivery task the current handler runs under, if any
_current_delivery: ContextVar[Optional[asyncio.Task]] = ContextVar("current_delivery", default=None)


def _default_client_factory(url: str) -> Any:
    return redis.from_url(url, decode_responses=True)


class EventBus:
    """
    Event bus bound to one publishing service.

    PURPOSE: Decouple the backend services by letting each of them publish
    domain events and subscribe to the events of the others.

    CALLED BY: Service startup code (create_event_bus) and any module that
    publishes or handles domain events.

    Attributes:
        source: Name of the owning service, stamped on every envelope.
        channel_prefix: Redis channel namespace; channels are "{prefix}:{event_name}".
        _handlers: Registry of local handlers by event name, in registration order.
        _middlewares: Envelope transformers applied on publish.
        _redis: Async Redis client, None in local-only mode.
        _pubsub: Pattern subscription feeding the listener task.
    """

    def __init__(
        self,
        source: str,
        redis_url: Optional[str] = None,
        *,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
        connect_retries: int = 2,
        connect_retry_delay: float = 0.5,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        """
        Initialize a local-only bus. Call connect() to enable the broker.

        Args:
            source: Non-empty name of the owning service.
            redis_url: Redis connection URL; empty or None keeps the bus local-only.
            channel_prefix: Namespace for Redis channels.
            connect_retries: Ping retries before giving up on the broker.
            connect_retry_delay: Initial backoff between ping retries, in seconds.
            client_factory: Builds the Redis client from the URL (tests inject fakes).

        Raises:
            ValueError: If source is empty.
        """
        if not isinstance(source, str) or not source.strip():
            raise ValueError("EventBus source must be a non-empty string")

        self.source: str = source
        self.channel_prefix: str = channel_prefix
        self._redis_url: str = (redis_url or "").strip()
        self._connect_retries = connect_retries
        self._connect_retry_delay = connect_retry_delay
        self._client_factory: ClientFactory = client_factory or _default_client_factory
        self._logger = get_logger("events.bus").bind(source=source)

        self._handlers: Dict[EventName, List[EventHandler]] = {}
        self._middlewares: List[Middleware] = []

        self._redis: Optional[Any] = None
        self._pubsub: Optional[Any] = None
        self._listener: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """True while distributed mode is active."""
        return self._redis is not None and self._pubsub is not None

    def channel_for(self, event_name: Union[EventName, str]) -> str:
        return f"{self.channel_prefix}:{resolve_event_name(event_name).value}"

    async def connect(self) -> bool:
        """
        Establish the Redis transport and start listening for remote events.

        Any failure is logged and leaves the bus in local-only mode.

        Returns:
            bool: True if distributed mode is now active.
        """
        if self.is_connected:
            return True
        if not self._redis_url:
            self._logger.info("event_bus_local_only", reason="no_redis_url")
            return False

        client = None
        pubsub = None
        try:
            client = self._client_factory(self._redis_url)
            ping = retry(
                max_retries=self._connect_retries,
                delay=self._connect_retry_delay,
            )(client.ping)
            await ping()

            pubsub = client.pubsub()
            await pubsub.psubscribe(f"{self.channel_prefix}:*")
        except Exception as e:
            self._logger.warning(
                "redis_connection_failed",
                error=str(e),
                fallback="local_only"
            )
            if pubsub is not None:
                await self._close_quietly(pubsub, "redis_pubsub")
            if client is not None:
                await self._close_quietly(client, "redis_client")
            return False

        self._redis = client
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen())
        self._logger.info("redis_connected", channel_pattern=f"{self.channel_prefix}:*")
        return True

    async def disconnect(self) -> None:
        """
        Stop the listener and close the Redis connections.

        Errors are logged, never raised. Safe to call more than once.
        """
        listener, self._listener = self._listener, None
        pubsub, self._pubsub = self._pubsub, None
        client, self._redis = self._redis, None

        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self._logger.error("listener_shutdown_failed", error=str(e))

        await self._cancel_inflight()

        if pubsub is not None:
            try:
                await pubsub.punsubscribe()
            except Exception as e:
                self._logger.warning("redis_unsubscribe_failed", error=str(e))
            await self._close_quietly(pubsub, "redis_pubsub")

        if client is not None:
            await self._close_quietly(client, "redis_client")
            self._logger.info("redis_disconnected")

    async def shutdown(self) -> None:
        """Disconnect the transport and drop every local handler."""
        await self.disconnect()
        self.clear()
        self._logger.info("event_bus_shutdown")

    async def _cancel_inflight(self) -> None:
        """Cancel remote deliveries still running and wait for them to finish."""
        current = _current_delivery.get()
        pending = [task for task in self._inflight if task is not current and not task.done()]
        self._inflight.clear()
        if not pending:
            return

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._logger.info("inflight_deliveries_cancelled", count=len(pending))

    async def _close_quietly(self, resource: Any, name: str) -> None:
        try:
            await resource.aclose()
        except Exception as e:
            self._logger.warning("redis_close_failed", resource=name, error=str(e))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        event_name: Union[EventName, str],
        handler: EventHandler,
    ) -> Callable[[], bool]:
        """
        Register a handler for an event name.

        Handlers may be plain functions or coroutine functions taking the
        EventEnvelope. They run in registration order for each delivery, for
        local publishes and for events received from other services alike.

        Args:
            event_name: Registry name to listen for.
            handler: Callable(EventEnvelope) -> None or awaitable.

        Returns:
            Callable[[], bool]: Removes this registration when called.

        Raises:
            UnknownEventError: If event_name is not registered.
        """
        name = resolve_event_name(event_name)
        self._handlers.setdefault(name, []).append(handler)
        self._logger.info(
            "handler_registered",
            event_name=name.value,
            handler=getattr(handler, "__name__", repr(handler))
        )

        def _unsubscribe() -> bool:
            return self.unsubscribe(name, handler)

        return _unsubscribe

    def unsubscribe(self, event_name: Union[EventName, str], handler: EventHandler) -> bool:
        """
        Remove the earliest registration of handler for event_name.

        Returns:
            bool: True if a registration was removed.
        """
        name = resolve_event_name(event_name)
        handlers = self._handlers.get(name)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[name]
        self._logger.info("handler_unregistered", event_name=name.value)
        return True

    def get_subscriber_count(self, event_name: Optional[Union[EventName, str]] = None) -> int:
        """
        Count handlers for one event name, or event names with handlers when omitted.
        """
        if event_name is not None:
            return len(self._handlers.get(resolve_event_name(event_name), []))
        return len(self._handlers)

    def clear(self) -> None:
        """Drop every local handler."""
        self._handlers.clear()
        self._logger.info("handlers_cleared")

    def use(self, middleware: Middleware) -> None:
        """
        Add an envelope transformer applied to every publish, in registration order.

        A middleware receives (event_name, envelope) and returns the envelope to
        deliver; use envelope.model_copy(update=...) to change it.
        """
        self._middlewares.append(middleware)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(
        self,
        event_name: Union[EventName, str],
        data: Union[EventData, Mapping[str, Any]],
    ) -> PublishResult:
        """
        Publish an event to local handlers and, when connected, to Redis.

        Local handlers have all finished when this returns. The Redis leg is
        fire-and-forget: its outcome is reported in the result, never raised.

        Args:
            event_name: Registry name of the event.
            data: Payload model or mapping (camelCase or snake_case keys).

        Returns:
            PublishResult: Envelope plus local and distributed outcome.

        Raises:
            UnknownEventError: If event_name is not registered.
            pydantic.ValidationError: If data does not match the payload model.
            EventBusError: If a middleware returns an unusable envelope.
        """
        envelope = EventEnvelope.build(event_name, data, self.source)
        envelope = await self._apply_middlewares(envelope)

        self._logger.info(
            "event_published",
            event_name=envelope.event_name.value,
            event_id=envelope.event_id
        )

        invoked, failed = await self._deliver(envelope)
        distributed = await self._publish_distributed(envelope)

        return PublishResult(
            envelope=envelope,
            handlers_invoked=invoked,
            handlers_failed=failed,
            distributed=distributed,
        )

    async def _apply_middlewares(self, envelope: EventEnvelope) -> EventEnvelope:
        """
        Run the middlewares over a freshly built envelope.

        Raises:
            EventBusError: If a middleware returns something other than an
                envelope for the same event name carrying that event's payload model.
        """
        event_name = envelope.event_name
        model = payload_model_for(event_name)
        for middleware in self._middlewares:
            name = getattr(middleware, "__name__", repr(middleware))
            result = middleware(event_name, envelope)
            if inspect.isawaitable(result):
                result = await result
            if not isinstance(result, EventEnvelope):
                raise EventBusError(
                    f"Middleware {name} returned {type(result).__name__}, expected EventEnvelope"
                )
            if result.event_name != event_name or not isinstance(result.data, model):
                raise EventBusError(
                    f"Middleware {name} changed the event or its payload type for {event_name.value}"
                )
            envelope = result
        return envelope

    async def _publish_distributed(self, envelope: EventEnvelope) -> DistributedOutcome:
        client = self._redis
        if client is None:
            return DistributedOutcome.SKIPPED_NO_TRANSPORT

        try:
            message = envelope.to_json()
        except (PydanticSerializationError, TypeError, ValueError) as e:
            self._logger.error(
                "event_serialization_failed",
                event_name=envelope.event_name.value,
                event_id=envelope.event_id,
                error=str(e)
            )
            return DistributedOutcome.FAILED_SERIALIZATION

        try:
            await client.publish(self.channel_for(envelope.event_name), message)
        except Exception as e:
            self._logger.error(
                "redis_publish_failed",
                event_name=envelope.event_name.value,
                event_id=envelope.event_id,
                error=str(e)
            )
            return DistributedOutcome.FAILED_TRANSPORT

        return DistributedOutcome.SENT

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, envelope: EventEnvelope) -> Tuple[int, int]:
        """
        Run every handler for the envelope, each isolated from the others.

        The handler list is snapshotted so subscriptions made by a running
        handler apply from the next delivery on.

        Returns:
            Tuple[int, int]: (handlers invoked, handlers failed).
        """
        handlers = list(self._handlers.get(envelope.event_name, ()))
        if not handlers:
            return 0, 0

        outcomes = await asyncio.gather(
            *(self._invoke(handler, envelope) for handler in handlers)
        )
        return len(handlers), outcomes.count(False)

    async def _invoke(self, handler: EventHandler, envelope: EventEnvelope) -> bool:
        try:
            result = handler(envelope)
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            self._logger.error(
                "handler_error",
                event_name=envelope.event_name.value,
                event_id=envelope.event_id,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e)
            )
            return False

    async def _listen(self) -> None:
        """
        Consume the pattern subscription and dispatch remote events.

        Runs until cancelled by disconnect(). On a broker failure the bus falls
        back to local-only mode.
        """
        pubsub = self._pubsub
        if pubsub is None:
            return

        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                self._handle_remote_message(message.get("channel"), message.get("data"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("redis_subscription_error", error=str(e), fallback="local_only")
            await self.disconnect()

    def _event_name_from_channel(self, channel: Any) -> Optional[str]:
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")
        prefix = f"{self.channel_prefix}:"
        if isinstance(channel, str) and channel.startswith(prefix):
            return channel[len(prefix):]
        return None

    async def _deliver_remote(self, envelope: EventEnvelope) -> None:
        # Handler tasks inherit this, so a handler calling disconnect() skips its own delivery
        _current_delivery.set(asyncio.current_task())
        await self._deliver(envelope)

    def _handle_remote_message(self, channel: Any, raw: Any) -> None:
        try:
            envelope = EventEnvelope.from_json(raw, self._event_name_from_channel(channel))
        except (ValidationError, ValueError, TypeError) as e:
            self._logger.error("message_parsing_failed", error=str(e))
            return

        if envelope.source == self.source:
            self._logger.debug(
                "echo_suppressed",
                event_name=envelope.event_name.value,
                event_id=envelope.event_id
            )
            return

        self._logger.info(
            "event_received",
            event_name=envelope.event_name.value,
            event_id=envelope.event_id,
            origin=envelope.source
        )
        task = asyncio.create_task(self._deliver_remote(envelope))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)


async def create_event_bus(
    source: str,
    redis_url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> EventBus:
    """
    Build an EventBus for a service and connect it to Redis when configured.

    PURPOSE: Single construction entry point used at service startup. Settings
    are read from the environment at call time unless supplied.

    Args:
        source: Non-empty service name, e.g. "crm-service".
        redis_url: Overrides settings.REDIS_URL when given.
        settings: Preloaded settings; load_settings() is used otherwise.
        client_factory: Optional Redis client factory (tests inject fakes).

    Returns:
        EventBus: Connected bus, or a local-only bus if no broker is reachable.
    """
    settings = settings or load_settings()
    bus = EventBus(
        source,
        redis_url if redis_url is not None else settings.REDIS_URL,
        channel_prefix=settings.EVENT_CHANNEL_PREFIX,
        connect_retries=settings.EVENT_BUS_CONNECT_RETRIES,
        connect_retry_delay=settings.EVENT_BUS_CONNECT_RETRY_DELAY,
        client_factory=client_factory,
    )
    await bus.connect()
    return bus


# Per-process event bus, injected at service startup
_bus: Optional[EventBus] = None


def set_event_bus(bus: Optional[EventBus]) -> None:
    """
    Store the service's EventBus as the process-wide instance.

    PURPOSE: Let startup code inject the connected bus so modules calling
    get_event_bus() share it. Passing None resets it (tests, shutdown).

    Args:
        bus: Connected EventBus, or None.
    """
    global _bus
    _bus = bus


def get_event_bus() -> EventBus:
    """
    Return the EventBus injected with set_event_bus().

    Raises:
        RuntimeError: If no bus has been set for this process.
    """
    if _bus is None:
        raise RuntimeError("Event bus not initialised; call set_event_bus() at startup")
    return _bus
