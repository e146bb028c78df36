"""
Event Bus: local, same-process distribution of typed client events.

Every inbound frame the router accepts is re-published here so UI-facing
collaborators can subscribe without coupling to the transport.

Features:
- Typed events (EventType enum + Event dataclass)
- Async or sync handlers
- Priority-based handler execution
- Error isolation (one handler failure doesn't stop others)
- Event history for debugging
- FIFO processing: events reach handlers in publish order
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Coroutine, Dict, List, Optional, Union

from tradewire.core.json_utils import dumps

log = logging.getLogger("tradewire")


class EventType(Enum):
    """
    Event types supported by the event bus.

    Naming convention: NOUN_VERB for state changes.
    """
    # Connection lifecycle
    CONNECTION_STATE_CHANGED = auto()  # Any ConnectionState transition
    WS_CONNECTED = auto()              # Transport handshake completed
    WS_DISCONNECTED = auto()           # Transport dropped (reason in data)
    WS_CONNECT_ERROR = auto()          # Handshake failed (transient)
    CONNECTION_RESTORED = auto()       # Reconnected after a prior success
    RECONNECT_ATTEMPT = auto()         # Auto-reconnect timer fired
    RECONNECT_ERROR = auto()           # Auto-reconnect attempt failed
    RECONNECT_FAILED = auto()          # Auto-reconnect gave up
    AUTH_EXPIRED = auto()              # Credential rejected, forced logout

    # Order lifecycle
    ORDER_CREATED = auto()
    ORDER_UPDATED = auto()
    ORDER_MATCHED = auto()
    ORDER_CANCELLED = auto()
    ORDER_PARTIALLY_FILLED = auto()
    ORDER_FILLED = auto()

    # Trades and market data
    TRADE_EXECUTED = auto()
    MARKET_UPDATE = auto()
    MARKET_PRICE_CHANGED = auto()
    MARKET_REMAINING_QUANTITY = auto()

    # Negotiation and confirmation protocols
    SELLER_APPROVAL_REQUESTED = auto()
    SELLER_APPROVAL_RESOLVED = auto()
    NEGOTIATION_YOUR_TURN = auto()
    NEGOTIATION_RESPONDED = auto()
    QUANTITY_CONFIRMATION_REQUESTED = auto()
    PARTIAL_FILL_APPROVAL_REQUESTED = auto()
    PARTIAL_FILL_DECLINED = auto()
    COUNTERPARTY_DECLINED = auto()
    CONFIRMATION_EXPIRED = auto()
    CONFIRMATION_RESPONDED = auto()


@dataclass
class Event:
    """
    Base event container.

    All events have:
    - type: EventType enum value
    - data: Dict with event-specific payload
    - timestamp_ms: When event was created
    - source: Where event originated (frame name, "lifecycle", ...)
    - correlation_id: Confirmation key or asset for tracing related events
    """
    type: EventType
    data: Dict[str, Any]
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    source: Optional[str] = None
    correlation_id: Optional[str] = None

    def __str__(self) -> str:
        return f"Event({self.type.name}, ts={self.timestamp_ms}, source={self.source})"


# Handler type: async function or sync function taking Event
Handler = Union[
    Callable[[Event], Coroutine[Any, Any, None]],
    Callable[[Event], None],
]


@dataclass
class Subscription:
    """Internal subscription record."""
    handler: Handler
    priority: int = 0  # Higher = called first
    filter_fn: Optional[Callable[[Event], bool]] = None
    name: Optional[str] = None


class EventBus:
    """
    Local event bus for decoupled UI-facing subscribers.

    Usage:
        bus = EventBus()

        bus.subscribe(EventType.SELLER_APPROVAL_REQUESTED, show_prompt)
        bus.subscribe_all(status_line.update, priority=10)

        # Start processing (in background task)
        asyncio.create_task(bus.start())

        # Router side
        await bus.emit(EventType.ORDER_CREATED, source="order:created", **payload)

        bus.stop()

    All operations run on the owning event loop; there is no locking.
    """

    DEFAULT_HISTORY_SIZE = 500
    # 0 = unlimited; protocol volume is human-paced
    DEFAULT_QUEUE_SIZE = 0

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        """
        Initialize EventBus.

        Args:
            history_size: Max events to keep in history (0 = disabled)
            queue_size: Max queue size (0 = unlimited)
            log_event: Callback for structured logging
        """
        self._log = log_event or self._default_log

        self._subscribers: Dict[EventType, List[Subscription]] = {}
        self._global_subscribers: List[Subscription] = []

        maxsize = queue_size if queue_size > 0 else 0
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)

        self._running = False

        self._history_size = history_size
        self._history: List[Event] = []

        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "handler_errors": 0,
            "queue_high_water": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Subscription Management
    # -------------------------------------------------------------------------

    @staticmethod
    def _insert_sorted(subs: List[Subscription], sub: Subscription) -> None:
        insert_idx = len(subs)
        for i, existing in enumerate(subs):
            if existing.priority < sub.priority:
                insert_idx = i
                break
        subs.insert(insert_idx, sub)

    def subscribe(
        self,
        event_type: EventType,
        handler: Handler,
        priority: int = 0,
        filter_fn: Optional[Callable[[Event], bool]] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """
        Subscribe to a specific event type.

        Args:
            event_type: Type of events to receive
            handler: Async or sync function to handle events
            priority: Higher priority handlers called first (default 0)
            filter_fn: Optional filter function (receives event, returns bool)
            name: Optional name for debugging

        Returns:
            Subscription object (for unsubscribing)
        """
        sub = Subscription(handler=handler, priority=priority, filter_fn=filter_fn, name=name)
        subs = self._subscribers.setdefault(event_type, [])
        self._insert_sorted(subs, sub)

        self._log(
            "event_bus_subscribe",
            event_type=event_type.name,
            handler_name=name or getattr(handler, "__name__", "handler"),
            priority=priority,
            total_subscribers=len(subs),
        )
        return sub

    def subscribe_all(
        self,
        handler: Handler,
        priority: int = 0,
        filter_fn: Optional[Callable[[Event], bool]] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """
        Subscribe to all event types (global subscriber).

        Global subscribers receive every event and are called before
        type-specific subscribers.
        """
        sub = Subscription(handler=handler, priority=priority, filter_fn=filter_fn, name=name)
        self._insert_sorted(self._global_subscribers, sub)
        self._log(
            "event_bus_subscribe_all",
            handler_name=name or getattr(handler, "__name__", "handler"),
            priority=priority,
        )
        return sub

    def unsubscribe(self, event_type: Optional[EventType], subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Args:
            event_type: Event type (None for global)
            subscription: Subscription to remove

        Returns:
            True if removed, False if not found
        """
        if event_type is None:
            if subscription in self._global_subscribers:
                self._global_subscribers.remove(subscription)
                return True
            return False
        subs = self._subscribers.get(event_type, [])
        if subscription in subs:
            subs.remove(subscription)
            return True
        return False

    # -------------------------------------------------------------------------
    # Event Publishing
    # -------------------------------------------------------------------------

    async def publish(self, event: Event) -> bool:
        """
        Publish an event to the bus.

        Event is queued for processing by subscribers.

        Returns:
            True if queued, False if queue full
        """
        return self.publish_sync(event)

    def publish_sync(self, event: Event) -> bool:
        """
        Publish event from sync context (non-blocking).

        Convenience wrapper for callbacks that can't await.
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._stats["events_dropped"] += 1
            self._log("event_bus_queue_full", event_type=event.type.name, dropped=True)
            return False
        self._stats["events_published"] += 1
        qsize = self._queue.qsize()
        if qsize > self._stats["queue_high_water"]:
            self._stats["queue_high_water"] = qsize
        return True

    # -------------------------------------------------------------------------
    # Event Processing
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start processing events.

        Runs until stop() is called. Should be run as a background task.
        """
        self._running = True
        self._log("event_bus_started")

        while self._running:
            try:
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                await self._process_event(event)
            except asyncio.CancelledError:
                self._log("event_bus_cancelled")
                break
            except Exception as e:
                self._log("event_bus_error", error=str(e), error_type=type(e).__name__)

        self._log("event_bus_stopped")

    async def _process_event(self, event: Event) -> None:
        """Process a single event by calling all subscribers."""
        if self._history_size > 0:
            self._history.append(event)
            if len(self._history) > self._history_size:
                self._history.pop(0)

        handlers: List[Subscription] = []
        handlers.extend(self._global_subscribers)
        handlers.extend(self._subscribers.get(event.type, []))

        for sub in handlers:
            if sub.filter_fn and not sub.filter_fn(event):
                continue
            try:
                result = sub.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._stats["handler_errors"] += 1
                self._log(
                    "event_bus_handler_error",
                    event_type=event.type.name,
                    handler_name=sub.name or "unknown",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._stats["events_processed"] += 1

    def stop(self) -> None:
        """Stop processing events."""
        self._running = False

    async def drain(self, timeout: float = 5.0) -> int:
        """
        Process all queued events.

        Returns:
            Number of events processed
        """
        count = 0
        deadline = time.time() + timeout
        while not self._queue.empty() and time.time() < deadline:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._process_event(event)
            count += 1
        return count

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    def get_history(self, event_type: Optional[EventType] = None, limit: int = 100) -> List[Event]:
        """Get recent events from history (most recent last)."""
        events = self._history
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "history_size": len(self._history),
            "subscriber_count": sum(len(s) for s in self._subscribers.values()),
            "global_subscriber_count": len(self._global_subscribers),
            "running": self._running,
        }

    def get_subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    # -------------------------------------------------------------------------
    # Convenience Methods
    # -------------------------------------------------------------------------

    def create_event(
        self,
        event_type: EventType,
        source: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **data: Any,
    ) -> Event:
        """Create an event with keyword arguments as data."""
        return Event(type=event_type, data=data, source=source, correlation_id=correlation_id)

    async def emit(
        self,
        event_type: EventType,
        source: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **data: Any,
    ) -> bool:
        """Create and publish an event in one call."""
        event = self.create_event(event_type, source=source, correlation_id=correlation_id, **data)
        return await self.publish(event)

    def emit_sync(
        self,
        event_type: EventType,
        source: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **data: Any,
    ) -> bool:
        event = self.create_event(event_type, source=source, correlation_id=correlation_id, **data)
        return self.publish_sync(event)

    def clear(self) -> None:
        """Clear all state (for testing)."""
        self._subscribers.clear()
        self._global_subscribers.clear()
        self._history.clear()
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
