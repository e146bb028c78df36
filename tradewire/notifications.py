"""
Ephemeral user notifications derived from bus events.

The NotificationCenter subscribes to every event and keeps a short list of
human-readable notices. Each notice dismisses itself after the TTL unless it
is sticky (connection lost for good, session expired).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from tradewire.core.event_bus import Event, EventBus, EventType, Subscription
from tradewire.core.json_utils import dumps

log = logging.getLogger("tradewire")


class NotificationLevel(Enum):
    SUCCESS = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    notification_id: int
    level: NotificationLevel
    message: str
    event_type: EventType
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    sticky: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.notification_id,
            "level": self.level.name,
            "message": self.message,
            "type": self.event_type.name,
            "timestamp_ms": self.timestamp_ms,
            "sticky": self.sticky,
        }


def _order_created(data: Dict[str, Any]) -> str:
    return f"New order: {data.get('action')} {data.get('amount')} {data.get('asset')}"


def _order_matched(data: Dict[str, Any]) -> str:
    return f"Order matched: {data.get('filledAmount')} {data.get('asset')} @ {data.get('price')}"


def _trade_executed(data: Dict[str, Any]) -> Optional[str]:
    # Buyers get their own confirmation flow; only the selling side is told
    if str(data.get("side", "")).lower() != "sell":
        return None
    return f"Trade executed: {data.get('amount')} {data.get('asset')} @ {data.get('price')}"


def _declined(data: Dict[str, Any]) -> str:
    return data.get("message") or f"Counterparty declined {data.get('asset') or 'the trade'}"


def _expired(data: Dict[str, Any]) -> str:
    return data.get("message") or "Confirmation window expired"


# event type -> (level, message builder, sticky)
RULES: Dict[EventType, tuple] = {
    EventType.ORDER_CREATED: (NotificationLevel.SUCCESS, _order_created, False),
    EventType.ORDER_MATCHED: (NotificationLevel.SUCCESS, _order_matched, False),
    EventType.ORDER_CANCELLED: (
        NotificationLevel.INFO,
        lambda d: f"Order cancelled: {d.get('orderId')}",
        False,
    ),
    EventType.TRADE_EXECUTED: (NotificationLevel.SUCCESS, _trade_executed, False),
    EventType.CONNECTION_RESTORED: (NotificationLevel.SUCCESS, lambda d: "Connection restored", False),
    EventType.RECONNECT_FAILED: (
        NotificationLevel.ERROR,
        lambda d: "Connection lost. Please refresh the page.",
        True,
    ),
    EventType.AUTH_EXPIRED: (
        NotificationLevel.ERROR,
        lambda d: "Session expired. Please log in again.",
        True,
    ),
    EventType.PARTIAL_FILL_DECLINED: (NotificationLevel.WARNING, _declined, False),
    EventType.COUNTERPARTY_DECLINED: (NotificationLevel.WARNING, _declined, False),
    EventType.CONFIRMATION_EXPIRED: (NotificationLevel.WARNING, _expired, False),
}


class NotificationCenter:
    """
    Usage:
        center = NotificationCenter(bus, ttl_sec=4)
        center.attach()
        ...
        for n in center.active():
            print(n.message)
    """

    def __init__(
        self,
        bus: EventBus,
        ttl_sec: float = 4.0,
        on_notify: Optional[Callable[[Notification], None]] = None,
    ) -> None:
        self._bus = bus
        self._ttl = ttl_sec
        self._on_notify = on_notify
        self._active: Dict[int, Notification] = {}
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._next_id = 1
        self._subscription: Optional[Subscription] = None

    def attach(self) -> None:
        if self._subscription is None:
            self._subscription = self._bus.subscribe_all(
                self._on_event,
                filter_fn=lambda e: e.type in RULES,
                name="notifications",
            )

    def close(self) -> None:
        if self._subscription is not None:
            self._bus.unsubscribe(None, self._subscription)
            self._subscription = None
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._active.clear()

    def _on_event(self, event: Event) -> None:
        level, build, sticky = RULES[event.type]
        message = build(event.data)
        if message:
            self.notify(level, message, event.type, sticky=sticky, details=event.data)

    def notify(
        self,
        level: NotificationLevel,
        message: str,
        event_type: EventType,
        sticky: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            notification_id=self._next_id,
            level=level,
            message=message,
            event_type=event_type,
            sticky=sticky,
            details=details or {},
        )
        self._next_id += 1
        self._active[notification.notification_id] = notification

        if not sticky and self._ttl > 0:
            loop = asyncio.get_running_loop()
            self._timers[notification.notification_id] = loop.call_later(
                self._ttl, self.dismiss, notification.notification_id
            )

        log.log(
            logging.WARNING if level in (NotificationLevel.WARNING, NotificationLevel.ERROR) else logging.INFO,
            dumps({"event": "notification", **notification.to_dict()}),
        )
        if self._on_notify:
            self._on_notify(notification)
        return notification

    def dismiss(self, notification_id: int) -> bool:
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        return self._active.pop(notification_id, None) is not None

    def active(self) -> List[Notification]:
        return list(self._active.values())
