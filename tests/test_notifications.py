"""Tests for NotificationCenter."""

import asyncio

import pytest

from tradewire.core.event_bus import EventType
from tradewire.notifications import NotificationCenter, NotificationLevel


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_order_messages(self, bus):
        center = NotificationCenter(bus, ttl_sec=0)
        center.attach()

        await bus.emit(EventType.ORDER_CREATED, action="bid", amount=5, asset="WTI")
        await bus.emit(EventType.ORDER_MATCHED, filledAmount=5, asset="WTI", price=70)
        await bus.emit(EventType.ORDER_CANCELLED, orderId="o1")
        await bus.drain()

        assert [n.message for n in center.active()] == [
            "New order: bid 5 WTI",
            "Order matched: 5 WTI @ 70",
            "Order cancelled: o1",
        ]

    @pytest.mark.asyncio
    async def test_trade_only_for_seller(self, bus):
        center = NotificationCenter(bus, ttl_sec=0)
        center.attach()

        await bus.emit(EventType.TRADE_EXECUTED, side="buy", amount=1, asset="WTI", price=70)
        await bus.emit(EventType.TRADE_EXECUTED, side="sell", amount=2, asset="WTI", price=71)
        await bus.drain()

        assert [n.message for n in center.active()] == ["Trade executed: 2 WTI @ 71"]

    @pytest.mark.asyncio
    async def test_auto_dismiss(self, bus):
        center = NotificationCenter(bus, ttl_sec=0.01)
        center.attach()

        await bus.emit(EventType.CONNECTION_RESTORED)
        await bus.drain()
        assert center.active()[0].message == "Connection restored"

        await asyncio.sleep(0.05)
        assert center.active() == []

    @pytest.mark.asyncio
    async def test_sticky_connection_lost(self, bus):
        center = NotificationCenter(bus, ttl_sec=0.01)
        center.attach()

        await bus.emit(EventType.RECONNECT_FAILED, attempts=10)
        await bus.drain()
        await asyncio.sleep(0.05)

        [notice] = center.active()
        assert notice.sticky
        assert notice.level is NotificationLevel.ERROR
        assert notice.message == "Connection lost. Please refresh the page."

    @pytest.mark.asyncio
    async def test_ignores_unrelated_events_and_close(self, bus):
        center = NotificationCenter(bus, ttl_sec=0)
        center.attach()
        center.attach()

        await bus.emit(EventType.MARKET_UPDATE, asset="WTI")
        await bus.drain()
        assert center.active() == []

        center.close()
        await bus.emit(EventType.ORDER_CANCELLED, orderId="o1")
        await bus.drain()
        assert center.active() == []

    @pytest.mark.asyncio
    async def test_dismiss(self, bus):
        center = NotificationCenter(bus, ttl_sec=10)
        notice = center.notify(NotificationLevel.INFO, "hello", EventType.WS_CONNECTED)

        assert center.dismiss(notice.notification_id) is True
        assert center.dismiss(notice.notification_id) is False
