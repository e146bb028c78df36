"""
Client composition root.

TradingClient wires one TokenStore, one EventBus, one ConnectionManager and
the coordinators into a single object. Collaborators receive each other
through constructors; there is no module-level client instance.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Dict, Optional

from tradewire.api.client import ApiClient
from tradewire.auth.token_store import TokenStore
from tradewire.config.config import Settings
from tradewire.connection.lifecycle import ConnectionManager
from tradewire.connection.transport import TransportFactory, socketio_transport_factory
from tradewire.core.event_bus import EventBus
from tradewire.core.json_utils import dumps
from tradewire.events.router import EventRouter
from tradewire.infra.logging_cfg import log_event
from tradewire.monitoring.metrics_rich import ClientMetrics
from tradewire.negotiation.confirmations import ConfirmationCoordinator
from tradewire.negotiation.turns import TurnCoordinator, is_my_turn
from tradewire.notifications import NotificationCenter

log = logging.getLogger("tradewire")


class TradingClient:
    def __init__(
        self,
        cfg: Settings,
        tokens: Optional[TokenStore] = None,
        transport_factory: Optional[TransportFactory] = None,
        metrics: Optional[ClientMetrics] = None,
        bus: Optional[EventBus] = None,
        api: Optional[ApiClient] = None,
    ) -> None:
        self.cfg = cfg
        self.tokens = tokens or TokenStore(expiry_buffer_sec=cfg.token_expiry_buffer_sec)
        self.metrics = metrics or ClientMetrics()
        self.bus = bus or EventBus()
        self.api = api or ApiClient(cfg.api_base_url, self.tokens, timeout=cfg.http_timeout)
        structured = functools.partial(log_event, log)

        factory = transport_factory or socketio_transport_factory(
            cfg.ws_url,
            transports=cfg.ws_transports,
            connect_timeout=cfg.connect_timeout_sec,
        )
        self.connection = ConnectionManager(
            self.tokens,
            factory,
            self.bus,
            reconnect_interval_sec=cfg.reconnect_interval_sec,
            max_reconnect_attempts=cfg.max_reconnect_attempts,
            metrics=self.metrics,
            log_event=structured,
        )
        self.turns = TurnCoordinator(self.connection, self.bus, metrics=self.metrics, log_event=structured)
        self.confirmations = ConfirmationCoordinator(
            self.connection,
            self.bus,
            window_sec=cfg.confirmation_window_sec,
            metrics=self.metrics,
            log_event=structured,
        )
        self.router = EventRouter(
            self.bus, self.turns, self.confirmations, metrics=self.metrics, log_event=structured
        )
        self.connection.set_router(self.router)
        self.notifications = NotificationCenter(self.bus, ttl_sec=cfg.notification_ttl_sec)

        self._bus_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the bus and, when a credential is already stored, the connection."""
        if self._bus_task is None or self._bus_task.done():
            self._bus_task = asyncio.create_task(self.bus.start(), name="tradewire-event-bus")
        self.notifications.attach()
        for asset in self.cfg.markets:
            await self.connection.subscribe_market(asset)
        if self.tokens.get_valid_token():
            self.connection.start_auto_reconnect()
        log.info(dumps({"event": "client_started", "authenticated": self.tokens.is_authenticated}))

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        data = await self.api.login(username, password)
        self.connection.start_auto_reconnect()
        return data

    async def logout(self) -> None:
        await self.connection.disconnect()
        self.turns.clear()
        self.confirmations.clear()
        self.api.logout()

    def is_my_turn(self, asset: str) -> bool:
        return is_my_turn(self.tokens.user_id, self.turns.current(asset))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "connection": self.connection.get_stats(),
            "router": self.router.get_stats(),
            "bus": self.bus.get_stats(),
            "pending_confirmations": len(self.confirmations.pending()),
            "active_turns": len(self.turns.active_turns()),
        }

    async def close(self) -> None:
        await self.connection.disconnect()
        self.notifications.close()
        await self.bus.drain(timeout=1.0)
        self.bus.stop()
        if self._bus_task is not None:
            self._bus_task.cancel()
            await asyncio.gather(self._bus_task, return_exceptions=True)
        await self.api.close()
        log.info(dumps({"event": "client_closed"}))
