"""
Pytest configuration and fixtures.

FakeTransport stands in for the socket.io client: it records outbound frames
and lets a test fire inbound frames and lifecycle signals by name.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add the repo root to sys.path so tests import the tradewire package
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from tradewire.auth.token_store import TokenStore
from tradewire.connection.lifecycle import ConnectionManager
from tradewire.core.errors import NotConnectedError
from tradewire.core.event_bus import EventBus, EventType
from tradewire.events.router import EventRouter
from tradewire.monitoring.metrics_rich import ClientMetrics
from tradewire.negotiation.confirmations import ConfirmationCoordinator
from tradewire.negotiation.turns import TurnCoordinator


class FakeTransport:
    def __init__(self, token: str, fail_with: Optional[Exception] = None) -> None:
        self.token = token
        self.fail_with = fail_with
        self.connected = False
        self.handlers: Dict[str, Any] = {}
        self.on_calls: List[str] = []
        self.emitted: List[tuple] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    def on(self, event: str, handler: Any) -> None:
        self.on_calls.append(event)
        self.handlers[event] = handler

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.connected = True
        handler = self.handlers.get("connect")
        if handler is not None:
            await handler()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def emit(self, event: str, payload: Any = None) -> None:
        if not self.connected:
            raise NotConnectedError(f"emit {event}")
        self.emitted.append((event, payload))

    async def deliver(self, event: str, payload: Any = None) -> None:
        """Fire an inbound frame through the attached handler."""
        await self.handlers[event](payload)

    async def drop(self, reason: str = "transport close") -> None:
        """Simulate the server or network closing the socket."""
        self.connected = False
        await self.handlers["disconnect"](reason)

    def frames(self, name: str) -> List[Any]:
        return [payload for event, payload in self.emitted if event == name]


class FakeTransportFactory:
    def __init__(self) -> None:
        self.created: List[FakeTransport] = []
        self.fail_with: Optional[Exception] = None

    def __call__(self, token: str) -> FakeTransport:
        transport = FakeTransport(token, fail_with=self.fail_with)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@dataclass
class Harness:
    bus: EventBus
    tokens: TokenStore
    factory: FakeTransportFactory
    manager: ConnectionManager
    turns: TurnCoordinator
    confirmations: ConfirmationCoordinator
    router: EventRouter
    metrics: ClientMetrics
    on_logout: MagicMock

    async def events(self, event_type: Optional[EventType] = None) -> list:
        await self.bus.drain()
        return self.bus.get_history(event_type)


def build_harness(reconnect_interval_sec: float = 0.01, max_reconnect_attempts: int = 0) -> Harness:
    bus = EventBus()
    on_logout = MagicMock()
    tokens = TokenStore(on_logout=on_logout)
    tokens.store("tok-1", 3600, {"id": "u1", "username": "alice"})
    factory = FakeTransportFactory()
    metrics = ClientMetrics()
    manager = ConnectionManager(
        tokens,
        factory,
        bus,
        reconnect_interval_sec=reconnect_interval_sec,
        max_reconnect_attempts=max_reconnect_attempts,
        metrics=metrics,
    )
    turns = TurnCoordinator(manager, bus, metrics=metrics)
    confirmations = ConfirmationCoordinator(manager, bus, metrics=metrics)
    router = EventRouter(bus, turns, confirmations, metrics=metrics)
    manager.set_router(router)
    return Harness(bus, tokens, factory, manager, turns, confirmations, router, metrics, on_logout)


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()
