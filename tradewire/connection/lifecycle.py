"""
Connection Lifecycle Manager - the single persistent venue connection.

Owns:
- ConnectionState (DISCONNECTED / CONNECTING / CONNECTED), mutated only via
  _transition() against an explicit transition table
- The Session: one authenticated logical connection that survives transport
  reconnects and owns the EventDedupCache
- The fixed-interval auto-reconnect timer
- Handler attachment: the router is attached exactly once per transport object

State Diagram:

    DISCONNECTED ──connect()──> CONNECTING ──handshake ok──> CONNECTED
         ^                          │                            │
         │                          │ connect error              │ transport drop /
         └──────────────────────────┴────────────────────────────┘ disconnect()

Transient failures arm the reconnect timer. Auth failures force a logout
through the TokenProvider and never arm it.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

from tradewire.auth.token_store import TokenProvider
from tradewire.connection.transport import Transport, TransportFactory, describe_error, is_auth_error
from tradewire.core.errors import AuthExpiredError, NotConnectedError, TransientNetworkError
from tradewire.core.event_bus import EventBus, EventType
from tradewire.core.json_utils import dumps
from tradewire.events.dedup import EventDedupCache

if TYPE_CHECKING:
    from tradewire.events.router import EventRouter
    from tradewire.monitoring.metrics_rich import ClientMetrics

log = logging.getLogger("tradewire")


class ConnectionState(Enum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2


VALID_TRANSITIONS: Dict[ConnectionState, List[ConnectionState]] = {
    ConnectionState.DISCONNECTED: [ConnectionState.CONNECTING],
    ConnectionState.CONNECTING: [ConnectionState.CONNECTED, ConnectionState.DISCONNECTED],
    ConnectionState.CONNECTED: [ConnectionState.DISCONNECTED],
}


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: ConnectionState
    to_state: ConnectionState
    timestamp_ms: int
    reason: Optional[str] = None


@dataclass
class Session:
    """
    One authenticated logical connection.

    Created on the first connect(), destroyed by disconnect() or an auth
    failure. Each reconnect binds a new transport and resets
    handlers_attached; the dedup cache carries over so redelivered frames
    are still recognised.
    """
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    dedup: EventDedupCache = field(default_factory=EventDedupCache)
    transport: Optional[Transport] = None
    handlers_attached: bool = False
    transports_created: int = 0

    def bind(self, transport: Transport) -> None:
        self.transport = transport
        self.handlers_attached = False
        self.transports_created += 1

    @property
    def is_live(self) -> bool:
        return self.transport is not None and self.transport.connected


class ConnectionManager:
    """
    Keeps a single authenticated session alive across network failures.

    Usage:
        manager = ConnectionManager(tokens, socketio_transport_factory(url), bus)
        manager.set_router(router)

        manager.start_auto_reconnect()   # after login / on start-up with a token
        await manager.emit("negotiation:response", {...})
        await manager.disconnect()

    Single event loop, no locks: every mutation happens in loop callbacks.
    """

    HISTORY_SIZE = 100

    def __init__(
        self,
        tokens: TokenProvider,
        transport_factory: TransportFactory,
        bus: EventBus,
        router: Optional["EventRouter"] = None,
        reconnect_interval_sec: float = 5.0,
        max_reconnect_attempts: int = 0,
        metrics: Optional["ClientMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        """
        Args:
            tokens: Credential source; also performs the forced logout
            transport_factory: Builds one transport per connect attempt from a token
            bus: Local event bus for lifecycle notifications
            router: Inbound router attached to every new transport
            reconnect_interval_sec: Fixed auto-reconnect interval
            max_reconnect_attempts: Give up after this many timer attempts (0 = never)
            metrics: Optional prometheus metrics
            log_event: Callback for structured logging
        """
        self._tokens = tokens
        self._transport_factory = transport_factory
        self._bus = bus
        self._router: Optional["EventRouter"] = None
        self._interval = reconnect_interval_sec
        self._max_attempts = max_reconnect_attempts
        self._metrics = metrics
        self._log_event = log_event or self._default_log

        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[Session] = None
        self._connected_event = asyncio.Event()
        self._ever_connected = False

        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0

        self._desired_markets: Set[str] = set()
        self._history: List[StateTransition] = []
        self._stats = {
            "connect_attempts": 0,
            "connections": 0,
            "restorations": 0,
            "transient_failures": 0,
            "auth_failures": 0,
            "invalid_transitions_blocked": 0,
        }

        if router is not None:
            self.set_router(router)

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, dumps({"event": event, **kwargs}))

    def set_router(self, router: "EventRouter") -> None:
        self._router = router
        router.bind_lifecycle(self)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def dedup_cache(self) -> Optional[EventDedupCache]:
        return self._session.dedup if self._session else None

    @property
    def auto_reconnect_active(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def desired_markets(self) -> Set[str]:
        return set(self._desired_markets)

    def get_history(self) -> List[StateTransition]:
        return list(self._history)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "state": self._state.name,
            "session_id": self._session.session_id if self._session else None,
            "reconnect_attempts": self._reconnect_attempts,
            "auto_reconnect_active": self.auto_reconnect_active,
        }

    def _transition(self, new_state: ConnectionState, reason: str) -> bool:
        """The only path that mutates ConnectionState."""
        old_state = self._state
        if new_state is old_state:
            return False
        if new_state not in VALID_TRANSITIONS[old_state]:
            self._stats["invalid_transitions_blocked"] += 1
            self._log_event(
                "invalid_state_transition",
                level=logging.ERROR,
                from_state=old_state.name,
                to_state=new_state.name,
                reason=reason,
            )
            return False

        self._state = new_state
        if new_state is ConnectionState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()

        self._history.append(StateTransition(old_state, new_state, int(time.time() * 1000), reason))
        if len(self._history) > self.HISTORY_SIZE:
            self._history.pop(0)
        if self._metrics:
            self._metrics.connection_state.set(new_state.value)

        self._log_event("state_transition", from_state=old_state.name, to_state=new_state.name, reason=reason)
        self._bus.emit_sync(
            EventType.CONNECTION_STATE_CHANGED,
            source="lifecycle",
            from_state=old_state.name,
            to_state=new_state.name,
            reason=reason,
        )
        return True

    async def wait_until_connected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Connect / Disconnect
    # -------------------------------------------------------------------------

    def _is_current(self, transport: Optional[Transport]) -> bool:
        return transport is not None and self._session is not None and self._session.transport is transport

    def _install_handlers(self, session: Session) -> None:
        """Attach the router to the session's transport, once per transport object."""
        if session.handlers_attached:
            return
        if self._router is None:
            raise RuntimeError("ConnectionManager has no router; call set_router() first")
        self._router.attach(session.transport)
        session.handlers_attached = True
        self._log_event("handlers_attached", session_id=session.session_id, transport_no=session.transports_created)

    async def connect(self) -> bool:
        """
        Connect with the current credential.

        No-op when the current transport is live. A missing or expired token
        forces a logout instead of connecting.

        Returns:
            True if connected when the call returns
        """
        token = self._tokens.get_valid_token()
        if not token:
            self._log_event("connect_no_token", level=logging.WARNING)
            await self._fail_auth(None, "missing or expired token")
            return False

        session = self._session
        if session is not None and session.is_live:
            return True
        if self._state is ConnectionState.CONNECTING:
            self._log_event("connect_in_progress", level=logging.DEBUG)
            return False

        if session is None:
            session = self._session = Session()
            self._log_event("session_created", session_id=session.session_id)

        previous = session.transport
        transport = self._transport_factory(token)
        session.bind(transport)
        self._install_handlers(session)
        self._transition(ConnectionState.CONNECTING, "connect")
        self._stats["connect_attempts"] += 1
        if previous is not None:
            # Unbound first so its close signal is ignored as stale
            await self._retire(previous)

        try:
            await transport.connect()
        except AuthExpiredError as exc:
            await self._fail_auth(transport, str(exc))
            return False
        except TransientNetworkError as exc:
            self._fail_transient(transport, str(exc))
            return False
        except Exception as exc:
            # Unknown transport errors count as transient
            self._fail_transient(transport, f"{type(exc).__name__}: {exc}")
            return False

        if not self._is_current(transport):
            # disconnect() or an auth failure won the race while the handshake was in flight
            await self._retire(transport)
            return False
        if transport.connected:
            await self.on_transport_connected(transport)
        return self._state is ConnectionState.CONNECTED

    async def manual_connect(self) -> bool:
        """User-initiated connect: cancels a pending auto-reconnect first."""
        self.stop_auto_reconnect()
        self._log_event("manual_connect")
        if self._metrics:
            self._metrics.connect_attempts.labels(trigger="manual").inc()
        return await self.connect()

    async def disconnect(self) -> None:
        """
        Tear down the connection and destroy the Session.

        State is DISCONNECTED before the transport is awaited, so a response
        racing this call fails with NotConnectedError instead of transmitting.
        """
        self.stop_auto_reconnect()
        session, self._session = self._session, None
        transport = None
        if session is not None:
            transport = session.transport
            session.transport = None
            session.handlers_attached = False
            session.dedup.clear()
        self._transition(ConnectionState.DISCONNECTED, "manual_disconnect")
        self._log_event("disconnected", session_id=session.session_id if session else None)
        if transport is not None:
            await self._retire(transport)

    async def _retire(self, transport: Transport) -> None:
        try:
            await transport.disconnect()
        except Exception as exc:
            self._log_event("transport_close_error", level=logging.DEBUG, err=str(exc))

    # -------------------------------------------------------------------------
    # Transport signals (delivered by the router)
    # -------------------------------------------------------------------------

    async def on_transport_connected(self, transport: Transport) -> None:
        if not self._is_current(transport) or self._state is ConnectionState.CONNECTED:
            return
        if not self._transition(ConnectionState.CONNECTED, "transport_connected"):
            return
        self._stats["connections"] += 1
        self._reconnect_attempts = 0
        self.stop_auto_reconnect()

        restored = self._ever_connected
        self._ever_connected = True
        session_id = self._session.session_id if self._session else None
        await self._bus.emit(EventType.WS_CONNECTED, source="lifecycle", session_id=session_id, restored=restored)
        if restored:
            self._stats["restorations"] += 1
            if self._metrics:
                self._metrics.reconnects.inc()
            self._log_event("connection_restored", session_id=session_id)
            await self._bus.emit(EventType.CONNECTION_RESTORED, source="lifecycle", session_id=session_id)

        await self._subscribe_feeds()

    async def on_transport_disconnected(self, transport: Transport, reason: Any = None) -> None:
        if not self._is_current(transport):
            return
        reason_text = describe_error(reason) or "transport_disconnect"
        if self._transition(ConnectionState.DISCONNECTED, reason_text):
            self._log_event("transport_disconnected", level=logging.WARNING, reason=reason_text)
            await self._bus.emit(EventType.WS_DISCONNECTED, source="lifecycle", reason=reason_text)
        self._arm_reconnect_timer()

    async def on_transport_connect_error(self, transport: Transport, detail: Any = None) -> None:
        if is_auth_error(detail):
            await self._fail_auth(transport, describe_error(detail))
        else:
            self._fail_transient(transport, describe_error(detail) or "connect_error")

    def _fail_transient(self, transport: Transport, reason: str) -> None:
        if not self._is_current(transport):
            return
        if self._transition(ConnectionState.DISCONNECTED, "connect_error"):
            self._stats["transient_failures"] += 1
            if self._metrics:
                self._metrics.connect_failures.labels(reason="transient").inc()
            self._log_event("connect_error", level=logging.WARNING, reason=reason)
            self._bus.emit_sync(EventType.WS_CONNECT_ERROR, source="lifecycle", reason=reason)
        self._arm_reconnect_timer()

    async def _fail_auth(self, transport: Optional[Transport], reason: str) -> None:
        """Credential rejected: forced logout, Session destroyed, no reconnection."""
        if transport is not None and not self._is_current(transport):
            return
        self.stop_auto_reconnect()
        session, self._session = self._session, None
        self._transition(ConnectionState.DISCONNECTED, "auth_expired")
        self._stats["auth_failures"] += 1
        if self._metrics:
            self._metrics.connect_failures.labels(reason="auth").inc()
        self._log_event("auth_expired", level=logging.ERROR, reason=reason)
        self._tokens.handle_auth_error()
        await self._bus.emit(EventType.AUTH_EXPIRED, source="lifecycle", reason=reason)
        if session is not None and session.transport is not None:
            await self._retire(session.transport)

    # -------------------------------------------------------------------------
    # Auto-reconnect
    # -------------------------------------------------------------------------

    def start_auto_reconnect(self) -> bool:
        """
        Attempt a connection now, then retry every interval while not connected.

        Idempotent: returns False without arming a second timer if one runs.
        Call after login and on start-up when a valid token is already stored.
        """
        if self.auto_reconnect_active:
            self._log_event("auto_reconnect_already_running", level=logging.DEBUG)
            return False
        self._reconnect_attempts = 0
        self._spawn_timer(immediate=True)
        return True

    def stop_auto_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
        self._log_event("auto_reconnect_stopped", level=logging.DEBUG)

    def _arm_reconnect_timer(self) -> None:
        """Arm the timer without an immediate attempt (after a failure)."""
        if self.auto_reconnect_active:
            return
        self._spawn_timer(immediate=False)

    def _spawn_timer(self, immediate: bool) -> None:
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(immediate),
            name="tradewire-auto-reconnect",
        )
        self._log_event("auto_reconnect_armed", immediate=immediate, interval_sec=self._interval)

    async def _reconnect_loop(self, immediate: bool) -> None:
        me = asyncio.current_task()
        try:
            if immediate:
                await self._reconnect_once()
            while self._reconnect_task is me and self._state is not ConnectionState.CONNECTED:
                await asyncio.sleep(self._interval)
                if self._reconnect_task is not me:
                    break
                if self._state is ConnectionState.DISCONNECTED:
                    await self._reconnect_once()
        except asyncio.CancelledError:
            self._log_event("auto_reconnect_cancelled", level=logging.DEBUG)
            raise
        finally:
            if self._reconnect_task is me:
                self._reconnect_task = None

    async def _reconnect_once(self) -> None:
        if self._max_attempts and self._reconnect_attempts >= self._max_attempts:
            self._log_event("reconnect_failed", level=logging.ERROR, attempts=self._reconnect_attempts)
            self._reconnect_task = None
            await self._bus.emit(EventType.RECONNECT_FAILED, source="lifecycle", attempts=self._reconnect_attempts)
            return

        self._reconnect_attempts += 1
        if self._metrics:
            self._metrics.connect_attempts.labels(trigger="timer").inc()
        self._log_event("reconnect_attempt", attempt=self._reconnect_attempts)
        await self._bus.emit(EventType.RECONNECT_ATTEMPT, source="lifecycle", attempt=self._reconnect_attempts)

        connected = await self.connect()
        if not connected and self._session is not None and self._state is ConnectionState.DISCONNECTED:
            await self._bus.emit(EventType.RECONNECT_ERROR, source="lifecycle", attempt=self._reconnect_attempts)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def emit(self, event: str, payload: Any = None) -> None:
        """
        Transmit one frame on the live transport.

        Raises:
            NotConnectedError: state is not CONNECTED; nothing is transmitted
        """
        session = self._session
        if self._state is not ConnectionState.CONNECTED or session is None or session.transport is None:
            raise NotConnectedError(f"emit {event}", self._state)
        await session.transport.emit(event, payload)
        self._log_event("frame_sent", level=logging.DEBUG, name=event)

    async def subscribe_market(self, asset: str) -> bool:
        """Track the market and subscribe now if connected (re-sent on every reconnect)."""
        self._desired_markets.add(asset)
        if not self.is_connected:
            return False
        await self.emit("subscribe_market", asset)
        return True

    async def unsubscribe_market(self, asset: str) -> bool:
        self._desired_markets.discard(asset)
        if not self.is_connected:
            return False
        await self.emit("unsubscribe_market", asset)
        return True

    async def _subscribe_feeds(self) -> None:
        frames = [("subscribe_orders", None), ("subscribe_trades", None)]
        frames.extend(("subscribe_market", asset) for asset in sorted(self._desired_markets))
        for name, payload in frames:
            try:
                await self.emit(name, payload)
            except NotConnectedError as exc:
                self._log_event("subscribe_failed", level=logging.WARNING, name=name, err=str(exc))
                return
