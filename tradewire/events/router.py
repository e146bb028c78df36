"""
EventRouter: the single attachment point for every inbound frame on a transport.

Each frame is unwrapped, translated into one EventType and re-published on
the local bus. Confirmation requests pass through the Session's dedup cache
before any subscriber sees them; terminal frames release their keys and
resolve the pending records. The router never transmits a response.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from tradewire.core.event_bus import Event, EventBus, EventType
from tradewire.core.json_utils import dumps, loads
from tradewire.negotiation.models import ConfirmationKind, ConfirmationRequest, seller_approval_key

if TYPE_CHECKING:
    from tradewire.connection.lifecycle import ConnectionManager
    from tradewire.connection.transport import Transport
    from tradewire.monitoring.metrics_rich import ClientMetrics
    from tradewire.negotiation.confirmations import ConfirmationCoordinator
    from tradewire.negotiation.turns import TurnCoordinator

log = logging.getLogger("tradewire")

ORDER_FRAMES: Dict[str, EventType] = {
    "order:created": EventType.ORDER_CREATED,
    "order:updated": EventType.ORDER_UPDATED,
    "order:matched": EventType.ORDER_MATCHED,
    "order:cancelled": EventType.ORDER_CANCELLED,
    "order:partially_filled": EventType.ORDER_PARTIALLY_FILLED,
    "order:filled": EventType.ORDER_FILLED,
}

REQUEST_FRAMES: Dict[str, tuple] = {
    "match:approval": (ConfirmationKind.SELLER_APPROVAL, EventType.SELLER_APPROVAL_REQUESTED),
    "quantity:confirmation_request": (
        ConfirmationKind.QUANTITY_TOP_UP,
        EventType.QUANTITY_CONFIRMATION_REQUESTED,
    ),
    "partial_fill:approval_request": (
        ConfirmationKind.PARTIAL_FILL,
        EventType.PARTIAL_FILL_APPROVAL_REQUESTED,
    ),
}

TERMINAL_FRAMES: Dict[str, EventType] = {
    "partial_fill:declined": EventType.PARTIAL_FILL_DECLINED,
    "counterparty:declined": EventType.COUNTERPARTY_DECLINED,
    "confirmation:expired": EventType.CONFIRMATION_EXPIRED,
    "match:approval_result": EventType.SELLER_APPROVAL_RESOLVED,
}

MARKET_VARIANTS: Dict[str, EventType] = {
    "price_changed": EventType.MARKET_PRICE_CHANGED,
    "remaining_quantity_available": EventType.MARKET_REMAINING_QUANTITY,
}

APPLICATION_FRAMES: List[str] = [
    *ORDER_FRAMES,
    "trade:executed",
    "market:update",
    *REQUEST_FRAMES,
    "negotiation:your_turn",
    *TERMINAL_FRAMES,
]


def unwrap(frame: Any) -> Dict[str, Any]:
    """
    Normalise one inbound frame to its payload dict.

    Accepts JSON text, a bare payload dict, or the ``{type, data, timestamp}``
    envelope. Raises ValueError for anything else.
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = loads(frame)
        except Exception as exc:
            raise ValueError(f"undecodable frame: {exc}") from exc
    if not isinstance(frame, dict):
        raise ValueError(f"frame is not an object: {type(frame).__name__}")
    data = frame.get("data")
    if "type" in frame and isinstance(data, dict):
        return data
    return frame


class EventRouter:
    """
    Routes inbound frames to the coordinators and the bus.

    Usage:
        router = EventRouter(bus, turns, confirmations)
        manager.set_router(router)   # binds the lifecycle callbacks
        # the manager calls router.attach(transport) once per transport
    """

    def __init__(
        self,
        bus: EventBus,
        turns: "TurnCoordinator",
        confirmations: "ConfirmationCoordinator",
        metrics: Optional["ClientMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._bus = bus
        self._turns = turns
        self._confirmations = confirmations
        self._metrics = metrics
        self._log_event = log_event or self._default_log
        self._lifecycle: Optional["ConnectionManager"] = None
        self._stats = {
            "frames_routed": 0,
            "frames_malformed": 0,
            "duplicates_dropped": 0,
            "keys_released": 0,
        }

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, dumps({"event": event, **kwargs}))

    def bind_lifecycle(self, lifecycle: "ConnectionManager") -> None:
        self._lifecycle = lifecycle

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    # -------------------------------------------------------------------------
    # Attachment
    # -------------------------------------------------------------------------

    def attach(self, transport: "Transport") -> None:
        """Register every handler on one transport. Called once per transport object."""

        async def on_connect() -> None:
            if self._lifecycle is not None:
                await self._lifecycle.on_transport_connected(transport)

        async def on_disconnect(reason: Any = None) -> None:
            if self._lifecycle is not None:
                await self._lifecycle.on_transport_disconnected(transport, reason)

        async def on_connect_error(data: Any = None) -> None:
            if self._lifecycle is not None:
                await self._lifecycle.on_transport_connect_error(transport, data)

        transport.on("connect", on_connect)
        transport.on("disconnect", on_disconnect)
        transport.on("connect_error", on_connect_error)
        for name in APPLICATION_FRAMES:
            transport.on(name, self._frame_handler(name))

    def _frame_handler(self, name: str) -> Callable[..., Any]:
        async def _handler(frame: Any = None) -> None:
            await self.route(name, frame)

        _handler.__name__ = f"on_{name.replace(':', '_')}"
        return _handler

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    @property
    def _dedup(self):
        return self._lifecycle.dedup_cache if self._lifecycle is not None else None

    async def route(self, name: str, frame: Any) -> None:
        """Translate one frame; malformed frames are logged and dropped."""
        if self._metrics:
            self._metrics.frames_received.labels(frame=name).inc()
        try:
            data = unwrap(frame)
            if name in ORDER_FRAMES:
                await self._on_order(name, data)
            elif name == "trade:executed":
                await self._on_trade(name, data)
            elif name == "market:update":
                await self._on_market(name, data)
            elif name in REQUEST_FRAMES:
                await self._on_request(name, data)
            elif name == "negotiation:your_turn":
                await self._on_your_turn(name, data)
            elif name in TERMINAL_FRAMES:
                await self._on_terminal(name, data)
            else:
                self._log_event("unknown_frame", level=logging.DEBUG, name=name)
                return
        except ValueError as exc:
            self._stats["frames_malformed"] += 1
            self._log_event("malformed_frame", level=logging.WARNING, name=name, err=str(exc))
            return
        self._stats["frames_routed"] += 1

    async def _on_order(self, name: str, data: Dict[str, Any]) -> None:
        if name == "order:matched" and data.get("offerId") and data.get("bidId"):
            self._release([seller_approval_key(data["offerId"], data["bidId"])], ConfirmationKind.SELLER_APPROVAL)
        await self._publish(ORDER_FRAMES[name], name, data.get("orderId"), data)

    async def _on_trade(self, name: str, data: Dict[str, Any]) -> None:
        seller, buyer = data.get("sellerOrderId"), data.get("buyerOrderId")
        if seller and buyer:
            self._release([seller_approval_key(seller, buyer)], ConfirmationKind.SELLER_APPROVAL)
        await self._publish(EventType.TRADE_EXECUTED, name, data.get("tradeId"), data)

    async def _on_market(self, name: str, data: Dict[str, Any]) -> None:
        variant = data.get("type") or data.get("updateType")
        event_type = MARKET_VARIANTS.get(variant, EventType.MARKET_UPDATE)
        await self._publish(event_type, name, data.get("asset"), data)

    async def _on_request(self, name: str, data: Dict[str, Any]) -> None:
        kind, event_type = REQUEST_FRAMES[name]
        request = ConfirmationRequest.from_payload(kind, data, self._confirmations.window_sec)
        dedup = self._dedup
        if dedup is not None and not dedup.check_and_add(kind, request.confirmation_key):
            self._stats["duplicates_dropped"] += 1
            if self._metrics:
                self._metrics.duplicates_dropped.labels(kind=kind.value).inc()
            self._log_event(
                "duplicate_event_dropped",
                level=logging.WARNING,
                name=name,
                kind=kind.value,
                key=request.confirmation_key,
            )
            return

        self._confirmations.register(request)
        await self._publish(event_type, name, request.confirmation_key, {**data, "record": request})

    async def _on_your_turn(self, name: str, data: Dict[str, Any]) -> None:
        turn = self._turns.on_your_turn(data)
        await self._publish(EventType.NEGOTIATION_YOUR_TURN, name, turn.asset, {**data, "record": turn})

    async def _on_terminal(self, name: str, data: Dict[str, Any]) -> None:
        keys = []
        if data.get("confirmationKey"):
            keys.append(str(data["confirmationKey"]))
        if data.get("offerId") and data.get("bidId"):
            keys.append(seller_approval_key(data["offerId"], data["bidId"]))
        if not keys:
            raise ValueError(f"{name} without confirmationKey or offerId/bidId")

        if name == "match:approval_result":
            outcome = "approved" if data.get("approved") else "rejected"
        else:
            outcome = name.split(":", 1)[1]

        self._release(keys)
        for key in keys:
            self._confirmations.resolve(key, outcome)
        await self._publish(TERMINAL_FRAMES[name], name, keys[0], {**data, "outcome": outcome})

    async def _publish(self, event_type: EventType, name: str, correlation_id: Any, data: Dict[str, Any]) -> None:
        # Payload keys go into Event.data as-is; they may collide with emit() keywords
        await self._bus.publish(Event(type=event_type, data=data, source=name, correlation_id=_opt(correlation_id)))

    def _release(self, keys: List[str], kind: Optional[ConfirmationKind] = None) -> None:
        dedup = self._dedup
        if dedup is None:
            return
        for key in keys:
            self._stats["keys_released"] += dedup.discard(key, kind)


def _opt(value: Any) -> Optional[str]:
    return None if value is None else str(value)
