"""
Negotiation Turn Coordinator.

Per asset the client is either IDLE or holds YOUR_TURN. A new your-turn frame
replaces any earlier one for the same asset (last write wins). respond()
validates a price improvement locally, transmits negotiation:response and
clears the turn as soon as the frame is out.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from tradewire.core.errors import NotConnectedError, ValidationFailedError
from tradewire.core.event_bus import EventBus, EventType
from tradewire.core.json_utils import dumps
from tradewire.negotiation.models import NegotiationTurn, Side

if TYPE_CHECKING:
    from tradewire.connection.lifecycle import ConnectionManager
    from tradewire.monitoring.metrics_rich import ClientMetrics

log = logging.getLogger("tradewire")


class TurnState(Enum):
    IDLE = "idle"
    YOUR_TURN = "your_turn"


def is_my_turn(party_id: Optional[str], turn: Optional[NegotiationTurn]) -> bool:
    """True if ``party_id`` holds the best price on the side whose turn it is."""
    if not party_id or turn is None:
        return False
    holder = turn.holder_party_id
    return holder is not None and str(holder) == str(party_id)


def validate_improvement(turn: NegotiationTurn, new_price: Any) -> float:
    """
    Check that new_price strictly improves the current best on the turn's side.

    Returns the price as float, raises ValidationFailedError otherwise.
    """
    if isinstance(new_price, bool) or not isinstance(new_price, (int, float)):
        raise ValidationFailedError("improved response requires a numeric price", field="new_price")
    price = float(new_price)
    if price != price or price <= 0:
        raise ValidationFailedError(f"price must be positive, got {new_price!r}", field="new_price")

    if turn.turn is Side.BID:
        if turn.best_bid is not None and price <= turn.best_bid:
            raise ValidationFailedError(
                f"bid {price} must be higher than best bid {turn.best_bid}", field="new_price"
            )
    elif turn.best_offer is not None and price >= turn.best_offer:
        raise ValidationFailedError(
            f"offer {price} must be lower than best offer {turn.best_offer}", field="new_price"
        )
    return price


class TurnCoordinator:
    def __init__(
        self,
        connection: "ConnectionManager",
        bus: Optional[EventBus] = None,
        metrics: Optional["ClientMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._connection = connection
        self._bus = bus
        self._metrics = metrics
        self._log_event = log_event or self._default_log
        self._turns: Dict[str, NegotiationTurn] = {}

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, dumps({"event": event, **kwargs}))

    def on_your_turn(self, payload: Dict[str, Any]) -> NegotiationTurn:
        turn = NegotiationTurn.from_payload(payload)
        replaced = turn.asset in self._turns
        self._turns[turn.asset] = turn
        self._update_gauge()
        self._log_event(
            "negotiation_turn",
            asset=turn.asset,
            side=turn.turn.value,
            best_bid=turn.best_bid,
            best_offer=turn.best_offer,
            replaced=replaced,
        )
        return turn

    def state(self, asset: str) -> TurnState:
        return TurnState.YOUR_TURN if asset in self._turns else TurnState.IDLE

    def current(self, asset: str) -> Optional[NegotiationTurn]:
        return self._turns.get(asset)

    def active_turns(self) -> List[NegotiationTurn]:
        return list(self._turns.values())

    def clear(self) -> None:
        self._turns.clear()
        self._update_gauge()

    async def respond(self, asset: str, improved: bool, new_price: Optional[float] = None) -> bool:
        """
        Improve or pass on the turn for ``asset``.

        Raises:
            NotConnectedError: connection not CONNECTED; nothing transmitted
            ValidationFailedError: improvement is not strictly better; nothing transmitted

        Returns:
            True if the response was transmitted, False if no turn is pending
        """
        if not self._connection.is_connected:
            self._reject("not_connected")
            raise NotConnectedError(f"respond to negotiation turn for {asset}", self._connection.state)

        turn = self._turns.get(asset)
        if turn is None:
            self._reject("no_turn")
            self._log_event("negotiation_no_turn", level=logging.ERROR, asset=asset)
            return False

        payload: Dict[str, Any] = {"asset": asset, "improved": bool(improved)}
        if improved:
            try:
                payload["newPrice"] = validate_improvement(turn, new_price)
            except ValidationFailedError as exc:
                self._reject("validation")
                self._log_event("negotiation_invalid_price", level=logging.WARNING, asset=asset, err=str(exc))
                raise

        await self._connection.emit("negotiation:response", payload)

        # A newer turn may have arrived while the frame was in flight
        if self._turns.get(asset) is turn:
            del self._turns[asset]
        self._update_gauge()
        if self._metrics:
            self._metrics.responses_sent.labels(kind="negotiation").inc()
        self._log_event("negotiation_responded", asset=asset, improved=bool(improved), price=payload.get("newPrice"))
        if self._bus is not None:
            await self._bus.emit(
                EventType.NEGOTIATION_RESPONDED,
                source="turns",
                correlation_id=asset,
                asset=asset,
                improved=bool(improved),
                new_price=payload.get("newPrice"),
            )
        return True

    def _reject(self, reason: str) -> None:
        if self._metrics:
            self._metrics.responses_rejected.labels(kind="negotiation", reason=reason).inc()

    def _update_gauge(self) -> None:
        if self._metrics:
            self._metrics.pending_turns.set(len(self._turns))
