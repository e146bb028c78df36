"""
Confirmation Flow Coordinator.

Holds the live confirmation prompts (seller approval, quantity top-up,
partial fill) and turns a user decision into exactly one response frame.

A record is removed as soon as its response is transmitted; the server's
terminal frames (declined, expired, approval result) remove whatever is left.
Deadlines are informational only and never resolve a prompt locally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from tradewire.core.errors import NotConnectedError
from tradewire.core.event_bus import EventBus, EventType
from tradewire.core.json_utils import dumps
from tradewire.negotiation.models import ConfirmationKind, ConfirmationRequest, seller_approval_key

if TYPE_CHECKING:
    from tradewire.connection.lifecycle import ConnectionManager
    from tradewire.monitoring.metrics_rich import ClientMetrics

log = logging.getLogger("tradewire")

RecordKey = Tuple[ConfirmationKind, str]

APPROVAL_RESPONSE = "match:approval_response"
QUANTITY_RESPONSE = "quantity:confirmation_response"


class ConfirmationCoordinator:
    """
    Usage:
        confirmations = ConfirmationCoordinator(manager, bus)

        # router side
        confirmations.register(request)

        # UI side
        await confirmations.respond_quantity_top_up(key, accepted=True)
    """

    def __init__(
        self,
        connection: "ConnectionManager",
        bus: Optional[EventBus] = None,
        window_sec: float = 60.0,
        metrics: Optional["ClientMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._connection = connection
        self._bus = bus
        self.window_sec = window_sec
        self._metrics = metrics
        self._log_event = log_event or self._default_log
        self._pending: Dict[RecordKey, ConfirmationRequest] = {}

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def register(self, request: ConfirmationRequest) -> bool:
        """
        Track a prompt. One live record per (kind, key).

        Returns:
            True if added, False if a record for the key is already live
        """
        rkey = (request.kind, request.confirmation_key)
        if rkey in self._pending:
            self._log_event(
                "confirmation_already_pending",
                level=logging.WARNING,
                kind=request.kind.value,
                key=request.confirmation_key,
            )
            return False
        self._pending[rkey] = request
        self._update_gauge(request.kind)
        self._log_event(
            "confirmation_requested",
            kind=request.kind.value,
            key=request.confirmation_key,
            asset=request.asset,
            party_qty=request.party_quantity,
            counterparty_qty=request.counterparty_quantity,
            seconds=request.seconds_remaining(),
        )
        return True

    def get(self, kind: ConfirmationKind, confirmation_key: str) -> Optional[ConfirmationRequest]:
        return self._pending.get((kind, str(confirmation_key)))

    def pending(self, kind: Optional[ConfirmationKind] = None) -> List[ConfirmationRequest]:
        return [r for (k, _), r in self._pending.items() if kind is None or k is kind]

    def resolve(self, confirmation_key: str, outcome: str) -> int:
        """Drop every record for a key after a terminal frame. Returns records removed."""
        removed = 0
        for kind in ConfirmationKind:
            if self._pending.pop((kind, str(confirmation_key)), None) is not None:
                removed += 1
                self._update_gauge(kind)
        if removed:
            self._log_event("confirmation_resolved", key=confirmation_key, outcome=outcome)
        return removed

    def clear(self) -> None:
        kinds = {k for k, _ in self._pending}
        self._pending.clear()
        for kind in kinds:
            self._update_gauge(kind)

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    async def respond_seller_approval(
        self,
        offer_id: Any,
        bid_id: Any,
        approved: bool,
        party_id: Optional[str] = None,
    ) -> bool:
        """Approve or reject a match on our resting offer."""
        key = seller_approval_key(offer_id, bid_id)
        payload = {"offerId": str(offer_id), "bidId": str(bid_id), "approved": bool(approved)}
        return await self._respond(
            ConfirmationKind.SELLER_APPROVAL,
            key,
            APPROVAL_RESPONSE,
            lambda request: payload,
            accepted=bool(approved),
            party_id=party_id,
        )

    async def respond_quantity_top_up(
        self,
        confirmation_key: str,
        accepted: bool,
        new_quantity: Optional[float] = None,
    ) -> bool:
        """
        Accept or decline a top-up.

        On accept the transmitted quantity is always the combined quantity of
        both parties; ``new_quantity`` is only logged when it disagrees.
        """

        def build(request: ConfirmationRequest) -> Dict[str, Any]:
            payload: Dict[str, Any] = {"confirmationKey": request.confirmation_key, "accepted": bool(accepted)}
            if accepted:
                combined = request.combined_quantity
                if new_quantity is not None and new_quantity != combined:
                    self._log_event(
                        "top_up_quantity_overridden",
                        level=logging.WARNING,
                        key=request.confirmation_key,
                        suggested=new_quantity,
                        sent=combined,
                    )
                payload["newQuantity"] = combined
            return payload

        return await self._respond(
            ConfirmationKind.QUANTITY_TOP_UP,
            str(confirmation_key),
            QUANTITY_RESPONSE,
            build,
            accepted=bool(accepted),
        )

    async def respond_partial_fill(self, confirmation_key: str, accepted: bool) -> bool:
        """Accept a fill at the smaller of the two quantities, or decline."""

        def build(request: ConfirmationRequest) -> Dict[str, Any]:
            payload: Dict[str, Any] = {"confirmationKey": request.confirmation_key, "accepted": bool(accepted)}
            if accepted:
                payload["newQuantity"] = request.smaller_quantity
            return payload

        return await self._respond(
            ConfirmationKind.PARTIAL_FILL,
            str(confirmation_key),
            QUANTITY_RESPONSE,
            build,
            accepted=bool(accepted),
        )

    async def _respond(
        self,
        kind: ConfirmationKind,
        key: str,
        frame: str,
        build: Callable[[ConfirmationRequest], Dict[str, Any]],
        accepted: bool,
        **log_fields: Any,
    ) -> bool:
        if not self._connection.is_connected:
            self._reject(kind, "not_connected")
            raise NotConnectedError(f"respond to {kind.value} {key}", self._connection.state)

        request = self._pending.get((kind, key))
        if request is None:
            self._reject(kind, "no_pending")
            self._log_event("confirmation_not_pending", level=logging.ERROR, kind=kind.value, key=key)
            return False

        payload = build(request)
        await self._connection.emit(frame, payload)

        # Optimistic: terminal frames reconcile if the server disagrees
        self._pending.pop((kind, key), None)
        self._update_gauge(kind)
        if self._metrics:
            self._metrics.responses_sent.labels(kind=kind.value).inc()
        self._log_event(
            "confirmation_responded",
            kind=kind.value,
            key=key,
            accepted=accepted,
            quantity=payload.get("newQuantity"),
            **log_fields,
        )
        if self._bus is not None:
            await self._bus.emit(
                EventType.CONFIRMATION_RESPONDED,
                source="confirmations",
                correlation_id=key,
                kind=kind.value,
                accepted=accepted,
                payload=payload,
            )
        return True

    def _reject(self, kind: ConfirmationKind, reason: str) -> None:
        if self._metrics:
            self._metrics.responses_rejected.labels(kind=kind.value, reason=reason).inc()

    def _update_gauge(self, kind: ConfirmationKind) -> None:
        if self._metrics:
            self._metrics.pending_confirmations.labels(kind=kind.value).set(len(self.pending(kind)))
