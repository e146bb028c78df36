"""
Negotiation protocol records: turns and confirmation prompts.

Wire payloads use camelCase keys; records use snake_case attributes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def parse_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def now_ms() -> int:
    return int(time.time() * 1000)


class Side(Enum):
    BID = "bid"
    OFFER = "offer"

    @classmethod
    def parse(cls, value: Any) -> "Side":
        """Accept bid/buy and offer/ask/sell in any case."""
        raw = str(value or "").strip().lower()
        if raw in {"bid", "buy"}:
            return cls.BID
        if raw in {"offer", "ask", "sell"}:
            return cls.OFFER
        raise ValueError(f"unknown side {value!r}")


class ConfirmationKind(Enum):
    SELLER_APPROVAL = "seller_approval"
    QUANTITY_TOP_UP = "quantity_top_up"
    PARTIAL_FILL = "partial_fill"


def seller_approval_key(offer_id: Any, bid_id: Any) -> str:
    return f"{offer_id}:{bid_id}"


@dataclass
class NegotiationTurn:
    """The right to improve or pass on the best price for one asset."""
    asset: str
    turn: Side
    best_bid: Optional[float] = None
    best_offer: Optional[float] = None
    best_bid_party_id: Optional[str] = None
    best_offer_party_id: Optional[str] = None
    best_bid_name: Optional[str] = None
    best_offer_name: Optional[str] = None
    message: Optional[str] = None
    received_at_ms: int = field(default_factory=now_ms)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "NegotiationTurn":
        asset = data.get("asset")
        if not asset:
            raise ValueError("negotiation turn without asset")
        return cls(
            asset=str(asset),
            turn=Side.parse(data.get("turn")),
            best_bid=parse_float(data.get("bestBid")),
            best_offer=parse_float(data.get("bestOffer")),
            best_bid_party_id=_opt_str(data.get("bestBidPartyId")),
            best_offer_party_id=_opt_str(data.get("bestOfferPartyId")),
            best_bid_name=data.get("bestBidName"),
            best_offer_name=data.get("bestOfferName"),
            message=data.get("message"),
        )

    @property
    def holder_party_id(self) -> Optional[str]:
        return self.best_bid_party_id if self.turn is Side.BID else self.best_offer_party_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "turn": self.turn.value,
            "bestBid": self.best_bid,
            "bestOffer": self.best_offer,
            "bestBidPartyId": self.best_bid_party_id,
            "bestOfferPartyId": self.best_offer_party_id,
            "bestBidName": self.best_bid_name,
            "bestOfferName": self.best_offer_name,
            "message": self.message,
        }


@dataclass
class ConfirmationRequest:
    """
    A live confirmation prompt, keyed by confirmation_key.

    deadline_ms is informational: the server enforces the window and reports
    the outcome through a terminal frame.
    """
    confirmation_key: str
    kind: ConfirmationKind
    asset: Optional[str]
    price: Optional[float]
    side: Optional[Side]
    party_quantity: float
    counterparty_quantity: float
    offer_id: Optional[str] = None
    bid_id: Optional[str] = None
    message: Optional[str] = None
    received_at_ms: int = field(default_factory=now_ms)
    deadline_ms: int = 0

    @classmethod
    def from_payload(
        cls,
        kind: ConfirmationKind,
        data: Dict[str, Any],
        window_sec: float = 60.0,
    ) -> "ConfirmationRequest":
        offer_id = _opt_str(data.get("offerId"))
        bid_id = _opt_str(data.get("bidId"))
        if kind is ConfirmationKind.SELLER_APPROVAL:
            if not offer_id or not bid_id:
                raise ValueError("seller approval without offerId/bidId")
            key = seller_approval_key(offer_id, bid_id)
        else:
            key = _opt_str(data.get("confirmationKey"))
            if not key:
                raise ValueError(f"{kind.value} request without confirmationKey")

        amount = parse_float(data.get("amount"), 0.0)
        party_qty = parse_float(data.get("partyQuantity"), amount)
        counter_qty = parse_float(data.get("counterpartyQuantity"), amount)
        raw_side = data.get("side")
        received = now_ms()
        timeout_sec = parse_float(data.get("timeoutSeconds"), window_sec)
        return cls(
            confirmation_key=key,
            kind=kind,
            asset=data.get("asset"),
            price=parse_float(data.get("price")),
            side=Side.parse(raw_side) if raw_side else None,
            party_quantity=party_qty,
            counterparty_quantity=counter_qty,
            offer_id=offer_id,
            bid_id=bid_id,
            message=data.get("message"),
            received_at_ms=received,
            deadline_ms=received + int(timeout_sec * 1000),
        )

    @property
    def combined_quantity(self) -> float:
        return self.party_quantity + self.counterparty_quantity

    @property
    def smaller_quantity(self) -> float:
        return min(self.party_quantity, self.counterparty_quantity)

    def seconds_remaining(self, at_ms: Optional[int] = None) -> float:
        at_ms = now_ms() if at_ms is None else at_ms
        return max(0.0, (self.deadline_ms - at_ms) / 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmationKey": self.confirmation_key,
            "kind": self.kind.value,
            "asset": self.asset,
            "price": self.price,
            "side": self.side.value if self.side else None,
            "partyQuantity": self.party_quantity,
            "counterpartyQuantity": self.counterparty_quantity,
            "offerId": self.offer_id,
            "bidId": self.bid_id,
            "message": self.message,
            "deadlineMs": self.deadline_ms,
        }


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
