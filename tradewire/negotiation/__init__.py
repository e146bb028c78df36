from tradewire.negotiation.confirmations import ConfirmationCoordinator
from tradewire.negotiation.models import (
    ConfirmationKind,
    ConfirmationRequest,
    NegotiationTurn,
    Side,
    seller_approval_key,
)
from tradewire.negotiation.turns import TurnCoordinator, TurnState, is_my_turn

__all__ = [
    "ConfirmationCoordinator",
    "ConfirmationKind",
    "ConfirmationRequest",
    "NegotiationTurn",
    "Side",
    "TurnCoordinator",
    "TurnState",
    "is_my_turn",
    "seller_approval_key",
]
