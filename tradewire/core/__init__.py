"""
Core utilities package.

Event bus, error taxonomy and JSON helpers.
"""

from tradewire.core.errors import (
    ApiError,
    AuthExpiredError,
    NotConnectedError,
    TradewireError,
    TransientNetworkError,
    ValidationFailedError,
)
from tradewire.core.event_bus import Event, EventBus, EventType, Subscription

__all__ = [
    "ApiError",
    "AuthExpiredError",
    "Event",
    "EventBus",
    "EventType",
    "NotConnectedError",
    "Subscription",
    "TradewireError",
    "TransientNetworkError",
    "ValidationFailedError",
]
