"""
Error taxonomy for the trading client.

Response-call failures (NotConnectedError, ValidationFailedError) are raised
synchronously to the caller. Transport failures (AuthExpiredError,
TransientNetworkError) are raised by the transport adapter and absorbed by the
ConnectionManager, which turns them into state transitions.
"""

from __future__ import annotations

from typing import Any, Optional


class TradewireError(Exception):
    """Base class for all client errors."""


class NotConnectedError(TradewireError):
    """A protocol response was attempted while the connection is not CONNECTED."""

    def __init__(self, action: str, state: Any = None) -> None:
        self.action = action
        self.state = state
        detail = f" (state={state.name})" if state is not None and hasattr(state, "name") else ""
        super().__init__(f"cannot {action}: not connected{detail}")


class ValidationFailedError(TradewireError):
    """Client-side pre-flight check failed; nothing was transmitted."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class AuthExpiredError(TradewireError):
    """Credential missing, expired or rejected by the server."""


class TransientNetworkError(TradewireError):
    """Any non-auth connection failure. Recovered by auto-reconnect."""


class ApiError(TradewireError):
    """A request/response call failed with a non-auth HTTP error."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)
