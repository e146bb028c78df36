"""
Token provider capability and an in-memory implementation.

The connection manager and API client only depend on the TokenProvider
protocol: get_valid_token() and handle_auth_error().
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from tradewire.core.json_utils import dumps

log = logging.getLogger("tradewire")


class TokenProvider(Protocol):
    def get_valid_token(self) -> Optional[str]:
        """Current credential, or None if absent or within the expiry buffer."""
        ...

    def handle_auth_error(self) -> None:
        """Clear credentials and send the user back to an unauthenticated entry point."""
        ...


@dataclass
class StoredCredential:
    token: str
    expires_at: float
    user_id: Optional[str] = None
    username: Optional[str] = None


class TokenStore:
    """
    Process-local credential store.

    Expiry is tracked from the login response's ``expires_in``; a token is
    treated as expired ``expiry_buffer_sec`` before the server would reject it.
    """

    def __init__(
        self,
        expiry_buffer_sec: float = 300.0,
        on_logout: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buffer = expiry_buffer_sec
        self._on_logout = on_logout
        self._clock = clock
        self._credential: Optional[StoredCredential] = None

    def store(self, token: str, expires_in: float, user: Optional[Dict[str, Any]] = None) -> None:
        user = user or {}
        self._credential = StoredCredential(
            token=token,
            expires_at=self._clock() + float(expires_in),
            user_id=user.get("id"),
            username=user.get("username"),
        )
        log.info(dumps({"event": "token_stored", "username": self.username, "expires_in": expires_in}))

    def get_valid_token(self) -> Optional[str]:
        cred = self._credential
        if cred is None:
            return None
        if self._clock() >= cred.expires_at - self._buffer:
            log.info(dumps({"event": "token_expired", "username": cred.username}))
            self.clear()
            return None
        return cred.token

    def handle_auth_error(self) -> None:
        log.warning(dumps({"event": "auth_error_logout", "username": self.username}))
        self.clear()
        if self._on_logout:
            self._on_logout()

    def clear(self) -> None:
        self._credential = None

    @property
    def user_id(self) -> Optional[str]:
        return self._credential.user_id if self._credential else None

    @property
    def username(self) -> Optional[str]:
        return self._credential.username if self._credential else None

    @property
    def is_authenticated(self) -> bool:
        return self.get_valid_token() is not None
