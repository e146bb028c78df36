"""
Transport adapter over python-socketio's AsyncClient.

One SocketIOTransport wraps exactly one underlying client object and one
credential. The ConnectionManager creates a fresh transport for every
(re)connect, so handlers are attached once per transport object.

Reconnection is disabled on the socket.io client: recovery is driven by the
ConnectionManager's fixed-interval timer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

import socketio
from socketio import exceptions as sio_exceptions

from tradewire.core.errors import AuthExpiredError, NotConnectedError, TransientNetworkError
from tradewire.core.json_utils import dumps

log = logging.getLogger("tradewire")

FrameHandler = Callable[..., Union[Awaitable[None], None]]

# Substrings the venue uses when the handshake is refused on credential grounds
AUTH_ERROR_MARKERS = (
    "auth",
    "token",
    "jwt",
    "unauthorized",
    "forbidden",
    "expired",
    "invalid credential",
    "401",
)


def describe_error(detail: Any) -> str:
    if detail is None:
        return ""
    if isinstance(detail, dict):
        for key in ("message", "error", "detail", "reason"):
            if detail.get(key):
                return str(detail[key])
        return dumps(detail)
    return str(detail)


def is_auth_error(detail: Any) -> bool:
    """True when a connect error is the server rejecting the credential."""
    if isinstance(detail, dict) and detail.get("code") in (401, 403, "AUTH_FAILED", "TOKEN_EXPIRED"):
        return True
    text = describe_error(detail).lower()
    return any(marker in text for marker in AUTH_ERROR_MARKERS)


class Transport(Protocol):
    """What the ConnectionManager and EventRouter need from a connection object."""

    @property
    def connected(self) -> bool: ...

    def on(self, event: str, handler: FrameHandler) -> None: ...

    async def connect(self) -> None:
        """Raises AuthExpiredError or TransientNetworkError."""
        ...

    async def disconnect(self) -> None: ...

    async def emit(self, event: str, payload: Any = None) -> None:
        """Raises NotConnectedError when the socket is not usable."""
        ...


TransportFactory = Callable[[str], Transport]


class SocketIOTransport:
    def __init__(
        self,
        url: str,
        token: str,
        transports: Sequence[str] = ("websocket", "polling"),
        connect_timeout: float = 10.0,
        client: Optional[socketio.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.transports = list(transports)
        self.connect_timeout = connect_timeout
        self._token = token
        self._client = client or socketio.AsyncClient(
            reconnection=False,
            logger=False,
            engineio_logger=False,
        )
        self._last_connect_error: Any = None
        self._client.on("connect_error", self._record_connect_error)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    def _record_connect_error(self, data: Any = None) -> None:
        self._last_connect_error = data

    def on(self, event: str, handler: FrameHandler) -> None:
        if event == "connect_error":
            # socket.io keeps one handler per event; keep recording the detail
            async def _wrapped(data: Any = None) -> None:
                self._record_connect_error(data)
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result

            self._client.on(event, _wrapped)
            return
        self._client.on(event, handler)

    async def connect(self) -> None:
        self._last_connect_error = None
        try:
            await self._client.connect(
                self.url,
                auth={"token": self._token},
                transports=self.transports,
                wait_timeout=self.connect_timeout,
            )
        except sio_exceptions.ConnectionError as exc:
            detail = self._last_connect_error if self._last_connect_error is not None else str(exc)
            if is_auth_error(detail):
                raise AuthExpiredError(describe_error(detail)) from exc
            raise TransientNetworkError(describe_error(detail) or "connection refused") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransientNetworkError(f"{type(exc).__name__}: {exc}") from exc

    async def disconnect(self) -> None:
        await self._client.disconnect()

    async def emit(self, event: str, payload: Any = None) -> None:
        if not self._client.connected:
            raise NotConnectedError(f"emit {event}")
        try:
            await self._client.emit(event, payload)
        except sio_exceptions.BadNamespaceError as exc:
            raise NotConnectedError(f"emit {event}") from exc

    def __repr__(self) -> str:
        return f"SocketIOTransport(url={self.url!r}, connected={self.connected})"


def socketio_transport_factory(
    url: str,
    transports: Sequence[str] = ("websocket", "polling"),
    connect_timeout: float = 10.0,
) -> TransportFactory:
    """Factory handed to the ConnectionManager; one call per connect attempt."""

    def _factory(token: str) -> Transport:
        log.debug(dumps({"event": "transport_created", "url": url, "transports": list(transports)}))
        return SocketIOTransport(url, token, transports=transports, connect_timeout=connect_timeout)

    return _factory
