from tradewire.connection.lifecycle import (
    VALID_TRANSITIONS,
    ConnectionManager,
    ConnectionState,
    Session,
    StateTransition,
)
from tradewire.connection.transport import (
    SocketIOTransport,
    Transport,
    TransportFactory,
    is_auth_error,
    socketio_transport_factory,
)

__all__ = [
    "VALID_TRANSITIONS",
    "ConnectionManager",
    "ConnectionState",
    "Session",
    "StateTransition",
    "SocketIOTransport",
    "Transport",
    "TransportFactory",
    "is_auth_error",
    "socketio_transport_factory",
]
