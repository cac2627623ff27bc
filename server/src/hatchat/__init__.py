"""Single-room chat server core interfaces and helpers."""

from .colors import ColorDirectory
from .hub import ConnectionHub, Subscription
from .log import ChatMessage, MessageLog
from .pagination import page_bounds, paginate
from .presence import Connection, ConnectionNotFound, ConnectionRegistry, HandshakeError
from .router import ConnectionState, EventRouter, InvalidTransition
from .server import main, simulate

__all__ = [
    "ChatMessage",
    "ColorDirectory",
    "Connection",
    "ConnectionHub",
    "ConnectionNotFound",
    "ConnectionRegistry",
    "ConnectionState",
    "EventRouter",
    "HandshakeError",
    "InvalidTransition",
    "MessageLog",
    "Subscription",
    "main",
    "page_bounds",
    "paginate",
    "simulate",
]
