"""Dispatches client events to the room state and fans out the results.

Every method here is synchronous: on a single event loop no two handlers
interleave, so the registry, log and color directory need no locks.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict

from .colors import ColorDirectory
from .hub import Callback, ConnectionHub, make_frame
from .log import ChatMessage, MessageLog
from .pagination import DEFAULT_PAGE_SIZE, normalize_page, paginate
from .presence import Connection, ConnectionNotFound, ConnectionRegistry, HandshakeError

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class InvalidTransition(Exception):
    pass


class EventRouter:
    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        log: MessageLog,
        colors: ColorDirectory,
        hub: ConnectionHub,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.registry = registry
        self.log = log
        self.colors = colors
        self.hub = hub
        self.page_size = page_size
        self._states: Dict[str, ConnectionState] = {}
        self._handlers: Dict[str, Callable[[Connection, Dict[str, Any]], None]] = {
            "user_join": self._on_user_join,
            "chat_message": self._on_chat_message,
            "load_messages": self._on_load_messages,
            "update_color": self._on_update_color,
            "dnd_toggle": self._on_dnd_toggle,
        }

    def state(self, connection_id: str) -> ConnectionState | None:
        return self._states.get(connection_id)

    def connect(self, connection_id: str, username: str | None, color: str | None, callback: Callback) -> Connection:
        """Validate the handshake and make the connection active.

        Raises ``HandshakeError`` when the username is missing; nothing is
        registered in that case.
        """

        if self._states.get(connection_id) is not None:
            raise InvalidTransition(f"connection {connection_id} already seen")
        self._states[connection_id] = ConnectionState.CONNECTING
        try:
            connection = self.registry.register(connection_id, username, color)
        except HandshakeError:
            self._states.pop(connection_id, None)
            raise
        self.hub.subscribe(connection_id, callback)
        self._states[connection_id] = ConnectionState.ACTIVE
        logger.info("%s connected with connection id %s", connection.username, connection_id)
        self.hub.broadcast(make_frame("update_users", {"users": self._users()}))
        return connection

    def handle(self, connection_id: str, event: str, data: Any) -> None:
        if self._states.get(connection_id) is not ConnectionState.ACTIVE:
            raise InvalidTransition(f"connection {connection_id} is not active")
        connection = self.registry.get(connection_id)
        handler = self._handlers.get(event)
        if handler is None:
            self._reply_error(connection_id, "unknown_event", f"unknown event: {event}")
            return
        if data is None:
            data = {}
        if not isinstance(data, dict):
            self._reply_error(connection_id, "invalid_request", "data must be an object")
            return
        handler(connection, data)

    def disconnect(self, connection_id: str) -> Connection:
        """Drop the connection, record the leave and tell everyone left.

        Raises ``ConnectionNotFound`` for an unknown or already closed id.
        """

        if self._states.get(connection_id) is not ConnectionState.ACTIVE:
            raise ConnectionNotFound(connection_id)
        connection = self.registry.deregister(connection_id)
        self.hub.unsubscribe(connection_id)
        self._states[connection_id] = ConnectionState.DISCONNECTED
        logger.info("%s disconnected", connection.username)

        self.log.append(ChatMessage.system(f"{connection.username} left the chat"))
        self.hub.broadcast(
            make_frame(
                "user_leave",
                {
                    "username": connection.username,
                    "users": self._users(),
                    "userColors": self.colors.all(),
                },
            )
        )
        return connection

    def _users(self) -> list[dict[str, Any]]:
        return [connection.to_dict() for connection in self.registry.snapshot()]

    def _reply_error(self, connection_id: str, code: str, message: str) -> None:
        logger.debug("Rejecting event from %s: %s", connection_id, message)
        self.hub.send(connection_id, make_frame("error", {"code": code, "message": message}))

    def _on_user_join(self, connection: Connection, data: Dict[str, Any]) -> None:
        self.log.append(ChatMessage.system(f"{connection.username} joined the chat"))
        self.hub.broadcast(
            make_frame(
                "user_join",
                {
                    "username": connection.username,
                    "users": self._users(),
                    "userColors": self.colors.all(),
                },
            )
        )

    def _on_chat_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        text = data.get("message", "")
        image = data.get("image")
        if not isinstance(text, str) or (image is not None and not isinstance(image, str)):
            self._reply_error(connection.connection_id, "invalid_request", "message must be a string")
            return
        if not text.strip() and not image:
            self._reply_error(connection.connection_id, "invalid_request", "message or image required")
            return

        message = ChatMessage.chat(
            connection.username,
            text,
            color=self.colors.get(connection.username),
            image=image or None,
        )
        self.log.append(message)
        self.hub.broadcast(make_frame("chat_message", message.to_dict()))

    def _on_load_messages(self, connection: Connection, data: Dict[str, Any]) -> None:
        page = normalize_page(data.get("page", 1))
        messages = paginate(self.log, page, self.page_size)
        self.hub.send(
            connection.connection_id,
            make_frame(
                "chat_history",
                {
                    "messages": [message.to_dict() for message in messages],
                    "page": page,
                    "totalMessages": len(self.log),
                    "userColors": self.colors.all(),
                },
            ),
        )

    def _on_update_color(self, connection: Connection, data: Dict[str, Any]) -> None:
        color = data.get("color")
        if not isinstance(color, str) or not color.strip():
            self._reply_error(connection.connection_id, "invalid_request", "color required")
            return
        self.registry.update_color(connection.connection_id, color.strip())
        self.hub.broadcast(make_frame("update_colors", {"userColors": self.colors.all()}))

    def _on_dnd_toggle(self, connection: Connection, data: Dict[str, Any]) -> None:
        flag = data.get("dnd")
        if not isinstance(flag, bool):
            self._reply_error(connection.connection_id, "invalid_request", "dnd must be a boolean")
            return
        self.registry.toggle_dnd(connection.connection_id, flag)
        self.hub.broadcast(make_frame("update_users", {"users": self._users()}))
