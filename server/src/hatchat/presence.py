from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .colors import ColorDirectory


class HandshakeError(Exception):
    pass


class ConnectionNotFound(Exception):
    pass


@dataclass
class Connection:
    connection_id: str
    username: str
    color: str | None = None
    do_not_disturb: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.connection_id,
            "username": self.username,
            "color": self.color,
            "dnd": self.do_not_disturb,
        }


class ConnectionRegistry:
    """Live connections keyed by connection id, in registration order.

    Usernames are not unique: several connections may share one, and with it
    one color directory entry. Do-not-disturb stays per connection.
    """

    def __init__(self, colors: ColorDirectory) -> None:
        self._colors = colors
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str, username: str | None, initial_color: str | None = None) -> Connection:
        if not isinstance(username, str) or not username.strip():
            raise HandshakeError("username required")
        username = username.strip()
        if initial_color:
            self._share_color(username, initial_color)
        connection = Connection(
            connection_id=connection_id,
            username=username,
            color=self._colors.get(username),
        )
        self._connections[connection_id] = connection
        return connection

    def get(self, connection_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise ConnectionNotFound(connection_id)
        return connection

    def toggle_dnd(self, connection_id: str, flag: bool) -> Connection:
        connection = self.get(connection_id)
        connection.do_not_disturb = bool(flag)
        return connection

    def update_color(self, connection_id: str, color: str) -> Connection:
        connection = self.get(connection_id)
        self._share_color(connection.username, color)
        return connection

    def _share_color(self, username: str, color: str) -> None:
        self._colors.set(username, color)
        for connection in self._connections.values():
            if connection.username == username:
                connection.color = color

    def deregister(self, connection_id: str) -> Connection:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            raise ConnectionNotFound(connection_id)
        return connection

    def snapshot(self) -> list[Connection]:
        return list(self._connections.values())

    def usernames(self) -> list[str]:
        return [connection.username for connection in self._connections.values()]

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
