from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict


Frame = Dict[str, Any]
Callback = Callable[[Frame], None]


def make_frame(event: str, data: Dict[str, Any] | None = None) -> Frame:
    return {"event": event, "data": data or {}}


@dataclass
class Subscription:
    connection_id: str
    callback: Callback

    def deliver(self, frame: Frame) -> None:
        self.callback(frame)


class ConnectionHub:
    """Delivers frames to one connection or fans them out to all of them."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(self, connection_id: str, callback: Callback) -> Subscription:
        subscription = Subscription(connection_id=connection_id, callback=callback)
        self._subscriptions[connection_id] = subscription
        return subscription

    def unsubscribe(self, connection_id: str) -> None:
        self._subscriptions.pop(connection_id, None)

    def send(self, connection_id: str, frame: Frame) -> bool:
        subscription = self._subscriptions.get(connection_id)
        if subscription is None:
            return False
        subscription.deliver(frame)
        return True

    def broadcast(self, frame: Frame) -> int:
        """Deliver to every current subscriber; no retries, no queuing here."""

        delivered = 0
        for subscription in list(self._subscriptions.values()):
            subscription.deliver(frame)
            delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)
