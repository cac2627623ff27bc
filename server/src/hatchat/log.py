from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from .storage import DocumentStore, PersistenceLoadError, PersistenceWriteError

logger = logging.getLogger(__name__)

SYSTEM = "system"
CHAT = "chat"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class ChatMessage:
    """An immutable entry of the room's message log."""

    type: str
    message: str
    timestamp: str
    username: str | None = None
    color: str | None = None
    image: str | None = None

    @classmethod
    def system(cls, message: str, timestamp: str | None = None) -> "ChatMessage":
        return cls(type=SYSTEM, message=message, timestamp=timestamp or _now_iso())

    @classmethod
    def chat(
        cls,
        username: str,
        message: str,
        *,
        color: str | None = None,
        image: str | None = None,
        timestamp: str | None = None,
    ) -> "ChatMessage":
        return cls(
            type=CHAT,
            message=message,
            timestamp=timestamp or _now_iso(),
            username=username,
            color=color,
            image=image,
        )

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"type": self.type}
        if self.type == CHAT:
            record["username"] = self.username
        record["message"] = self.message
        record["timestamp"] = self.timestamp
        if self.type == CHAT:
            record["color"] = self.color
            if self.image is not None:
                record["image"] = self.image
        return record

    @classmethod
    def from_dict(cls, record: Any) -> "ChatMessage":
        if not isinstance(record, dict):
            raise ValueError("message record must be an object")
        kind = record.get("type", CHAT if "username" in record else SYSTEM)
        message = record.get("message")
        timestamp = record.get("timestamp")
        if kind not in {SYSTEM, CHAT} or not isinstance(message, str) or not isinstance(timestamp, str):
            raise ValueError("message record requires type, message and timestamp")
        if kind == SYSTEM:
            return cls.system(message, timestamp)
        username = record.get("username")
        if not isinstance(username, str):
            raise ValueError("chat record requires a username")
        return cls.chat(
            username,
            message,
            color=record.get("color"),
            image=record.get("image"),
            timestamp=timestamp,
        )


class MessageLog:
    """Append-only message log persisted as one JSON array after every append."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._messages: List[ChatMessage] = []
        self.synced = True

    def load(self) -> list[ChatMessage]:
        """Replace the in-memory log with the stored one.

        A missing document is created empty. An unreadable one is logged and
        the log starts empty; undecodable records are skipped.
        """

        try:
            document = self._store.load([])
        except PersistenceLoadError:
            logger.exception("Failed to load message log, starting empty")
            document = []
        if not isinstance(document, list):
            logger.error("Stored message log is not an array, starting empty")
            document = []

        messages: List[ChatMessage] = []
        for index, record in enumerate(document):
            try:
                messages.append(ChatMessage.from_dict(record))
            except ValueError as exc:
                logger.warning("Skipping stored message %d: %s", index, exc)
        self._messages = messages
        self.synced = True
        logger.info("Loaded %d messages", len(messages))
        return list(messages)

    def append(self, message: ChatMessage) -> int:
        """Append at the tail and rewrite the stored log before returning.

        A failed write is logged and not retried; the message stays in memory
        and ``synced`` is False until the next successful write.
        """

        self._messages.append(message)
        index = len(self._messages) - 1
        try:
            self._store.save([entry.to_dict() for entry in self._messages])
        except PersistenceWriteError:
            self.synced = False
            logger.exception("Failed to persist message log (%d messages in memory)", len(self._messages))
        else:
            self.synced = True
        return index

    def window(self, start: int, end: int) -> list[ChatMessage]:
        return self._messages[start:end]

    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
