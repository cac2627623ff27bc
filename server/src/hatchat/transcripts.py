"""Saved chat transcripts with JSON export and validated import."""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any, List

from .storage import DocumentStore, PersistenceLoadError, PersistenceWriteError

logger = logging.getLogger(__name__)

EXPORT_PREFIX = "hatchat_export_"


class MalformedImportError(Exception):
    pass


class TranscriptArchive:
    """Saved chats kept as one JSON array; every mutation rewrites it.

    Mutators report a failed write by their return value and log it.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def list(self) -> List[Any]:
        try:
            document = self._store.load([])
        except PersistenceLoadError:
            logger.exception("Failed to load saved chats")
            return []
        if not isinstance(document, list):
            logger.error("Stored saved chats are not an array, treating as empty")
            return []
        return document

    def save(self, chat: Any) -> int | None:
        chats = self.list()
        chats.append(chat)
        if not self._write(chats):
            return None
        return len(chats) - 1

    def get(self, index: int) -> Any | None:
        chats = self.list()
        if index < 0 or index >= len(chats):
            return None
        return chats[index]

    def delete(self, index: int) -> bool:
        chats = self.list()
        if index < 0 or index >= len(chats):
            return False
        del chats[index]
        return self._write(chats)

    def clear(self) -> bool:
        return self._write([])

    def export_json(self) -> str:
        return json.dumps(self.list(), indent=2)

    @staticmethod
    def export_filename(day: dt.date | None = None) -> str:
        day = day or dt.date.today()
        return f"{EXPORT_PREFIX}{day.isoformat()}.json"

    def import_json(self, payload: str) -> bool:
        """Replace the saved chats with ``payload``; False leaves them untouched."""

        try:
            chats = _parse_import(payload)
        except MalformedImportError as exc:
            logger.error("Error importing chats: %s", exc)
            return False
        return self._write(chats)

    def _write(self, chats: List[Any]) -> bool:
        try:
            self._store.save(chats)
        except PersistenceWriteError:
            logger.exception("Failed to persist saved chats")
            return False
        return True


def _parse_import(payload: str) -> List[Any]:
    try:
        chats = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise MalformedImportError(f"invalid JSON: {exc}") from exc
    if not isinstance(chats, list):
        raise MalformedImportError("Invalid format: expected an array of chats")
    return chats
