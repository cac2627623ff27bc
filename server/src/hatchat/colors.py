from __future__ import annotations

import logging
from typing import Dict

from .storage import DocumentStore, PersistenceLoadError, PersistenceWriteError

logger = logging.getLogger(__name__)


class ColorDirectory:
    """Durable username -> display color mapping; the last write wins."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._colors: Dict[str, str] = {}
        self.synced = True

    def load(self) -> dict[str, str]:
        try:
            document = self._store.load({})
        except PersistenceLoadError:
            logger.exception("Failed to load user colors, starting empty")
            document = {}
        if not isinstance(document, dict):
            logger.error("Stored user colors are not an object, starting empty")
            document = {}
        self._colors = {str(name): color for name, color in document.items() if isinstance(color, str)}
        return dict(self._colors)

    def get(self, username: str) -> str | None:
        return self._colors.get(username)

    def set(self, username: str, color: str) -> None:
        self._colors[username] = color
        try:
            self._store.save(dict(self._colors))
        except PersistenceWriteError:
            self.synced = False
            logger.exception("Failed to persist color for %s", username)
        else:
            self.synced = True

    def all(self) -> dict[str, str]:
        return dict(self._colors)
