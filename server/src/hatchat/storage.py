"""JSON document persistence shared by the message log, colors and archive."""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any


class PersistenceWriteError(Exception):
    """A document could not be written; in-memory state is left as is."""


class PersistenceLoadError(Exception):
    """A stored document exists but could not be read or decoded."""


class DocumentStore:
    """Loads and saves a single JSON document, rewritten wholesale on save."""

    def load(self, default: Any) -> Any:
        raise NotImplementedError

    def save(self, document: Any) -> None:
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, document: Any = None) -> None:
        self._document = copy.deepcopy(document)
        self.fail_writes = False
        self.writes = 0

    def load(self, default: Any) -> Any:
        if self._document is None:
            self._document = copy.deepcopy(default)
        return copy.deepcopy(self._document)

    def save(self, document: Any) -> None:
        if self.fail_writes:
            raise PersistenceWriteError("simulated write failure")
        self._document = copy.deepcopy(document)
        self.writes += 1

    @property
    def document(self) -> Any:
        return copy.deepcopy(self._document)


class JsonFileStore(DocumentStore):
    """Whole-document rewrite through a temp file, ``fsync`` and ``os.replace``.

    A crash mid-write leaves the previous complete document in place.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self, default: Any) -> Any:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            try:
                self.save(default)
            except PersistenceWriteError as exc:
                raise PersistenceLoadError(f"cannot create {self.path}: {exc}") from exc
            return copy.deepcopy(default)
        except OSError as exc:
            raise PersistenceLoadError(f"cannot read {self.path}: {exc}") from exc

        try:
            return json.loads(content)
        except (json.JSONDecodeError, ValueError) as exc:
            raise PersistenceLoadError(f"invalid JSON in {self.path}: {exc}") from exc

    def save(self, document: Any) -> None:
        try:
            _atomic_write_json(self.path, document)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceWriteError(f"cannot write {self.path}: {exc}") from exc


def _atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)
