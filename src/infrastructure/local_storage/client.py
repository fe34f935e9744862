"""
Local key/value storage.

The training log keeps a handful of strings on the device: the
remembered login, unsaved form drafts, the coach's selection and a
mirror of the student's workout memos. JsonFileStorage keeps them in
one JSON file; InMemoryStorage is for tests.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from src.core.traininglog.utils import KeyValueStore

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".storage-"


class LocalStorageError(Exception):
    """Raised when the storage file cannot be written."""
    pass


class JsonFileStorage:
    """
    KeyValueStore persisted to a single JSON object on disk.

    Every write rewrites the file through a temporary file and a rename
    so a crash never leaves a half-written file behind.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path).expanduser()
        self._items: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Ignoring unreadable local storage file",
                extra={"path": str(self._path), "error": str(e)}
            )
            return
        if isinstance(data, dict):
            self._items = {str(k): str(v) for k, v in data.items()}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        tmp = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=TEMP_PREFIX)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._items, f, ensure_ascii=False)
            os.replace(tmp, self._path)
        except (OSError, TypeError, ValueError) as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            logger.error("Failed to write local storage", extra={"path": str(self._path), "error": str(e)})
            raise LocalStorageError(f"Write failed: {e}")


class InMemoryStorage:
    """Dict-backed KeyValueStore."""

    def __init__(self, items: Optional[dict[str, str]] = None) -> None:
        self._items = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)


def create_local_storage(path: Optional[str] = None, mock_mode: bool = False) -> KeyValueStore:
    if mock_mode or not path:
        logger.debug("Using in-memory local storage")
        return InMemoryStorage()
    logger.debug("Using file local storage", extra={"path": path})
    return JsonFileStorage(path)
