"""Persistent key/value storage for source configuration and TLE caches.

Every adapter here follows best-effort semantics: reads return ``None``
when a key is missing or unreadable, writes report success as a bool and
never raise. Callers treat a failed write as "not persisted" and carry on.

Two adapters are provided:

    MemoryStore:   In-process dict, with an optional character quota to
                   mimic a full browser-style storage area.
    JsonFileStore: A single JSON object on disk, rewritten on every change.

Set the store location via environment variable::

    export TLESCOPE_STORE="~/.tlescope/store.json"
"""

from __future__ import annotations

import os
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path("data/tlescope_store.json")


class KeyValueStore(Protocol):
    """Minimal durable storage capability used by the registry."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> bool: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. ``capacity`` caps the total characters held."""

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        if self.capacity is not None:
            used = self._used() - len(self._data.get(key, ""))
            if used + len(value) > self.capacity:
                logger.debug(f"Quota exceeded writing {key!r}")
                return False
        self._data[key] = value
        return True

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def _used(self) -> int:
        return sum(len(v) for v in self._data.values())


class JsonFileStore:
    """Store persisted as one JSON object in a file.

    The file is read once on construction. A missing or corrupt file
    starts the store empty; the corrupt file is left alone until the
    next successful write replaces it.
    """

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else default_store_path()
        self._data: dict[str, str] = self._read()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        previous = self._data.get(key)
        self._data[key] = value
        if self._flush():
            return True
        # Roll back so memory mirrors what is on disk
        if previous is None:
            self._data.pop(key, None)
        else:
            self._data[key] = previous
        return False

    def remove(self, key: str) -> None:
        previous = self._data.pop(key, None)
        if previous is not None and not self._flush():
            self._data[key] = previous

    def keys(self) -> list[str]:
        return list(self._data)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable store {self.path}: {e}")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring store {self.path}: not a JSON object")
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, str)}

    def _flush(self) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._data))
            tmp.replace(self.path)
        except OSError as e:
            logger.warning(f"Could not write store {self.path}: {e}")
            return False
        return True


def default_store_path() -> Path:
    """Store location from ``TLESCOPE_STORE``, else ``data/tlescope_store.json``."""
    env = os.environ.get("TLESCOPE_STORE", "")
    return Path(env).expanduser() if env else DEFAULT_STORE_PATH
