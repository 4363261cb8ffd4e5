"""Durable key-value storage backing the session store.

Two backends:
    JsonFileStorage  one JSON document on disk, replaced atomically per write
    MemoryStorage    in-process dict, used by tests and dry runs

Writes never suspend between taking the caller's value and committing it,
so two persists issued back to back land in issue order.
"""
from __future__ import annotations

import abc
import copy
import json
import logging
from pathlib import Path
from typing import Any

from lloro.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)


class KeyValueStorage(abc.ABC):
    """Async key-value interface, shaped like browser extension local storage."""

    @abc.abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""

    @abc.abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key."""

    @abc.abstractmethod
    async def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is not an error."""


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so tests catch unserializable values.
        self._data[key] = json.loads(json.dumps(value))

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())


class JsonFileStorage(KeyValueStorage):
    """All keys live in one JSON object at ``path``."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Storage file %s is corrupt; treating as empty", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage file %s does not hold an object; treating as empty", self._path)
            return {}
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        atomic_write_json(self._path, data)

    async def get(self, key: str) -> Any | None:
        return self._read_all().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)
        logger.debug("Storage key %s written to %s", key, self._path)

    async def remove(self, key: str) -> None:
        data = self._read_all()
        if key not in data:
            return
        del data[key]
        self._write_all(data)
        logger.debug("Storage key %s removed from %s", key, self._path)
