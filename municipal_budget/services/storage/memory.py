"""
Local Key-Value Stores

InMemoryKeyValueStore is the process-local default (tests, demos).
JsonFileKeyValueStore keeps the same dict in a JSON document on disk
for single-process persistence.
"""

import json
import os
from pathlib import Path
from typing import Optional

from municipal_budget.services.storage.interface import (
    KeyValueStore,
    StorageError,
)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore(KeyValueStore):
    """
    Store persisted as a single JSON object on disk.

    Every write rewrites the file through a temporary file and
    os.replace, so a crash never leaves a half-written document.
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._data: Optional[dict[str, str]] = None

    def _load(self) -> dict[str, str]:
        if self._data is None:
            if not self._path.exists():
                self._data = {}
            else:
                try:
                    self._data = json.loads(self._path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    raise StorageError(f"Failed to read store file {self._path}: {e}")
        return self._data

    def _flush(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(self._data, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageError(f"Failed to write store file {self._path}: {e}")

    async def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    async def set(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._flush()

    async def delete(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._flush()
        return True

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._load() if k.startswith(prefix))
