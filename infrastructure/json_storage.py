"""JSON file key-value storage backend.

All slots live in one JSON object on disk. Each write rewrites the whole
file through a temp file and `os.replace`, so a crash never leaves a
half-written document. File IO runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

from core.services.interfaces import StorageError


class JsonFileStorage:
    """Async key-value store backed by a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            logger.error("Storage read failed for {}: {}", self._path, ex)
            raise StorageError(f"cannot read {self._path}: {ex}") from ex
        if not isinstance(data, dict):
            raise StorageError(f"unexpected storage document in {self._path}")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
        except (OSError, TypeError, ValueError) as ex:
            logger.error("Storage write failed for {}: {}", self._path, ex)
            raise StorageError(f"cannot write {self._path}: {ex}") from ex

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _remove(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)

    async def get(self, key: str) -> Any:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)
