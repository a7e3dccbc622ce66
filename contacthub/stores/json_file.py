"""Flat JSON file record store.

Each store is one file holding a JSON array.  The file (and its parent
directory) is created with ``[]`` on first use.  Writes go to a sibling
temp file that replaces the original, so a crash mid-write never leaves
a truncated array behind.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from functools import partial
from pathlib import Path
from typing import Any

from .base import PersistenceFailure, RecordStore

logger = logging.getLogger(__name__)


class JsonFileStore(RecordStore):
    """RecordStore backed by a JSON array on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args) -> Any:
        """Run blocking file I/O in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _read(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("[]", encoding="utf-8")
            return []
        data = json.loads(self._path.read_text(encoding="utf-8") or "[]")
        if not isinstance(data, list):
            raise ValueError(f"{self._path} does not contain a JSON array")
        return data

    def _write(self, records: list[dict[str, Any]]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

    def _append_sync(self, record: dict[str, Any]) -> None:
        records = self._read()
        records.append(record)
        self._write(records)

    # ------------------------------------------------------------------
    # RecordStore interface
    # ------------------------------------------------------------------

    async def append(self, record: dict[str, Any]) -> None:
        async with self._lock:
            try:
                await self._run_in_executor(self._append_sync, record)
            except (OSError, ValueError, TypeError) as e:
                logger.error("Failed to append to %s: %s", self._path, e)
                raise PersistenceFailure(f"cannot write {self._path.name}: {e}") from e

    async def list_all(self) -> list[dict[str, Any]]:
        async with self._lock:
            try:
                return await self._run_in_executor(self._read)
            except (OSError, ValueError) as e:
                logger.error("Failed to read %s: %s", self._path, e)
                raise PersistenceFailure(f"cannot read {self._path.name}: {e}") from e
