"""In-memory record store, used when no data directory is configured."""

from __future__ import annotations

import copy
from typing import Any

from .base import RecordStore


class MemoryStore(RecordStore):
    """RecordStore that keeps records in a list for the process lifetime."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self._records: list[dict[str, Any]] = list(records or [])

    async def append(self, record: dict[str, Any]) -> None:
        self._records.append(copy.deepcopy(record))

    async def list_all(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._records)

    def __len__(self) -> int:
        return len(self._records)
