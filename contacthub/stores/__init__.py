"""Record store abstractions and implementations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .base import PersistenceFailure, RecordStore
from .json_file import JsonFileStore
from .memory import MemoryStore


@dataclass
class HubStores:
    """One store per record kind."""

    reminders: RecordStore
    appointments: RecordStore
    messages: RecordStore
    private_messages: RecordStore

    @classmethod
    def from_directory(cls, data_dir: str | Path) -> "HubStores":
        root = Path(data_dir)
        return cls(
            reminders=JsonFileStore(root / "reminders.json"),
            appointments=JsonFileStore(root / "appointments.json"),
            messages=JsonFileStore(root / "messages.json"),
            private_messages=JsonFileStore(root / "private_messages.json"),
        )

    @classmethod
    def in_memory(cls) -> "HubStores":
        return cls(
            reminders=MemoryStore(),
            appointments=MemoryStore(),
            messages=MemoryStore(),
            private_messages=MemoryStore(),
        )


__all__ = ["HubStores", "JsonFileStore", "MemoryStore", "PersistenceFailure", "RecordStore"]
