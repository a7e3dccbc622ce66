"""Abstract base class for record stores.

A record store is an append-only list of JSON-compatible dicts, one
store per record kind (reminders, appointments, messages, ...).  Any
backend (flat JSON file, memory, a database) implements this ABC.
"""

from abc import ABC, abstractmethod
from typing import Any


class PersistenceFailure(Exception):
    """The store could not read or write its records."""


class RecordStore(ABC):
    """Abstract record backend."""

    @abstractmethod
    async def append(self, record: dict[str, Any]) -> None:
        """Persist one record at the end of the store.

        Raises:
            PersistenceFailure: the write did not happen.
        """

    @abstractmethod
    async def list_all(self) -> list[dict[str, Any]]:
        """Return every record, oldest first.

        Raises:
            PersistenceFailure: the store could not be read.
        """
