"""Persist a record, then tell every connected client about it."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from contacthub.realtime import RealtimeHub
from contacthub.stores import PersistenceFailure, RecordStore

log = logging.getLogger("contacthub.records")


async def save_and_broadcast(
    store: RecordStore,
    record: BaseModel,
    hub: RealtimeHub | None,
    event_name: str,
    *,
    snapshot: bool = True,
) -> None:
    """Append ``record`` to ``store`` and publish ``event_name``.

    With ``snapshot=True`` the event carries the whole list after the
    append (clients replace their copy); otherwise only the new record.

    If the snapshot cannot be read back after a successful append, the
    record stays saved and the broadcast is skipped.

    Raises:
        PersistenceFailure: the record was not written; nothing was published.
    """
    data = record.model_dump()
    await store.append(data)
    log.debug("Saved %s record", type(record).__name__)
    if hub is None:
        return

    if not snapshot:
        hub.publish(event_name, data)
        return
    try:
        payload = await store.list_all()
    except PersistenceFailure as e:
        log.warning("Saved %s record but could not broadcast %s: %s",
                    type(record).__name__, event_name, e)
        return
    hub.publish(event_name, payload)
