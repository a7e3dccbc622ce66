"""Realtime hub: fan-out of server-side events to connected browser clients.

Every connected client (one WebSocket) gets its own bounded asyncio.Queue.
publish() never awaits: it pushes to each queue with put_nowait and, when
a slow client's queue is full, drops that client's oldest event.  Clients
that are not connected receive nothing; there is no replay.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, TypedDict

log = logging.getLogger("contacthub.realtime")

# Event names sent to clients
INBOUND_CALL = "inbound_call"
REMINDERS_UPDATE = "reminders_update"
APPOINTMENTS_UPDATE = "appointments_update"
MESSAGES_UPDATE = "messages_update"
PRIVATE_MESSAGE = "private_message"
USER_REGISTERED = "user_registered"  # published by the external registration service


class HubEvent(TypedDict):
    event: str
    timestamp: float
    data: Any


class RealtimeHub:
    """Process-wide broadcaster using one asyncio.Queue per subscriber."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[HubEvent]] = []
        self.published = 0

    def subscribe(self) -> asyncio.Queue[HubEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[HubEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(q)
        log.info("Realtime subscriber added (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[HubEvent]) -> None:
        """Remove a subscriber queue."""
        try:
            self._subscribers.remove(q)
        except ValueError:
            return
        log.info("Realtime subscriber removed (total: %d)", len(self._subscribers))

    @contextmanager
    def subscription(self) -> Iterator[asyncio.Queue[HubEvent]]:
        """Subscribe for the duration of a ``with`` block (one client connection)."""
        q = self.subscribe()
        try:
            yield q
        finally:
            self.unsubscribe(q)

    def publish(self, event_name: str, payload: Any) -> int:
        """Broadcast an event to all current subscribers.

        Returns the number of subscribers the event was queued for.
        """
        event: HubEvent = {
            "event": event_name,
            "timestamp": time.time(),
            "data": payload,
        }
        self.published += 1

        delivered = 0
        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    q.get_nowait()
                    q.put_nowait(event)
                    delivered += 1
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass
                log.warning("Realtime subscriber lagging; dropped oldest event")

        log.debug("Published %s to %d subscriber(s)", event_name, delivered)
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
