"""EventBridge: manager link events → realtime inbound-call notifications.

The bridge runs one background task for the process lifetime.  It
subscribes to the link's event stream and, for every ``Newchannel``
event that carries a caller number, publishes an ``inbound_call`` event
on the realtime hub.  Every other event is discarded.

When the subscription ends (the link lost its session) the bridge
subscribes again straight away.  A subscription taken while the link is
down starts receiving as soon as the next session is authenticated, so
no event of the new session is missed.  Frames queued before the loss
are still bridged.  ``resubscribe_delay`` only applies after the
consumption loop itself failed.  Counters carry over; events the PBX
emitted while the link was down are not replayed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from contacthub.manager.base import ManagerLink
from contacthub.manager.frames import ManagerFrame
from contacthub.models.events import InboundCallEvent
from contacthub.realtime import INBOUND_CALL, RealtimeHub

logger = logging.getLogger(__name__)

NEW_CHANNEL_EVENT = "newchannel"


class EventBridge:
    """Filter the manager event stream and republish inbound calls."""

    def __init__(
        self,
        link: ManagerLink,
        hub: RealtimeHub,
        *,
        resubscribe_delay: float = 1.0,
    ) -> None:
        self._link = link
        self._hub = hub
        self._resubscribe_delay = resubscribe_delay
        self._task: asyncio.Task | None = None

        self.events_seen = 0
        self.calls_published = 0
        self.subscriptions = 0

    @staticmethod
    def to_inbound_call(frame: ManagerFrame) -> InboundCallEvent | None:
        """Return an InboundCallEvent for a caller-bearing Newchannel, else None."""
        if frame.event_name.lower() != NEW_CHANNEL_EVENT:
            return None
        number = frame.get("calleridnum").strip()
        if not number:
            return None
        return InboundCallEvent(
            caller_number=number,
            caller_name=frame.get("calleridname").strip(),
        )

    def handle_frame(self, frame: ManagerFrame) -> bool:
        """Publish the frame if it is an inbound call. Returns True if published."""
        self.events_seen += 1
        call = self.to_inbound_call(frame)
        if call is None:
            return False

        logger.info(
            "Inbound call detected: from %s (%s)",
            call.caller_number, call.caller_name or "unknown",
        )
        self._hub.publish(INBOUND_CALL, call.to_payload())
        self.calls_published += 1
        return True

    async def run(self) -> None:
        """Consume events forever, re-subscribing whenever the stream ends."""
        while True:
            subscription = self._link.subscribe_events()
            self.subscriptions += 1
            failed = False
            try:
                async for frame in subscription:
                    try:
                        self.handle_frame(frame)
                    except Exception:
                        logger.exception("Failed to bridge event %s", frame.event_name)
            except Exception:
                logger.exception("Event stream failed")
                failed = True
            finally:
                subscription.close()

            if failed:
                logger.info("Resubscribing in %.1fs", self._resubscribe_delay)
                await asyncio.sleep(self._resubscribe_delay)
            else:
                logger.info("Event stream ended; resubscribing")

    def start(self) -> asyncio.Task:
        """Start the consumption loop as a background task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="event-bridge")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
