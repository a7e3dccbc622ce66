"""ManagerLink ABC: the control-plane connection to the PBX.

A manager link carries two independent directions over one session:

  actions:  send_action() → correlated response (or timeout)
  events:   subscribe_events() → stream of unsolicited event frames

Implementations own exactly one underlying session and recreate it on
transport failure.  Callers never queue work on a link that is down:
send_action() fails fast with ConnectionUnavailable and the caller
decides whether to retry.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from contacthub.manager.frames import ManagerFrame

log = logging.getLogger("contacthub.manager")


class ManagerSessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


# ── Error taxonomy ───────────────────────────────────────────────


class ManagerLinkError(Exception):
    """Base class for manager link failures. Never fatal to the process."""


class ConnectError(ManagerLinkError):
    """A connection attempt failed (transport, banner or login)."""


class ConnectionUnavailable(ManagerLinkError):
    """The link is not authenticated; the action was not sent."""


class ActionTimeout(ManagerLinkError):
    """No correlated response arrived within the bound."""

    def __init__(self, action: str, action_id: str, timeout: float) -> None:
        super().__init__(f"{action} ({action_id}) got no response within {timeout:.1f}s")
        self.action = action
        self.action_id = action_id
        self.timeout = timeout


class ActionRejected(ManagerLinkError):
    """The PBX answered the action with an explicit error."""

    def __init__(self, reason: str, action_id: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.action_id = action_id


# ── Event subscriptions ──────────────────────────────────────────


class EventSubscription:
    """Bounded, restartable view of the link's event stream.

    Registered as soon as it is created, so no event published after
    subscribe_events() returns is missed.  Iteration stops when the link
    ends the subscription (transport lost or link closed), after every
    frame already queued has been yielded; subscribing again afterwards
    yields events from the next session only.

    The publisher never blocks: when the queue is full the oldest frame
    is dropped.  Ending the subscription never takes a queue slot.
    """

    def __init__(
        self,
        on_close: Callable[["EventSubscription"], None] | None = None,
        maxsize: int = 1000,
    ) -> None:
        self._queue: asyncio.Queue[ManagerFrame] = asyncio.Queue(maxsize=maxsize)
        self._wakeup = asyncio.Event()
        self._on_close = on_close
        self._ended = False
        self._closed = False
        self.dropped = 0

    def push(self, frame: ManagerFrame) -> None:
        if self._ended:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            log.warning("Event subscriber is lagging; dropping oldest event")
            self._queue.get_nowait()
            self.dropped += 1
            self._queue.put_nowait(frame)
        self._wakeup.set()

    def end(self) -> None:
        """Terminate iteration after the frames already queued."""
        if self._ended:
            return
        self._ended = True
        self._wakeup.set()

    def close(self) -> None:
        """Unregister from the link. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        self._ended = True
        self._wakeup.set()
        if self._on_close is not None:
            self._on_close(self)

    @property
    def ended(self) -> bool:
        return self._ended

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> ManagerFrame:
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._ended:
                self.close()
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()


# ── Link contract ────────────────────────────────────────────────


class ManagerLink(ABC):
    """Abstract manager link.

    AmiClient is the production implementation; tests substitute
    in-memory links that honour the same contract.
    """

    @property
    @abstractmethod
    def state(self) -> ManagerSessionState:
        """Current session state."""

    @abstractmethod
    async def connect(self) -> None:
        """Make one connection attempt and authenticate.

        Raises:
            ConnectError: transport failure, timeout or rejected login.
        """

    @abstractmethod
    def start(self) -> None:
        """Start the supervisor that keeps the session alive (idempotent)."""

    @abstractmethod
    async def close(self) -> None:
        """Stop reconnecting, close the session and end all subscriptions."""

    @abstractmethod
    async def send_action(
        self, action: dict[str, str], timeout: float | None = None,
    ) -> ManagerFrame:
        """Send one action and wait for its correlated response.

        Raises:
            ConnectionUnavailable: the link is not authenticated.
            ActionTimeout: no response within ``timeout``.
            ActionRejected: the PBX answered with an error.
        """

    @abstractmethod
    def subscribe_events(self) -> EventSubscription:
        """Register a new event subscription."""
