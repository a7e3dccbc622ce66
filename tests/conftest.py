"""Shared fixtures: an in-memory manager link and in-memory stores."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest

from contacthub.manager import (
    ConnectionUnavailable,
    EventSubscription,
    ManagerFrame,
    ManagerLink,
    ManagerSessionState,
)
from contacthub.realtime import RealtimeHub
from contacthub.stores import HubStores, MemoryStore, PersistenceFailure, RecordStore


class FakeManagerLink(ManagerLink):
    """ManagerLink that records actions and answers from a script.

    ``responses`` maps an action name to either a ManagerFrame to return
    or an exception instance to raise.  Unknown actions succeed.
    """

    def __init__(self, state=ManagerSessionState.AUTHENTICATED):
        self._state = state
        self.actions: list[dict[str, str]] = []
        self.timeouts: list[float | None] = []
        self.responses: dict[str, object] = {}
        self.subscriptions: list[EventSubscription] = []
        self.started = False
        self.closed = False
        self._counter = 0

    @property
    def state(self):
        return self._state

    async def connect(self):
        self._state = ManagerSessionState.AUTHENTICATED

    def start(self):
        self.started = True

    async def close(self):
        self.closed = True
        self.drop()

    async def send_action(self, action, timeout=None):
        if self._state is not ManagerSessionState.AUTHENTICATED:
            raise ConnectionUnavailable("link down")
        self._counter += 1
        action_id = f"fake-{self._counter}"
        self.actions.append(dict(action))
        self.timeouts.append(timeout)

        scripted = self.responses.get(action.get("Action"))
        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, ManagerFrame):
            return scripted
        return ManagerFrame.from_mapping({
            "Response": "Success", "ActionID": action_id, "Message": "Originate successfully queued",
        })

    def subscribe_events(self):
        sub = EventSubscription(on_close=self._unsubscribe)
        self.subscriptions.append(sub)
        return sub

    def _unsubscribe(self, sub):
        if sub in self.subscriptions:
            self.subscriptions.remove(sub)

    # ── Test helpers ──────────────────────────────────────────

    def emit(self, fields: dict[str, str]) -> None:
        frame = ManagerFrame.from_mapping(fields)
        for sub in list(self.subscriptions):
            sub.push(frame)

    def drop(self) -> None:
        """Simulate transport loss: every subscription ends."""
        self._state = ManagerSessionState.DISCONNECTED
        subs, self.subscriptions = self.subscriptions, []
        for sub in subs:
            sub.end()


class FailingStore(RecordStore):
    """Store whose writes always fail."""

    def __init__(self):
        self.attempts = 0

    async def append(self, record):
        self.attempts += 1
        raise PersistenceFailure("disk full")

    async def list_all(self):
        return []


class UnreadableStore(MemoryStore):
    """Store whose writes succeed but whose reads always fail."""

    async def list_all(self):
        raise PersistenceFailure("read error")


async def wait_for(predicate, timeout=2.0):
    """Poll ``predicate`` until it is truthy or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def link():
    return FakeManagerLink()


@pytest.fixture
def hub():
    return RealtimeHub(queue_size=10)


@pytest.fixture
def stores():
    return HubStores.in_memory()
