"""Registry of live chat conversations, keyed by session id."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable

from contacthub.dialogue.engine import DialogueEngine

log = logging.getLogger("contacthub.dialogue")


class DialogueSessions:
    """Hands out one DialogueEngine per session id.

    ``factory(session_id)`` builds a fresh engine.  Conversations idle for
    longer than ``idle_timeout`` seconds are dropped by prune_idle().
    """

    def __init__(self, factory: Callable[[str], DialogueEngine], idle_timeout: float = 1800.0) -> None:
        self._factory = factory
        self._idle_timeout = idle_timeout
        self._engines: dict[str, DialogueEngine] = {}

    def get_or_create(self, session_id: str | None = None) -> DialogueEngine:
        """Return the engine for ``session_id``, creating it if unknown.

        A missing id gets a new random one.
        """
        if not session_id:
            session_id = secrets.token_urlsafe(18)
        engine = self._engines.get(session_id)
        if engine is None:
            engine = self._factory(session_id)
            self._engines[session_id] = engine
            log.info("Dialogue session %s created (active: %d)", session_id, len(self._engines))
        return engine

    def get(self, session_id: str) -> DialogueEngine | None:
        return self._engines.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self._engines.pop(session_id, None) is not None

    def prune_idle(self, now: float | None = None) -> int:
        """Drop conversations idle past the timeout. Returns how many were dropped."""
        if self._idle_timeout <= 0:
            return 0
        now = time.time() if now is None else now
        stale = [
            sid for sid, engine in self._engines.items()
            if now - engine.last_activity > self._idle_timeout
        ]
        for sid in stale:
            del self._engines[sid]
        if stale:
            log.info("Pruned %d idle dialogue session(s)", len(stale))
        return len(stale)

    def to_list(self) -> list[dict[str, Any]]:
        return [engine.to_dict() for engine in self._engines.values()]

    def __len__(self) -> int:
        return len(self._engines)
