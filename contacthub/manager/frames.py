"""Asterisk Manager Interface (AMI) wire format.

AMI is a line-oriented text protocol over TCP.  After the connection is
opened the server sends a single banner line, then both sides exchange
frames: ``Key: Value`` lines terminated by an empty line.

  → Action: Login\\r\\nUsername: hub\\r\\nSecret: ...\\r\\nActionID: 3f2a-1\\r\\n\\r\\n
  ← Response: Success\\r\\nActionID: 3f2a-1\\r\\nMessage: Authentication accepted\\r\\n\\r\\n
  ← Event: Newchannel\\r\\nChannel: PJSIP/trunk-0001\\r\\nCallerIDNum: 0600000000\\r\\n...\\r\\n\\r\\n

Frames that carry ``Response`` answer an action (matched by ``ActionID``);
frames that carry ``Event`` are unsolicited and go to event subscribers.
Keys are case-insensitive on the wire, so they are stored lowercased.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Mapping

LINE_END = "\r\n"

# Responses that mean the action was accepted
_SUCCESS_RESPONSES = {"success", "follows", "goodbye", "pong"}


@dataclass
class ManagerFrame:
    """One parsed AMI frame with case-insensitive field access."""

    fields: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_lines(cls, lines: list[str]) -> "ManagerFrame":
        fields: dict[str, str] = {}
        for line in lines:
            key, sep, value = line.partition(":")
            if not sep:
                # Free-form output (e.g. "Response: Follows" command bodies)
                fields.setdefault("output", "")
                fields["output"] += line + "\n"
                continue
            fields[key.strip().lower()] = value.strip()
        return cls(fields=fields)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ManagerFrame":
        return cls(fields={str(k).lower(): str(v) for k, v in data.items()})

    def get(self, key: str, default: str = "") -> str:
        return self.fields.get(key.lower(), default)

    @property
    def is_event(self) -> bool:
        return "event" in self.fields

    @property
    def is_response(self) -> bool:
        return "response" in self.fields

    @property
    def event_name(self) -> str:
        return self.get("event")

    @property
    def action_id(self) -> str:
        return self.get("actionid")

    @property
    def message(self) -> str:
        return self.get("message")

    @property
    def is_success(self) -> bool:
        return self.get("response").lower() in _SUCCESS_RESPONSES


def _clean(value: object) -> str:
    # A CR/LF inside a value would terminate the frame early
    return str(value).replace("\r", " ").replace("\n", " ")


def encode_frame(fields: Mapping[str, object]) -> bytes:
    """Serialize an action (or, in tests, a server frame) to wire bytes."""
    lines = [f"{_clean(key)}: {_clean(value)}" for key, value in fields.items()]
    return (LINE_END.join(lines) + LINE_END + LINE_END).encode("utf-8")


async def read_frame(reader: asyncio.StreamReader) -> ManagerFrame | None:
    """Read the next frame from the stream.

    Returns None at end of stream; a frame cut short by EOF is discarded.
    Stray blank lines between frames are skipped.
    """
    lines: list[str] = []
    while True:
        raw = await reader.readline()
        if not raw:
            return None
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line:
            if lines:
                return ManagerFrame.from_lines(lines)
            continue
        lines.append(line)
