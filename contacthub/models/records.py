"""Pydantic models for the records the hub persists and broadcasts."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(tz=timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Reminder(BaseModel):
    """A callback request left by a visitor."""

    number: str  # 10 digits
    timestamp: str = Field(default_factory=utc_timestamp)


class Appointment(BaseModel):
    """A technician visit requested through the chat or the API."""

    name: str
    date: str  # DD/MM/YYYY
    time: str  # HH:MM
    mobile: str  # 10 digits
    purpose: str = ""
    timestamp: str = Field(default_factory=utc_timestamp)


class Message(BaseModel):
    """A message on the shared operator board."""

    sender: str
    content: str
    timestamp: str = Field(default_factory=utc_timestamp)


class PrivateMessage(BaseModel):
    """A direct message between two operators."""

    sender: str
    recipient: str
    content: str
    timestamp: str = Field(default_factory=utc_timestamp)
