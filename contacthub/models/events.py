"""Pydantic model for inbound call notifications."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class InboundCallEvent(BaseModel):
    """An incoming call detected on the manager link.

    Ephemeral: built by the event bridge, pushed to realtime clients,
    never persisted.
    """

    model_config = ConfigDict(frozen=True)

    caller_number: str
    caller_name: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_payload(self) -> dict[str, str]:
        """Shape sent to browser clients."""
        return {
            "number": self.caller_number,
            "name": self.caller_name,
            "timestamp": self.timestamp.isoformat(),
        }
