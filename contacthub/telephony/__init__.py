"""Call origination and inbound call bridging."""

from .bridge import EventBridge
from .originator import CallOriginator, OriginateOutcome, OriginateRequest, OriginateResult

__all__ = [
    "CallOriginator",
    "EventBridge",
    "OriginateOutcome",
    "OriginateRequest",
    "OriginateResult",
]
