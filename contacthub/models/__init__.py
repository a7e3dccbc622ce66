"""Data models for the contact hub."""

from .conversation import ConversationState, DialogueAction, DialogueReply, Flow
from .events import InboundCallEvent
from .records import Appointment, Message, PrivateMessage, Reminder, utc_timestamp

__all__ = [
    "Appointment",
    "ConversationState",
    "DialogueAction",
    "DialogueReply",
    "Flow",
    "InboundCallEvent",
    "Message",
    "PrivateMessage",
    "Reminder",
    "utc_timestamp",
]
