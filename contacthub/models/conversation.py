"""Pydantic models tracking a chat visitor through the dialogue."""

from enum import Enum

from pydantic import BaseModel


class Flow(str, Enum):
    """Multi-turn sub-task the conversation is in, if any."""

    NONE = "none"
    CALLBACK_COLLECTION = "callback_collection"
    APPOINTMENT_COLLECTION = "appointment_collection"
    OFFER_CONFIRMATION = "offer_confirmation"


class DialogueAction(str, Enum):
    """Signal returned to the front-end alongside each reply.

    Values are the wire names the chat widget already understands.
    """

    NONE = "none"
    CALLBACK_REQUEST = "callbackRequest"
    OFFER_CONFIRMATION = "offerConfirmation"
    TECHNICIAN_APPOINTMENT = "technicianAppointment"
    DONE = "done"


class ConversationState(BaseModel):
    """Mutable state for one conversation.

    ``collected_fields`` is only ever assigned as a whole, after the
    user's input parsed completely, so a malformed attempt never leaves
    partial data behind.
    """

    active_flow: Flow = Flow.NONE
    collected_fields: dict[str, str] = {}


class DialogueReply(BaseModel):
    """Result of one dialogue turn."""

    reply: str
    action: DialogueAction = DialogueAction.NONE
