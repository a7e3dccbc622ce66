"""Per-conversation dialogue engine: keyword rules plus explicit flow state.

Each chat conversation gets a DialogueEngine that:
  1. Holds the ConversationState (active flow, collected fields)
  2. While idle, classifies the message with the ordered keyword rules;
     the first match gives the reply and may enter a flow
  3. While in a flow, parses the message as the flow's expected input:
       callback_collection     → 10-digit phone number → Reminder
       appointment_collection  → 5 comma-separated fields → Appointment
       offer_confirmation      → oui / non → originate an advisor call
  4. On success, hands the record to its store, broadcasts the update
     and returns to idle
  5. On malformed input, re-prompts and stays in the flow, unless the
     message asks for another task (it matches a rule entering a different
     flow), in which case the flow is abandoned and the message handled as idle

Each turn depends only on the stored flow and the current message.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from contacthub.dialogue.parsers import (
    MalformedUserInput,
    parse_appointment,
    parse_confirmation,
    parse_phone_number,
)
from contacthub.dialogue.rules import DialogueRule, default_rules
from contacthub.models.conversation import (
    ConversationState,
    DialogueAction,
    DialogueReply,
    Flow,
)
from contacthub.models.records import Appointment, Reminder
from contacthub.realtime import APPOINTMENTS_UPDATE, REMINDERS_UPDATE, RealtimeHub
from contacthub.records import save_and_broadcast
from contacthub.stores import PersistenceFailure, RecordStore
from contacthub.telephony.originator import CallOriginator

log = logging.getLogger("contacthub.dialogue")

EXAMPLE_APPOINTMENT = "Jean Dupont, 29/07/2025, 10:30, 0612345678, Installation Fibre"

CALLBACK_CONFIRMED = "Merci ! Un conseiller vous rappellera au {number} dans les plus brefs délais."
APPOINTMENT_CONFIRMED = (
    "Votre rendez-vous du {date} à {time} est enregistré. "
    "Un technicien vous contactera au {mobile}."
)
OFFER_CALL_LAUNCHED = "Un conseiller vous appelle maintenant..."
OFFER_CALL_FAILED = (
    "Nos conseillers sont momentanément indisponibles. "
    "Veuillez réessayer plus tard ou demander un rappel."
)
OFFER_DECLINED = "Merci pour votre visite. À bientôt !"
SAVE_FAILED = "Désolé, une erreur est survenue lors de l'enregistrement. Veuillez réessayer."

# Re-prompt text and front-end action per flow
REPROMPTS: dict[Flow, tuple[str, DialogueAction]] = {
    Flow.CALLBACK_COLLECTION: (
        "Format incorrect ({reason}). Veuillez saisir votre numéro, par exemple 0612345678.",
        DialogueAction.CALLBACK_REQUEST,
    ),
    Flow.APPOINTMENT_COLLECTION: (
        "Format incorrect ({reason}). Merci d'indiquer, séparés par des virgules : "
        "Nom, Date (JJ/MM/AAAA), Heure (HH:MM), Numéro mobile (10 chiffres), "
        f"Objet de la demande. Ex : '{EXAMPLE_APPOINTMENT}'.",
        DialogueAction.TECHNICIAN_APPOINTMENT,
    ),
    Flow.OFFER_CONFIRMATION: (
        "Souhaitez-vous qu'un conseiller vous appelle ? Répondez par « oui » ou « non ».",
        DialogueAction.OFFER_CONFIRMATION,
    ),
}


def redact_phone(value: str) -> str:
    """Mask a phone number for logging: keep the first 2 and last 2 digits."""
    if not value or len(value) <= 4:
        return "***"
    return value[:2] + "******" + value[-2:]


class DialogueEngine:
    """One chat conversation's state machine.

    Typical lifecycle::

        engine = DialogueEngine("abc", reminders=store, originator=originator)

        reply = await engine.handle_message("Je voudrais un rappel")
        # → reply.action == DialogueAction.CALLBACK_REQUEST

        reply = await engine.handle_message("0612345678")
        # → reminder saved, reply.action == DialogueAction.DONE
    """

    def __init__(
        self,
        session_id: str = "",
        *,
        rules: list[DialogueRule] | None = None,
        reminders: RecordStore | None = None,
        appointments: RecordStore | None = None,
        originator: CallOriginator | None = None,
        hub: RealtimeHub | None = None,
        offer_from_extension: str = "1001",
        offer_to_extension: str = "1002",
    ) -> None:
        self._session_id = session_id
        self._rules = rules if rules is not None else default_rules()
        self._reminders = reminders
        self._appointments = appointments
        self._originator = originator
        self._hub = hub
        self._offer_from = offer_from_extension
        self._offer_to = offer_to_extension

        self._state = ConversationState()
        self._lock = asyncio.Lock()

        self.started_at = time.time()
        self.last_activity = self.started_at
        self.turns = 0
        self.last_completed: ConversationState | None = None

    # ── Public API ────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def active_flow(self) -> Flow:
        return self._state.active_flow

    def to_dict(self) -> dict[str, Any]:
        """Serialize the conversation for the operator API."""
        return {
            "session_id": self._session_id,
            "active_flow": self._state.active_flow.value,
            "turns": self.turns,
            "last_completed_flow": (
                self.last_completed.active_flow.value if self.last_completed else None
            ),
            "started_at": self.started_at,
            "last_activity": self.last_activity,
        }

    async def handle_message(self, text: str) -> DialogueReply:
        """Process one user message and return the reply.

        Turns for the same conversation run one at a time; an originate
        in progress suspends only this conversation.
        """
        async with self._lock:
            self.turns += 1
            self.last_activity = time.time()

            message = (text or "").strip()
            lowered = message.lower()
            flow = self._state.active_flow

            if flow is Flow.NONE:
                reply = self._handle_idle(lowered)
            else:
                reply = await self._handle_flow(flow, message, lowered)

            log.info(
                "Session %s turn %d: flow %s → %s, action=%s",
                self._session_id, self.turns, flow.value,
                self._state.active_flow.value, reply.action.value,
            )
            return reply

    # ── Internal: idle ───────────────────────────────────────

    def _match_rule(self, lowered: str) -> DialogueRule:
        for rule in self._rules:
            if rule.matches(lowered):
                return rule
        # validate_rules guarantees a trailing catch-all
        raise RuntimeError("Dialogue rules have no catch-all")

    def _handle_idle(self, lowered: str) -> DialogueReply:
        rule = self._match_rule(lowered)
        if rule.enters_flow is not Flow.NONE:
            self._state = ConversationState(active_flow=rule.enters_flow)
            log.debug("Session %s entered %s via rule %s",
                      self._session_id, rule.enters_flow.value, rule.id)
        return DialogueReply(reply=rule.reply, action=rule.action)

    # ── Internal: flows ──────────────────────────────────────

    async def _handle_flow(self, flow: Flow, message: str, lowered: str) -> DialogueReply:
        """Parse the message as the flow's input, or re-prompt.

        Malformed input abandons the flow only when it matches a rule that
        enters another flow (the visitor switched task).  Anything else,
        including text with a greeting or help keyword, re-prompts and the
        flow stays active.
        """
        try:
            if flow is Flow.CALLBACK_COLLECTION:
                return await self._collect_callback(message)
            if flow is Flow.APPOINTMENT_COLLECTION:
                return await self._collect_appointment(message)
            return await self._confirm_offer(lowered)
        except MalformedUserInput as e:
            rule = self._match_rule(lowered)
            if rule.enters_flow not in (Flow.NONE, flow):
                log.info("Session %s abandoned %s for rule %s",
                         self._session_id, flow.value, rule.id)
                self._reset()
                return self._handle_idle(lowered)

            template, action = REPROMPTS[flow]
            return DialogueReply(reply=template.format(reason=e), action=action)

    async def _collect_callback(self, message: str) -> DialogueReply:
        number = parse_phone_number(message)
        reminder = Reminder(number=number)

        if not await self._persist(self._reminders, reminder, REMINDERS_UPDATE):
            return DialogueReply(reply=SAVE_FAILED, action=DialogueAction.CALLBACK_REQUEST)

        self._complete({"number": number})
        log.info("Session %s callback requested for %s", self._session_id, redact_phone(number))
        return DialogueReply(
            reply=CALLBACK_CONFIRMED.format(number=number), action=DialogueAction.DONE,
        )

    async def _collect_appointment(self, message: str) -> DialogueReply:
        fields = parse_appointment(message)
        appointment = Appointment(**fields)

        if not await self._persist(self._appointments, appointment, APPOINTMENTS_UPDATE):
            return DialogueReply(reply=SAVE_FAILED, action=DialogueAction.TECHNICIAN_APPOINTMENT)

        self._complete(fields)
        log.info("Session %s booked appointment on %s at %s",
                 self._session_id, appointment.date, appointment.time)
        return DialogueReply(
            reply=APPOINTMENT_CONFIRMED.format(**fields), action=DialogueAction.DONE,
        )

    async def _confirm_offer(self, lowered: str) -> DialogueReply:
        accepted = parse_confirmation(lowered)
        if not accepted:
            self._reset()
            return DialogueReply(reply=OFFER_DECLINED, action=DialogueAction.DONE)

        if self._originator is None:
            log.warning("Session %s accepted an offer call but no originator is configured",
                        self._session_id)
            self._reset()
            return DialogueReply(reply=OFFER_CALL_FAILED, action=DialogueAction.DONE)

        result = await self._originator.originate(self._offer_from, self._offer_to)
        self._complete({"from": self._offer_from, "to": self._offer_to})
        if not result.accepted:
            log.warning("Session %s offer call %s: %s",
                        self._session_id, result.outcome.value, result.reason)
            return DialogueReply(reply=OFFER_CALL_FAILED, action=DialogueAction.DONE)
        return DialogueReply(reply=OFFER_CALL_LAUNCHED, action=DialogueAction.DONE)

    # ── Internal: state helpers ──────────────────────────────

    async def _persist(self, store: RecordStore | None, record, event_name: str) -> bool:
        """Hand a record to its store. Returns False (and logs) on failure."""
        if store is None:
            log.error("Session %s has no store for %s", self._session_id, type(record).__name__)
            return False
        try:
            await save_and_broadcast(store, record, self._hub, event_name)
        except PersistenceFailure as e:
            log.error("Session %s could not save %s: %s",
                      self._session_id, type(record).__name__, e)
            return False
        return True

    def _complete(self, fields: dict[str, str]) -> None:
        # Fields land in one assignment, then the flow ends
        self._state.collected_fields = dict(fields)
        log.debug("Session %s completed %s with %s",
                  self._session_id, self._state.active_flow.value, sorted(fields))
        self.last_completed = self._state
        self._reset()

    def _reset(self) -> None:
        self._state = ConversationState()
