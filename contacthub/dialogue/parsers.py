"""Parsers for the input each dialogue flow expects.

Every parser either returns fully validated data or raises
MalformedUserInput with a short, user-facing reason.  Nothing is
returned for a partially valid input.
"""

from __future__ import annotations

import re
from datetime import datetime

PHONE_RE = re.compile(r"\d{10}")
DATE_RE = re.compile(r"\d{2}/\d{2}/\d{4}")
TIME_RE = re.compile(r"(?:[01]\d|2[0-3]):[0-5]\d")

# Order in which the appointment fields must be given
APPOINTMENT_FIELDS = ("name", "date", "time", "mobile", "purpose")

AFFIRMATIVE = {"oui", "yes", "ok", "d'accord", "d’accord", "daccord", "offerconfirmation_yes"}
NEGATIVE = {"non", "no", "offerconfirmation_no"}


class MalformedUserInput(ValueError):
    """The message does not have the shape the active flow expects."""


def parse_phone_number(text: str) -> str:
    """Return the number if ``text`` is exactly 10 digits."""
    value = text.strip()
    if not PHONE_RE.fullmatch(value):
        raise MalformedUserInput("le numéro doit comporter exactement 10 chiffres")
    return value


def parse_appointment(text: str) -> dict[str, str]:
    """Split a comma-delimited appointment into its five named fields.

    Expected: ``Nom, JJ/MM/AAAA, HH:MM, 0612345678, Objet``.  The purpose
    may be empty; the other fields may not.
    """
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != len(APPOINTMENT_FIELDS):
        raise MalformedUserInput(
            f"{len(APPOINTMENT_FIELDS)} informations attendues, {len(parts)} reçue(s)"
        )

    fields = dict(zip(APPOINTMENT_FIELDS, parts))

    if not fields["name"]:
        raise MalformedUserInput("le nom est manquant")

    if not DATE_RE.fullmatch(fields["date"]):
        raise MalformedUserInput("la date doit être au format JJ/MM/AAAA")
    try:
        datetime.strptime(fields["date"], "%d/%m/%Y")
    except ValueError:
        raise MalformedUserInput("la date n'existe pas") from None

    if not TIME_RE.fullmatch(fields["time"]):
        raise MalformedUserInput("l'heure doit être au format HH:MM")

    if not PHONE_RE.fullmatch(fields["mobile"]):
        raise MalformedUserInput("le numéro mobile doit comporter exactement 10 chiffres")

    return fields


def parse_confirmation(text: str) -> bool:
    """Return True for an affirmative token, False for a negative one."""
    token = text.strip().lower().strip(" .!?")
    if token in AFFIRMATIVE:
        return True
    if token in NEGATIVE:
        return False
    raise MalformedUserInput("réponse attendue : oui ou non")
