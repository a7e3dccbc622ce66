"""Keyword rules for the chat assistant, and their JSONL loader.

Rules are evaluated in order against the lowercased message; the first
rule whose keyword appears in the message wins.  A rule with no keywords
matches everything and must be the last one, so evaluation is total.

The canonical rule set lives in default_rules.jsonl next to this module
(one JSON object per line).
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel

from contacthub.models.conversation import DialogueAction, Flow

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "default_rules.jsonl"


class DialogueRule(BaseModel):
    """One ordered keyword rule."""

    id: str
    keywords: list[str] = []               # lowercase substrings; empty = catch-all
    reply: str
    action: DialogueAction = DialogueAction.NONE
    enters_flow: Flow = Flow.NONE          # flow activated when the rule fires

    @property
    def is_catch_all(self) -> bool:
        return not self.keywords

    def matches(self, text: str) -> bool:
        """``text`` must already be lowercased."""
        if self.is_catch_all:
            return True
        return any(keyword in text for keyword in self.keywords)


def validate_rules(rules: list[DialogueRule]) -> list[DialogueRule]:
    """Check ordering invariants and normalize keywords to lowercase.

    Raises:
        ValueError: empty list, duplicate ids, or the catch-all rule is
            missing or not last.
    """
    if not rules:
        raise ValueError("At least one dialogue rule is required")

    normalized = [
        rule.model_copy(update={"keywords": [k.strip().lower() for k in rule.keywords if k.strip()]})
        for rule in rules
    ]

    seen: set[str] = set()
    for index, rule in enumerate(normalized):
        if rule.id in seen:
            raise ValueError(f"Duplicate dialogue rule id: {rule.id}")
        seen.add(rule.id)

        is_last = index == len(normalized) - 1
        if rule.is_catch_all and not is_last:
            raise ValueError(f"Catch-all rule {rule.id!r} must be the last rule")
        if is_last and not rule.is_catch_all:
            raise ValueError(f"Last rule {rule.id!r} must be a catch-all (no keywords)")

    return normalized


def load_rules_jsonl(path: str | Path) -> list[DialogueRule]:
    """Load and validate an ordered rule list from a JSONL file."""
    path = Path(path)
    rules: list[DialogueRule] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        rules.append(DialogueRule(**json.loads(line)))
    return validate_rules(rules)


def default_rules() -> list[DialogueRule]:
    """The packaged rule set."""
    return load_rules_jsonl(DEFAULT_RULES_PATH)
