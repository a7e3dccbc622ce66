"""Chat assistant: keyword rules, flow parsers and per-session engines."""

from .engine import DialogueEngine
from .parsers import MalformedUserInput
from .rules import DialogueRule, default_rules, load_rules_jsonl, validate_rules
from .sessions import DialogueSessions

__all__ = [
    "DialogueEngine",
    "DialogueRule",
    "DialogueSessions",
    "MalformedUserInput",
    "default_rules",
    "load_rules_jsonl",
    "validate_rules",
]
