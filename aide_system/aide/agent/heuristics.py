"""
Keyword heuristics used by the agent, all pure functions:
- instruction routing (ongoing rule / task / immediate question)
- priority derivation
- event keyword extraction and instruction relevance scoring

Matching is case-insensitive substring matching, kept deliberately simple so
the rules can be tested in isolation.
"""


import re
from enum import Enum
from typing import Any, Iterable


class InstructionKind(str, Enum):
    ONGOING = "ongoing"
    TASK = "task"
    IMMEDIATE = "immediate"


ONGOING_MARKERS = ("when", "whenever", "always", "if")
# Standing monitoring rules ("track all meetings with clients") are ongoing too.
MONITOR_MARKERS = ("track", "monitor")
TASK_VERBS = ("schedule", "create", "send", "find", "show", "draft", "book", "remind", "search")

URGENT_KEYWORDS = ("urgent", "immediately", "asap")
IMPORTANT_KEYWORDS = ("important", "priority")

URGENT_PRIORITY = 5
IMPORTANT_PRIORITY = 3
DEFAULT_PRIORITY = 1


def _contains_any(text: str, words: Iterable[str]) -> bool:
    low = (text or "").lower()
    return any(w in low for w in words)


def classify_instruction(text: str) -> InstructionKind:
    if _contains_any(text, ONGOING_MARKERS) or _contains_any(text, MONITOR_MARKERS):
        return InstructionKind.ONGOING
    if _contains_any(text, TASK_VERBS):
        return InstructionKind.TASK
    return InstructionKind.IMMEDIATE


def determine_priority(text: str) -> int:
    if _contains_any(text, URGENT_KEYWORDS):
        return URGENT_PRIORITY
    if _contains_any(text, IMPORTANT_KEYWORDS):
        return IMPORTANT_PRIORITY
    return DEFAULT_PRIORITY


# Event matching

EVENT_ALIASES = {
    "email_received": "new_email",
    "email": "new_email",
    "calendar": "calendar_event",
    "contact_created": "hubspot_contact",
}

EVENT_KEYWORDS = {
    "new_email": ("email", "message", "contact"),
    "calendar_event": ("calendar", "meeting", "appointment", "event"),
    "hubspot_contact": ("contact", "hubspot", "crm"),
}

# Payload fields whose values are matched against instruction text.
EVENT_FIELDS = {
    "new_email": ("from_email", "from", "from_name"),
    "calendar_event": ("summary",),
    "hubspot_contact": ("name", "email", "company"),
}


def normalize_event_type(event_type: str) -> str:
    key = str(event_type or "").strip().lower().lstrip(":")
    return EVENT_ALIASES.get(key, key)


def extract_event_keywords(event_type: str, payload: dict[str, Any] | None) -> list[str]:
    kind = normalize_event_type(event_type)
    payload = payload or {}
    words = list(EVENT_KEYWORDS.get(kind, ()))
    for field in EVENT_FIELDS.get(kind, ()):
        value = payload.get(field)
        if isinstance(value, str):
            words.append(value)

    out: list[str] = []
    for w in words:
        w = w.strip().lower()
        if len(w) > 2 and w not in out:
            out.append(w)
    return out


_TOKEN_RE = re.compile(r"[a-z0-9@_+\-.']+")


def tokenize(text: str) -> set[str]:
    tokens = set()
    for raw in _TOKEN_RE.findall((text or "").lower()):
        tok = raw.strip(".'-")
        if not tok:
            continue
        tokens.add(tok)
        if len(tok) > 3 and tok.endswith("s"):
            tokens.add(tok[:-1])
    return tokens


def relevance_score(instruction: str, keywords: Iterable[str]) -> int:
    """Number of event keywords the instruction mentions."""
    tokens = tokenize(instruction)
    low = (instruction or "").lower()
    score = 0
    for kw in set(keywords):
        if kw in tokens or (" " in kw and kw in low):
            score += 1
    return score
