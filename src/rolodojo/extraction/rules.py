"""Deterministic rule-based fact extraction.

Supported forms, highest priority first:
    "My girlfriend's name is Bridget Hale"   -> (Bridget Hale, relationship_to_user, girlfriend)
    "Bridget Hale is my girlfriend"
    "Joe's coffee is Espresso"
    "Joe lives at 12 Main St"                -> key "address"
    "Address for Joe is 12 Main St"
    "Joe coffee is Espresso"                 (loosest)
    "Gate code for Railroad is 1234"
    "Set Joe's coffee to Espresso"
    "Remember Joe's coffee is Espresso"
    "Joe: coffee = Espresso"
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

from ..uri import normalize, resolve_subject
from .models import RULE_CONFIDENCE, Extraction, KeyValuePair

RELATIONSHIP_KEY = "relationship_to_user"

_RELATIONSHIP_TERMS = r"girlfriend|boyfriend|wife|husband|partner|fiancee?|fiancé|fiancée"

QUESTION_PATTERNS = (
    re.compile(r"^(?:what|who|where|when|how)(?:\s+is|\s+are|['’]s)\b", re.IGNORECASE),
    re.compile(r"^tell\s+me\s+about\b", re.IGNORECASE),
    re.compile(r"^what\s+do\s+you\s+know\b", re.IGNORECASE),
    re.compile(r"\?\s*$"),
)

# Words that look like keys to the permissive scanner but never are
PAIR_STOPLIST = frozenset(
    {"this", "that", "it", "he", "she", "who", "what", "there", "here", "i", "you", "we", "they"}
)


class Capture(NamedTuple):
    """Raw (subject, key, value) strings captured by a rule."""

    subject: str
    key: str
    value: str


Guard = Callable[[Capture], bool]


@dataclass(frozen=True)
class Rule:
    """One entry of the ordered rule table.

    A guard returning True rejects the match and evaluation moves on to the
    next rule.
    """

    name: str
    pattern: re.Pattern[str]
    build: Callable[[re.Match[str]], Capture]
    guards: tuple[Guard, ...] = ()

    def apply(self, text: str) -> Capture | None:
        match = self.pattern.match(text)
        if match is None:
            return None
        capture = self.build(match)
        if not capture.subject or not capture.key or not capture.value:
            return None
        if any(guard(capture) for guard in self.guards):
            return None
        return capture


def _clean_subject(value: str) -> str:
    return value.strip().strip("\"“”'").strip()


def _clean_value(value: str) -> str:
    return value.strip().rstrip(".!").strip()


def _relationship_term(raw: str) -> str:
    term = raw.strip().lower()
    if term in ("fiancé", "fiancée"):
        return "fiancee"
    return term


def _groups(subject: int, key: int, value: int) -> Callable[[re.Match[str]], Capture]:
    def build(match: re.Match[str]) -> Capture:
        return Capture(
            _clean_subject(match.group(subject)),
            match.group(key).strip(),
            _clean_value(match.group(value)),
        )

    return build


def _fixed_key(subject: int, key: str, value: int) -> Callable[[re.Match[str]], Capture]:
    def build(match: re.Match[str]) -> Capture:
        return Capture(
            _clean_subject(match.group(subject)),
            key,
            _clean_value(match.group(value)),
        )

    return build


def _relationship(subject: int, term: int) -> Callable[[re.Match[str]], Capture]:
    def build(match: re.Match[str]) -> Capture:
        return Capture(
            _clean_subject(match.group(subject)),
            RELATIONSHIP_KEY,
            _relationship_term(match.group(term)),
        )

    return build


# -- guards -----------------------------------------------------------------


def is_self_introduction(capture: Capture) -> bool:
    """Self-introductions ("My name is ...") are left to the model path."""
    return capture.subject.lower() == "my" and capture.key.strip().lower() == "name"


def subject_swallowed_clause(capture: Capture) -> bool:
    """Address subjects like "My Name is Scott and I" ate a second clause."""
    if capture.key.strip().lower() != "address":
        return False
    subject = f" {capture.subject.lower()} "
    return any(
        marker in subject for marker in (" and i ", " my name is ", " i live ", " is ")
    )


def value_swallowed_clause(capture: Capture) -> bool:
    """Name values like "Scott and I live at 5 Elm" ate a second clause."""
    value = f" {capture.value.lower()} "
    if capture.key.strip().lower() == "name":
        return any(
            marker in value
            for marker in (" and i live ", " and my ", " my address ", " lives at ")
        )
    return False


def subject_swallowed_relationship_clause(capture: Capture) -> bool:
    subject = f" {capture.subject.lower()} "
    return any(marker in subject for marker in (" and i ", " and my ", " lives at "))


def not_a_person_name(capture: Capture) -> bool:
    """Relationship facts need something that reads like a person's name."""
    if not re.search(r"[A-Za-z]", capture.subject):
        return True
    tokens = capture.subject.split()
    if len(tokens) >= 2:
        return False
    token = tokens[0] if tokens else ""
    return len(token) < 2 or not re.search(r"[A-Z]", token)


def starts_with_imperative(capture: Capture) -> bool:
    """Leave "Remember Joe's ..." and "Set Joe's ..." to the imperative rules."""
    words = capture.subject.lower().split()
    return bool(words) and words[0] in ("remember", "set")


def key_has_possessive(capture: Capture) -> bool:
    return bool(re.search(r"['’]s\b", capture.key))


def key_has_for_connector(capture: Capture) -> bool:
    """Leave "Gate code for Railroad is 1234" to the explicit "for" rule."""
    return " for " in f" {capture.key.lower()} "


_COMMON_GUARDS: tuple[Guard, ...] = (
    is_self_introduction,
    subject_swallowed_clause,
    value_swallowed_clause,
)

RULES: tuple[Rule, ...] = (
    Rule(
        "relationship_self",
        re.compile(
            rf"^(?:my\s+)?({_RELATIONSHIP_TERMS})\s*(?:['’]s)?\s+name\s+is\s+(.+)$",
            re.IGNORECASE,
        ),
        _relationship(subject=2, term=1),
        (*_COMMON_GUARDS, subject_swallowed_relationship_clause, not_a_person_name),
    ),
    Rule(
        "relationship_inverse",
        re.compile(
            rf"^(.+?)\s+is\s+my\s+({_RELATIONSHIP_TERMS})\s*[.!]?$",
            re.IGNORECASE,
        ),
        _relationship(subject=1, term=2),
        (*_COMMON_GUARDS, subject_swallowed_relationship_clause, not_a_person_name),
    ),
    Rule(
        "possessive",
        re.compile(r"^(.+?)['’]s\s+(.+?)\s+is\s+(.+)$", re.IGNORECASE),
        _groups(subject=1, key=2, value=3),
        (*_COMMON_GUARDS, starts_with_imperative),
    ),
    Rule(
        "residence",
        re.compile(r"^(.+?)\s+(?:lives?|resides?)\s+at\s+(.+)$", re.IGNORECASE),
        _fixed_key(subject=1, key="address", value=2),
        _COMMON_GUARDS,
    ),
    Rule(
        "address_for",
        re.compile(r"^address\s+for\s+(.+?)\s*(?:is|:)\s+(.+)$", re.IGNORECASE),
        _fixed_key(subject=1, key="address", value=2),
        _COMMON_GUARDS,
    ),
    Rule(
        "generic",
        re.compile(r"^(.+?)\s+(.+?)\s+is\s+(.+)$", re.IGNORECASE),
        _groups(subject=1, key=2, value=3),
        (*_COMMON_GUARDS, starts_with_imperative, key_has_possessive, key_has_for_connector),
    ),
    Rule(
        "for_form",
        re.compile(r"^(.+?)\s+for\s+(.+?)\s+is\s+(.+)$", re.IGNORECASE),
        _groups(subject=2, key=1, value=3),
        _COMMON_GUARDS,
    ),
    Rule(
        "set",
        re.compile(r"^set\s+(.+?)['’]s\s+(.+?)\s+to\s+(.+)$", re.IGNORECASE),
        _groups(subject=1, key=2, value=3),
        _COMMON_GUARDS,
    ),
    Rule(
        "remember",
        re.compile(r"^remember\s+(.+?)['’]s\s+(.+?)\s+is\s+(.+)$", re.IGNORECASE),
        _groups(subject=1, key=2, value=3),
        _COMMON_GUARDS,
    ),
    Rule(
        "delimiter",
        re.compile(r"^(.+?):\s*(.+?)\s*=\s*(.+)$", re.IGNORECASE),
        _groups(subject=1, key=2, value=3),
        _COMMON_GUARDS,
    ),
)


def is_question(text: str) -> bool:
    """True if the text opens with an interrogative or ends with '?'."""
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in QUESTION_PATTERNS)


class RuleExtractor:
    """Parses natural language into (subject, key, value) triples.

    Rules are evaluated in a fixed order and the first accepted match wins.
    """

    def __init__(self, rules: tuple[Rule, ...] = RULES) -> None:
        self.rules = rules

    def extract(self, text: str) -> Extraction:
        """Parse a summoning.

        Args:
            text: Raw user input.

        Returns:
            An Extraction with confidence 0.9 on a match, or an empty
            zero-confidence Extraction. Never raises.
        """
        trimmed = text.strip()
        question = is_question(trimmed)

        for rule in self.rules:
            capture = rule.apply(trimmed)
            if capture is None:
                continue

            subject_uri = resolve_subject(capture.subject)
            attribute_key = normalize(capture.key)
            if subject_uri is None or not attribute_key:
                continue

            return Extraction(
                original_text=trimmed,
                subject_name=capture.subject,
                subject_uri=subject_uri,
                attribute_key=attribute_key,
                attribute_value=capture.value,
                is_question=question,
                confidence=RULE_CONFIDENCE,
            )

        return Extraction(original_text=trimmed, is_question=question)

    def extract_all_pairs(self, text: str) -> list[KeyValuePair]:
        """Find any "key: value" or "key is value" fragments in free text.

        This is deliberately loose and is meant for pattern mining, not for
        writing facts.
        """
        pairs: list[KeyValuePair] = []

        for match in re.finditer(r"(\w+)\s*:\s*([^,;]+)", text):
            key = normalize(match.group(1))
            if key:
                pairs.append(KeyValuePair(key, match.group(2).strip()))

        for match in re.finditer(r"(\w+)\s+is\s+([^,;.]+)", text, re.IGNORECASE):
            word = match.group(1).lower()
            if word in PAIR_STOPLIST:
                continue
            key = normalize(word)
            if key:
                pairs.append(KeyValuePair(key, match.group(2).strip()))

        return pairs
