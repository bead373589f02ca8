"""Answers natural-language questions from the registry and vault."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from ..errors import InvalidIdentifier
from ..ledger import Attribute, LedgerStore
from ..uri import DojoUri, from_name, normalize, parse

logger = logging.getLogger(__name__)

MAX_KNOWN_FACTS = 5
MAX_GLOBAL_SAMPLES = 3

UNKNOWN_FORMAT_MESSAGE = (
    'I heard your question but need a format like "What is Joe\'s coffee?" '
    'or "Who is Joe?".'
)


class QueryIntent(Enum):
    POSSESSIVE = "possessive"
    FOR_FORM = "for_form"
    PROFILE = "profile"
    GLOBAL = "global"
    UNKNOWN = "unknown"


_POSSESSIVE = re.compile(r"^(?:what\s+is|what['’]s)\s+(.+?)['’]s\s+(.+)$", re.IGNORECASE)
_FOR_FORM = re.compile(
    r"^(?:what\s+is|what['’]s|what\s+are)\s+(?:the\s+)?(.+?)\s+for\s+(.+)$", re.IGNORECASE
)
_PROFILE = (
    re.compile(r"^(?:who|where)\s+is\s+(.+)$", re.IGNORECASE),
    re.compile(r"^tell\s+me\s+about\s+(.+)$", re.IGNORECASE),
    re.compile(r"^what\s+do\s+you\s+know\s+about\s+(.+)$", re.IGNORECASE),
)
_GLOBAL = re.compile(r"^(?:what\s+is|what['’]s|what\s+are)\s+(?:the\s+)?(.+)$", re.IGNORECASE)


def format_key(key: str) -> str:
    """Render a snake_case key as Title Case words ("gate_code" -> "Gate Code")."""
    return " ".join(word[:1].upper() + word[1:] for word in key.split("_") if word)


@dataclass(frozen=True)
class ParsedQuestion:
    """A question reduced to its intent and raw subject/key phrases."""

    intent: QueryIntent
    subject: str | None = None
    key: str | None = None


@dataclass(frozen=True)
class QueryAnswer:
    """The resolver's reply to one question."""

    intent: QueryIntent
    message: str
    subject_uri: str | None = None
    attribute_key: str | None = None
    attributes: list[Attribute] = field(default_factory=list)


def _clean(fragment: str) -> str:
    return fragment.strip().strip("\"“”'").strip()


def classify(text: str) -> ParsedQuestion:
    """Work out what a question is asking for.

    Args:
        text: The question, with or without a trailing '?'.

    Returns:
        The intent plus the subject and key phrases it names.
    """
    question = text.strip().rstrip("?.! ").strip()

    match = _POSSESSIVE.match(question)
    if match:
        return ParsedQuestion(QueryIntent.POSSESSIVE, _clean(match.group(1)), _clean(match.group(2)))

    match = _FOR_FORM.match(question)
    if match:
        return ParsedQuestion(QueryIntent.FOR_FORM, _clean(match.group(2)), _clean(match.group(1)))

    for pattern in _PROFILE:
        match = pattern.match(question)
        if match:
            return ParsedQuestion(QueryIntent.PROFILE, subject=_clean(match.group(1)))

    match = _GLOBAL.match(question)
    if match:
        return ParsedQuestion(QueryIntent.GLOBAL, key=_clean(match.group(1)))

    return ParsedQuestion(QueryIntent.UNKNOWN)


@dataclass(frozen=True)
class ResolvedSubject:
    uri: str
    display_name: str


class QueryResolver:
    """Resolves questions against a LedgerStore. Read-only."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def answer(self, text: str) -> QueryAnswer:
        """Answer a question.

        Never raises for malformed questions; unknown shapes get a hint about
        the supported formats.
        """
        question = classify(text)
        logger.debug("Classified %r as %s", text, question.intent.value)

        if question.intent in (QueryIntent.POSSESSIVE, QueryIntent.FOR_FORM):
            assert question.subject is not None and question.key is not None
            return self._answer_attribute(question.intent, question.subject, question.key)
        if question.intent is QueryIntent.PROFILE:
            assert question.subject is not None
            return self._answer_profile(question.subject)
        if question.intent is QueryIntent.GLOBAL:
            assert question.key is not None
            return self._answer_global(question.key)
        return QueryAnswer(QueryIntent.UNKNOWN, UNKNOWN_FORMAT_MESSAGE)

    # -- subject and attribute resolution ---------------------------------

    def resolve_subject(self, name: str, allow_partial: bool = False) -> ResolvedSubject | None:
        """Find the subject a name refers to.

        Order: a literal identifier, an exact case-insensitive display-name
        match, then an inferred identifier that already has data.

        Args:
            name: The name or identifier as written in the question.
            allow_partial: Also accept a partial display-name match when it
                is the only one ("Jane" for "Jane Doe").
        """
        name = name.strip()
        if not name:
            return None

        literal = parse(name)
        if literal is not None:
            return self._subject_for(literal)

        hits = self.store.search_records_by_name(name)
        for record in hits:
            if record.display_name.lower() == name.lower():
                return ResolvedSubject(record.uri, record.display_name)

        try:
            inferred = from_name(name)
        except InvalidIdentifier:
            inferred = None
        if inferred is not None:
            uri = str(inferred)
            if self.store.record_exists(uri) or self.store.get_attributes(uri, include_deleted=True):
                return self._subject_for(inferred, fallback_name=name)

        if allow_partial and len(hits) == 1:
            return ResolvedSubject(hits[0].uri, hits[0].display_name)
        return None

    def _subject_for(self, uri: DojoUri, fallback_name: str | None = None) -> ResolvedSubject:
        record = self.store.get_record(str(uri))
        if record is not None:
            return ResolvedSubject(record.uri, record.display_name)
        return ResolvedSubject(str(uri), fallback_name or uri.display_name)

    @staticmethod
    def match_attribute(key: str, attributes: list[Attribute]) -> Attribute | None:
        """Exact key match first, then substring containment either way."""
        for attribute in attributes:
            if attribute.key == key:
                return attribute
        if not key:
            return None
        for attribute in attributes:
            if key in attribute.key or attribute.key in key:
                return attribute
        return None

    # -- answers ------------------------------------------------------------

    def _unknown_subject(self, intent: QueryIntent, name: str) -> QueryAnswer:
        return QueryAnswer(intent, f"I do not know anyone or anything called {name} yet.")

    def _no_facts(self, intent: QueryIntent, subject: ResolvedSubject) -> QueryAnswer:
        return QueryAnswer(
            intent,
            f"I know {subject.display_name}, but I do not have any facts stored yet.",
            subject_uri=subject.uri,
        )

    def _answer_attribute(self, intent: QueryIntent, name: str, raw_key: str) -> QueryAnswer:
        subject = self.resolve_subject(name, allow_partial=True)
        if subject is None:
            return self._unknown_subject(intent, name)

        attributes = self.store.get_attributes(subject.uri)
        if not attributes:
            return self._no_facts(intent, subject)

        key = normalize(raw_key)
        found = self.match_attribute(key, attributes)
        if found is not None:
            return QueryAnswer(
                intent,
                f"{subject.display_name}'s {format_key(found.key)} is {found.value}.",
                subject_uri=subject.uri,
                attribute_key=found.key,
                attributes=[found],
            )

        known = ", ".join(format_key(a.key) for a in attributes[:MAX_KNOWN_FACTS])
        return QueryAnswer(
            intent,
            f"I do not have {format_key(key)} for {subject.display_name} yet. "
            f"Known facts: {known}.",
            subject_uri=subject.uri,
            attribute_key=key,
            attributes=attributes,
        )

    def _answer_profile(self, name: str, allow_partial: bool = True) -> QueryAnswer:
        subject = self.resolve_subject(name, allow_partial=allow_partial)
        if subject is None:
            return self._unknown_subject(QueryIntent.PROFILE, name)

        attributes = self.store.get_attributes(subject.uri)
        if not attributes:
            return self._no_facts(QueryIntent.PROFILE, subject)

        facts = "; ".join(f"{format_key(a.key)}: {a.value}" for a in attributes)
        return QueryAnswer(
            QueryIntent.PROFILE,
            f"Here is what I know about {subject.display_name}: {facts}.",
            subject_uri=subject.uri,
            attributes=attributes,
        )

    def _answer_global(self, raw_key: str) -> QueryAnswer:
        key = normalize(raw_key)
        matches = self.store.get_attributes_by_key(key) if key else []

        if not matches:
            # "What is Joe?" names a subject rather than a key; partial names don't count
            if self.resolve_subject(raw_key) is not None:
                return self._answer_profile(raw_key, allow_partial=False)
            return QueryAnswer(
                QueryIntent.GLOBAL,
                f"I do not have {format_key(key) or raw_key} for anyone yet.",
                attribute_key=key or None,
            )

        if len(matches) == 1:
            only = matches[0]
            return QueryAnswer(
                QueryIntent.GLOBAL,
                f"{self._display_name(only.subject_uri)}'s {format_key(key)} is {only.value}.",
                subject_uri=only.subject_uri,
                attribute_key=key,
                attributes=matches,
            )

        samples = "; ".join(
            f"{self._display_name(a.subject_uri)}: {a.value}"
            for a in matches[:MAX_GLOBAL_SAMPLES]
        )
        extra = len(matches) - MAX_GLOBAL_SAMPLES
        suffix = f" (+{extra} more)" if extra > 0 else ""
        return QueryAnswer(
            QueryIntent.GLOBAL,
            f"{format_key(key)}: {samples}{suffix}.",
            attribute_key=key,
            attributes=matches,
        )

    def _display_name(self, uri: str) -> str:
        record = self.store.get_record(uri)
        if record is not None:
            return record.display_name
        parsed = parse(uri)
        return parsed.display_name if parsed is not None else uri
