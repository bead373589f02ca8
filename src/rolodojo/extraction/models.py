"""Data models for fact extraction."""

from dataclasses import dataclass

from ..uri import DojoUri

RULE_CONFIDENCE = 0.9


@dataclass(frozen=True)
class Extraction:
    """Result of parsing one summoning.

    Attributes:
        original_text: The trimmed input text.
        subject_name: Subject as written by the user (e.g. "Joe").
        subject_uri: Canonical URI for the subject.
        attribute_key: Normalized attribute key (e.g. "coffee").
        attribute_value: Attribute value as written (e.g. "Espresso").
        is_question: True when the input asks for information.
        confidence: 0.0 - 1.0 score of the extraction.
    """

    original_text: str
    subject_name: str | None = None
    subject_uri: DojoUri | None = None
    attribute_key: str | None = None
    attribute_value: str | None = None
    is_question: bool = False
    confidence: float = 0.0

    @property
    def is_complete(self) -> bool:
        """True if the extraction carries a full (subject, key, value) triple."""
        return (
            self.subject_uri is not None
            and bool(self.attribute_key)
            and self.attribute_value is not None
        )


@dataclass(frozen=True)
class KeyValuePair:
    """A loose key/value pair found by the permissive scanner."""

    key: str
    value: str
