"""Defensive parsing of model replies."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from ..extraction import Extraction
from ..uri import normalize, resolve_subject

logger = logging.getLogger(__name__)

DEFAULT_MODEL_CONFIDENCE = 0.82

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BRACE_OBJECT = re.compile(r"\{[\s\S]*\}")
_SENTENCE_END = re.compile(r"[.!?]")


@dataclass(frozen=True)
class ParsedOk:
    """A model reply that decoded to a JSON object."""

    subject_name: str | None = None
    attribute_key: str | None = None
    attribute_value: str | None = None
    is_query: bool = False
    confidence: float = DEFAULT_MODEL_CONFIDENCE

    def to_extraction(self, original_text: str) -> Extraction:
        """Build an Extraction, canonicalizing the subject and key."""
        subject_uri = resolve_subject(self.subject_name) if self.subject_name else None
        key = normalize(self.attribute_key) if self.attribute_key else None
        return Extraction(
            original_text=original_text.strip(),
            subject_name=self.subject_name,
            subject_uri=subject_uri,
            attribute_key=key or None,
            attribute_value=self.attribute_value,
            is_question=self.is_query,
            confidence=self.confidence,
        )


@dataclass(frozen=True)
class ParsedEmpty:
    """A model reply with no usable JSON object."""

    raw: str = ""


def _decode_object(candidate: str) -> dict[str, Any] | None:
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Find a JSON object in free text.

    Tries the whole reply, then the first fenced code block, then the
    outermost brace-delimited span.
    """
    data = _decode_object(text.strip())
    if data is not None:
        return data

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        data = _decode_object(fenced.group(1).strip())
        if data is not None:
            return data

    braces = _BRACE_OBJECT.search(text)
    if braces:
        return _decode_object(braces.group(0))
    return None


def _to_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _to_confidence(value: Any) -> float:
    if isinstance(value, bool):
        score = DEFAULT_MODEL_CONFIDENCE
    elif isinstance(value, (int, float)):
        score = float(value)
    elif isinstance(value, str):
        try:
            score = float(value)
        except ValueError:
            score = DEFAULT_MODEL_CONFIDENCE
    else:
        score = DEFAULT_MODEL_CONFIDENCE
    return min(max(score, 0.0), 1.0)


def parse_model_response(text: str) -> ParsedOk | ParsedEmpty:
    """Turn an extraction reply into a typed result.

    Accepts snake_case and camelCase keys. A missing confidence defaults to
    0.82; any confidence is clamped to [0, 1].

    Args:
        text: Raw reply content.

    Returns:
        ParsedOk if a JSON object was found, ParsedEmpty otherwise.
    """
    if not text or not text.strip():
        return ParsedEmpty(raw=text or "")

    data = extract_json_object(text)
    if data is None:
        logger.debug("Model reply had no JSON object: %r", text[:120])
        return ParsedEmpty(raw=text)

    return ParsedOk(
        subject_name=_to_optional_str(data.get("subject_name", data.get("subjectName"))),
        attribute_key=_to_optional_str(data.get("attribute_key", data.get("attributeKey"))),
        attribute_value=_to_optional_str(
            data.get("attribute_value", data.get("attributeValue"))
        ),
        is_query=_to_bool(data.get("is_query", data.get("isQuery"))),
        confidence=_to_confidence(data.get("confidence")),
    )


def truncate(text: str, max_length: int) -> str:
    """Cut text to ``max_length`` characters, ending with "..." when cut."""
    if len(text) <= max_length:
        return text
    return f"{text[: max(max_length - 3, 0)]}..."


def rule_based_summary(text: str, max_length: int = 50) -> str:
    """First sentence of ``text``, truncated to ``max_length``."""
    first_sentence = _SENTENCE_END.split(text, maxsplit=1)[0].strip()
    return truncate(first_sentence, max_length)


def rule_based_synthesis(subject_uri: str, facts: dict[str, str], recent: list[str]) -> str:
    """Deterministic insight used when no model is available."""
    if not facts:
        return ""

    parts: list[str] = []
    if len(facts) >= 3:
        parts.append(f"{subject_uri.split('.')[-1]} has {len(facts)} known attributes")
    for key, value in facts.items():
        if "birthday" in key or "anniversary" in key:
            parts.append(f"Note: {key} is {value}")
    if len(recent) >= 2:
        parts.append(f"Active recently with {len(recent)} interactions")

    return ". ".join(parts) if parts else "No new insights detected"
