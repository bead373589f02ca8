"""Canonicalize display names and free text into Dojo URIs."""

import re
import unicodedata

from ..errors import InvalidIdentifier
from .models import ROOT, DojoUri, Namespace, is_valid_slug

_APOSTROPHES = re.compile(r"['’`]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Checked in this order; the first namespace with a matching keyword wins.
NAMESPACE_KEYWORDS: tuple[tuple[Namespace, tuple[str, ...]], ...] = (
    (
        Namespace.ENTITY,
        (
            "place",
            "location",
            "address",
            "building",
            "store",
            "shop",
            "restaurant",
            "office",
            "gate",
            "landmark",
            "business",
        ),
    ),
    (
        Namespace.MEDICAL,
        (
            "health",
            "medical",
            "symptom",
            "medicine",
            "doctor",
            "appointment",
            "prescription",
            "blood",
            "pressure",
            "weight",
            "mood",
        ),
    ),
    (
        Namespace.SYSTEM,
        (
            "system",
            "sync",
            "setting",
            "config",
            "preference",
            "schedule",
            "reminder",
            "alarm",
        ),
    ),
)

DEFAULT_NAMESPACE = Namespace.CONTACT


def normalize(display_name: str) -> str:
    """Convert a display name into a URI slug.

    Examples:
        "Jane Doe"            -> "jane_doe"
        "Joe's Coffee Shop"   -> "joes_coffee_shop"
        "José"                -> "jose"
        "221B Baker St"       -> "n_221b_baker_st"

    The result is either empty (no letters or digits in the input) or a valid
    slug, and ``normalize(normalize(x)) == normalize(x)``.
    """
    folded = unicodedata.normalize("NFKD", display_name)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    slug = _APOSTROPHES.sub("", folded.lower())
    slug = _NON_ALNUM.sub("_", slug).strip("_")
    if slug and not slug[0].isalpha():
        slug = f"n_{slug}"
    return slug


def parse(text: str) -> DojoUri | None:
    """Parse ``dojo.<namespace>.<slug>[.<sub>...]`` without raising.

    Returns:
        The parsed URI, or None when the text is not a valid Dojo URI.
    """
    segments = text.strip().lower().split(".")
    if len(segments) < 3 or segments[0] != ROOT:
        return None

    namespace = Namespace.from_prefix(segments[1])
    if namespace is None:
        return None

    if not all(is_valid_slug(segment) for segment in segments[2:]):
        return None

    return DojoUri(namespace, segments[2], tuple(segments[3:]))


def validate(text: str) -> list[str]:
    """List the problems with a URI string; empty when it is valid."""
    segments = text.split(".")
    if len(segments) < 3:
        return ["URI must have at least 3 segments (dojo.namespace.slug)"]

    errors = []
    if segments[0].lower() != ROOT:
        errors.append(f'URI must start with "{ROOT}"')

    if Namespace.from_prefix(segments[1].lower()) is None:
        prefixes = ", ".join(ns.prefix for ns in Namespace)
        errors.append(f'Invalid namespace "{segments[1]}". Must be one of: {prefixes}')

    for segment in segments[2:]:
        if not is_valid_slug(segment):
            errors.append(
                f'Segment "{segment}" must be lowercase, start with a letter, '
                "and contain only letters, numbers, and underscores"
            )
    return errors


def infer_namespace(free_text: str) -> Namespace:
    """Guess a namespace from keywords, defaulting to contact."""
    lowered = free_text.lower()
    for namespace, keywords in NAMESPACE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return namespace
    return DEFAULT_NAMESPACE


def from_name(display_name: str, namespace: Namespace | None = None) -> DojoUri:
    """Build a URI from a display name.

    Args:
        display_name: Human name such as "Jane Doe".
        namespace: Target namespace; inferred from the name when None.

    Raises:
        InvalidIdentifier: If the name has no usable characters.
    """
    slug = normalize(display_name)
    if not slug:
        raise InvalidIdentifier(f"Cannot derive an identifier from {display_name!r}")
    return DojoUri(namespace or infer_namespace(display_name), slug)


def resolve_subject(text: str) -> DojoUri | None:
    """Turn a subject mention into a URI, accepting full URIs verbatim."""
    parsed = parse(text)
    if parsed is not None:
        return parsed
    try:
        return from_name(text)
    except InvalidIdentifier:
        return None
