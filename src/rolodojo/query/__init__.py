"""Natural-language question answering over stored facts."""

from .resolver import (
    QueryAnswer,
    QueryIntent,
    QueryResolver,
    ResolvedSubject,
    classify,
    format_key,
)

__all__ = [
    "QueryAnswer",
    "QueryIntent",
    "QueryResolver",
    "ResolvedSubject",
    "classify",
    "format_key",
]
