"""Dojo URI addressing: types, parsing and name canonicalization."""

from .models import ROOT, DojoUri, Namespace, is_valid_slug
from .resolver import (
    from_name,
    infer_namespace,
    normalize,
    parse,
    resolve_subject,
    validate,
)

__all__ = [
    "ROOT",
    "DojoUri",
    "Namespace",
    "from_name",
    "infer_namespace",
    "is_valid_slug",
    "normalize",
    "parse",
    "resolve_subject",
    "validate",
]
