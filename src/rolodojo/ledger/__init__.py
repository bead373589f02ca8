"""Ledger, registry and vault storage."""

from .models import (
    AppliedFact,
    Attribute,
    AttributeHistoryEntry,
    Record,
    Rolo,
    RoloKind,
    RoloMetadata,
    SenseiResponse,
    Triple,
)
from .store import LedgerStore, is_sensitive_key

__all__ = [
    "AppliedFact",
    "Attribute",
    "AttributeHistoryEntry",
    "LedgerStore",
    "Record",
    "Rolo",
    "RoloKind",
    "RoloMetadata",
    "SenseiResponse",
    "Triple",
    "is_sensitive_key",
]
