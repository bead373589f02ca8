"""Data models for the ledger, registry and vault."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..uri import DojoUri


class RoloKind(Enum):
    """Kind of a ledger entry.

    - INPUT: a statement supplied by the user
    - REQUEST: a question or command
    - SYNTHESIS: an insight derived from existing facts
    """

    INPUT = "INPUT"
    REQUEST = "REQUEST"
    SYNTHESIS = "SYNTHESIS"

    @classmethod
    def from_string(cls, value: str) -> "RoloKind":
        try:
            return cls(value.upper())
        except ValueError:
            return cls.INPUT


@dataclass(frozen=True)
class RoloMetadata:
    """Context captured with a summoning. Stored verbatim, never interpreted.

    Attributes:
        location: GPS coordinates in decimal degrees.
        weather: Weather conditions at the time of entry.
        source_id: Originating id (mail message id, call log id, ...).
        trigger: What produced the entry (Manual_Entry, Gmail_Sync, ...).
        source_device: Device identifier.
        confidence_score: Extraction confidence, 0.0 - 1.0.
    """

    location: str | None = None
    weather: str | None = None
    source_id: str | None = None
    trigger: str | None = None
    source_device: str | None = None
    confidence_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoloMetadata":
        score = data.get("confidence_score")
        return cls(
            location=data.get("location"),
            weather=data.get("weather"),
            source_id=data.get("source_id"),
            trigger=data.get("trigger"),
            source_device=data.get("source_device"),
            confidence_score=float(score) if score is not None else None,
        )


@dataclass(frozen=True)
class Rolo:
    """An immutable ledger entry: one interaction with the Dojo."""

    id: str
    kind: RoloKind
    summoning_text: str
    timestamp: datetime
    target_uri: str | None = None
    parent_rolo_id: str | None = None
    metadata: RoloMetadata = field(default_factory=RoloMetadata)


@dataclass(frozen=True)
class Record:
    """Registry entry: the current state of one URI.

    Attributes:
        uri: The URI address, e.g. dojo.con.joe.
        display_name: Human-readable name, e.g. "Joe".
        payload: Open-ended JSON payload.
        last_rolo_id: The ledger entry that last touched this record.
        updated_at: ISO timestamp of the last change.
    """

    uri: str
    display_name: str
    payload: dict[str, Any] = field(default_factory=dict)
    last_rolo_id: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Attribute:
    """Vault entry: one audited key/value fact about a URI.

    A None value means the fact was soft-deleted; ``last_rolo_id`` then points
    at the deletion event.
    """

    subject_uri: str
    key: str
    value: str | None
    last_rolo_id: str
    is_sensitive: bool = False
    updated_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class Triple:
    """A complete fact ready to be written to the vault."""

    subject_uri: DojoUri
    subject_name: str
    key: str
    value: str
    is_sensitive: bool = False


@dataclass(frozen=True)
class AppliedFact:
    """Outcome of writing a triple to the registry and vault."""

    record: Record
    attribute: Attribute
    created_record: bool


@dataclass(frozen=True)
class SenseiResponse:
    """The reply given to one summoning, kept apart from the ledger text.

    Attributes:
        id: Unique row id.
        input_rolo_id: The ledger entry the reply answers.
        response_text: The message shown to the user.
        created_at: When the reply was stored (UTC).
        target_uri: The subject the input was about, if resolved.
        provider: Inference provider consulted, None for rule-only replies.
        model: Model consulted, None for rule-only replies.
        confidence_score: Extraction confidence behind the reply.
    """

    id: str
    input_rolo_id: str
    response_text: str
    created_at: datetime
    target_uri: str | None = None
    provider: str | None = None
    model: str | None = None
    confidence_score: float | None = None


@dataclass(frozen=True)
class AttributeHistoryEntry:
    """A ledger entry that touched a given attribute."""

    rolo_id: str
    summoning_text: str
    timestamp: datetime
