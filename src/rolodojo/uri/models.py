"""Dojo URI types."""

import re
from dataclasses import dataclass, field
from enum import Enum

from ..errors import InvalidIdentifier

ROOT = "dojo"

SLUG_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


class Namespace(Enum):
    """Top-level namespaces of the Dojo.

    - CONTACT: people, family, professional relations (``dojo.con.*``)
    - ENTITY: places, businesses, landmarks (``dojo.ent.*``)
    - MEDICAL: health logs, mood, symptoms (``dojo.med.*``)
    - SYSTEM: internal state, sync logs, reminders (``dojo.sys.*``)
    """

    CONTACT = "con"
    ENTITY = "ent"
    MEDICAL = "med"
    SYSTEM = "sys"

    @property
    def prefix(self) -> str:
        return self.value

    @classmethod
    def from_prefix(cls, prefix: str) -> "Namespace | None":
        """Look up a namespace by its URI prefix, or None if unknown."""
        for namespace in cls:
            if namespace.value == prefix:
                return namespace
        return None


def is_valid_slug(segment: str) -> bool:
    """Check that a segment is lowercase, starts with a letter, uses [a-z0-9_]."""
    return bool(SLUG_PATTERN.match(segment))


@dataclass(frozen=True)
class DojoUri:
    """A URI-addressable subject in the Dojo.

    Examples:
        dojo.con.jane_doe        a contact
        dojo.ent.railroad_gate   a place
        dojo.med.blood_pressure  a medical log

    Equality is structural over namespace, slug and sub-path.

    Raises:
        InvalidIdentifier: If the slug or any sub-path segment is invalid.
    """

    namespace: Namespace
    slug: str
    sub_path: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.slug:
            raise InvalidIdentifier("Identifier slug cannot be empty")
        if not is_valid_slug(self.slug):
            raise InvalidIdentifier(
                f"Identifier must be lowercase with underscores only: {self.slug}"
            )
        # Accept lists from callers but store a hashable tuple
        object.__setattr__(self, "sub_path", tuple(self.sub_path))
        for segment in self.sub_path:
            if not is_valid_slug(segment):
                raise InvalidIdentifier(
                    f"Sub-path segment must be lowercase with underscores only: {segment}"
                )

    def __str__(self) -> str:
        return ".".join([ROOT, self.namespace.prefix, self.slug, *self.sub_path])

    @property
    def parent(self) -> "DojoUri | None":
        """The URI without its last sub-path segment, None at top level."""
        if not self.sub_path:
            return None
        return DojoUri(self.namespace, self.slug, self.sub_path[:-1])

    def child(self, segment: str) -> "DojoUri":
        """Create a nested URI by appending a segment."""
        return DojoUri(self.namespace, self.slug, (*self.sub_path, segment))

    @property
    def display_name(self) -> str:
        """Title Case name derived from the slug ("jane_doe" -> "Jane Doe")."""
        return " ".join(word.capitalize() for word in self.slug.split("_") if word)
