"""Exception types raised by the summoning pipeline."""


class DojoError(Exception):
    """Base class for all rolodojo errors."""


class InvalidIdentifier(DojoError, ValueError):
    """Raised when a Dojo URI is built from an invalid segment."""


class ProviderError(DojoError):
    """Raised when the inference endpoint fails, times out, or answers badly."""


class AuditIntegrityError(DojoError):
    """Raised when a write would leave an audit pointer without its ledger entry."""


class AttributeNotFoundError(DojoError, LookupError):
    """Raised when a vault attribute does not exist."""
