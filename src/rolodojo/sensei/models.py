"""Provider configuration and model-name resolution."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit, urlunsplit


class LlmProvider(Enum):
    """Inference providers the orchestrator can talk to."""

    LOCAL = "local"
    GROQ = "groq"
    OPENAI = "openai"
    XAI = "xai"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def requires_api_key(self) -> bool:
        return self is not LlmProvider.LOCAL

    @property
    def api_key_env_var(self) -> str | None:
        return _API_KEY_ENV_VARS.get(self)

    @classmethod
    def from_string(cls, value: str) -> "LlmProvider":
        """Parse a provider name, case-insensitive.

        Raises:
            ValueError: If the name is not a known provider.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown provider {value!r} (expected one of: {known})") from None


_LABELS = {
    LlmProvider.LOCAL: "Local LLM",
    LlmProvider.GROQ: "Groq",
    LlmProvider.OPENAI: "OpenAI",
    LlmProvider.XAI: "xAI",
}

_API_KEY_ENV_VARS = {
    LlmProvider.GROQ: "GROQ_API_KEY",
    LlmProvider.OPENAI: "OPENAI_API_KEY",
    LlmProvider.XAI: "XAI_API_KEY",
}

DEFAULT_BASE_URLS = {
    LlmProvider.LOCAL: "http://localhost:11434/v1",
    LlmProvider.GROQ: "https://api.groq.com/openai/v1",
    LlmProvider.OPENAI: "https://api.openai.com/v1",
    LlmProvider.XAI: "https://api.x.ai/v1",
}

DEFAULT_MODELS = {
    LlmProvider.LOCAL: "llama3.3",
    LlmProvider.GROQ: "llama-3.1-70b-versatile",
    LlmProvider.OPENAI: "gpt-4o-mini",
    LlmProvider.XAI: "grok-2-latest",
}

DEFAULT_FALLBACK_MODELS = {
    LlmProvider.LOCAL: ("openchat-3.6",),
}


@dataclass
class ProviderConfig:
    """Connection settings for one provider.

    Attributes:
        provider: Which provider this configures.
        base_url: OpenAI-compatible base URL, always ending in /v1.
        configured_model: The model the user asked for.
        api_key: Bearer token; empty for the local server.
        fallback_models: Tried in order when the configured model is missing.
    """

    provider: LlmProvider
    base_url: str
    configured_model: str
    api_key: str = ""
    fallback_models: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def default(cls, provider: LlmProvider) -> "ProviderConfig":
        return cls(
            provider=provider,
            base_url=DEFAULT_BASE_URLS[provider],
            configured_model=DEFAULT_MODELS[provider],
            fallback_models=DEFAULT_FALLBACK_MODELS.get(provider, ()),
        )

    @property
    def default_model(self) -> str:
        return DEFAULT_MODELS[self.provider]

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())

    @property
    def allow_configured_when_empty(self) -> bool:
        """Remote providers that list no models still get the configured name."""
        return self.provider.requires_api_key


def normalize_base_url(raw: str, default: str, required_suffix: str = "/v1") -> str:
    """Ensure a base URL ends with the version suffix and has no trailing slash.

    Args:
        raw: User-supplied URL; blank means ``default``.
        default: URL to use when ``raw`` is blank.
        required_suffix: Path suffix the URL must end with.

    Returns:
        The normalized URL.
    """
    value = raw.strip() or default
    parts = urlsplit(value)
    path = parts.path
    if path in ("", "/"):
        path = required_suffix
    else:
        path = path.rstrip("/")
        if not path.endswith(required_suffix):
            path = f"{path}{required_suffix}"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def is_model_match(desired: str, available: str) -> bool:
    """True if ``available`` names the ``desired`` model.

    Matches exactly (case-insensitive), as a tagged variant ("llama3.3:70b")
    or as a namespaced id ("meta/llama3.3").
    """
    wanted = desired.strip().lower()
    candidate = available.strip().lower()
    return (
        candidate == wanted
        or candidate.startswith(f"{wanted}:")
        or candidate.endswith(f"/{wanted}")
    )


def find_model(desired: str, available: Sequence[str]) -> str | None:
    for model in available:
        if is_model_match(desired, model):
            return model
    return None


def resolve_model(
    configured: str,
    available: Sequence[str],
    fallbacks: Sequence[str] = (),
    allow_configured_when_empty: bool = False,
) -> str | None:
    """Pick the model to use from what the endpoint reports.

    Args:
        configured: The model the user asked for.
        available: Model ids the endpoint listed.
        fallbacks: Alternatives tried in order after ``configured``.
        allow_configured_when_empty: Trust ``configured`` if nothing was listed.

    Returns:
        The matching available model id, or None if nothing resolves.
    """
    if not available:
        return configured if allow_configured_when_empty else None

    for desired in (configured, *fallbacks):
        match = find_model(desired, available)
        if match is not None:
            return match
    return None


@dataclass(frozen=True)
class ParsingContext:
    """Optional hints passed to the model alongside the text to parse."""

    subject_uri_hint: str | None = None
    recent_summonings: tuple[str, ...] = ()
    recent_target_uris: tuple[str, ...] = ()
    known_attribute_keys: tuple[str, ...] = ()

    @property
    def has_hints(self) -> bool:
        return bool(
            (self.subject_uri_hint and self.subject_uri_hint.strip())
            or self.recent_summonings
            or self.recent_target_uris
            or self.known_attribute_keys
        )


@dataclass(frozen=True)
class SynthesisResult:
    """A one-sentence insight and how much to trust it."""

    text: str
    confidence: float
