"""Model-assisted extraction with provider health tracking.

The orchestrator always runs the rule extractor first and only consults a
language model when the rules could not produce a complete fact and the
active provider is healthy. Provider failures degrade to the rule result;
they never reach the caller.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable, Mapping

from ..errors import ProviderError
from ..extraction import Extraction, RuleExtractor
from .backends import DEFAULT_TIMEOUT, InferenceBackend, create_backend
from .health import HealthState, HealthStatus, ObservableValue
from .models import (
    LlmProvider,
    ParsingContext,
    ProviderConfig,
    SynthesisResult,
    is_model_match,
    resolve_model,
)
from .parsing import (
    ParsedEmpty,
    parse_model_response,
    rule_based_summary,
    rule_based_synthesis,
    truncate,
)

logger = logging.getLogger(__name__)

MODEL_SYNTHESIS_CONFIDENCE = 0.82
FALLBACK_SYNTHESIS_CONFIDENCE = 0.65

CORE_PROMPT = """You are the Sensei for ROLODOJO.
You operate as a structured ledger assistant.
Rules:
- Use only information present in the input/context.
- Preserve exact values for facts.
- Attribute keys must be snake_case.
- Dojo URIs follow dojo.<category>.<identifier>.
- Valid categories include con (contact), ent (entity), med (medical), sys (system).
- Return strict machine-readable output when requested."""

EXTRACTION_SYSTEM_PROMPT = """Extract subject, attribute key/value, and query intent.
If extraction is uncertain, lower confidence and keep fields null."""

SYNTHESIS_SYSTEM_PROMPT = "Generate one concise, factual insight from provided ledger facts."

SUMMARY_SYSTEM_PROMPT = "Summarize briefly without adding unverified details."

BackendFactory = Callable[[ProviderConfig, float], InferenceBackend]


def build_context_block(context: ParsingContext | None) -> str:
    """Render parsing hints as a bullet list for the extraction prompt."""
    if context is None or not context.has_hints:
        return "Context: none"

    lines = ["Context:"]
    if context.subject_uri_hint and context.subject_uri_hint.strip():
        lines.append(f"- parser_subject_uri_hint: {context.subject_uri_hint.strip()}")
    if context.recent_target_uris:
        lines.append(f"- recent_target_uris: {', '.join(context.recent_target_uris[:5])}")
    if context.known_attribute_keys:
        lines.append(f"- known_attribute_keys: {', '.join(context.known_attribute_keys[:8])}")
    if context.recent_summonings:
        cleaned = " | ".join(
            truncate(s.replace("\n", " "), 120) for s in context.recent_summonings[:3]
        )
        lines.append(f"- recent_summonings: {cleaned}")
    return "\n".join(lines)


def build_extraction_prompt(text: str, context: ParsingContext | None = None) -> str:
    return f"""Extract structured data from this input.
Return ONLY valid JSON with keys:
- subject_name (string or null)
- attribute_key (snake_case string or null)
- attribute_value (string or null)
- is_query (boolean)
- confidence (number 0..1)

{build_context_block(context)}
Input: \"{text}\"
""".rstrip()


def build_synthesis_prompt(subject_uri: str, facts: Mapping[str, str], recent: list[str]) -> str:
    facts_text = "\n".join(f"- {key}: {value}" for key, value in facts.items())
    recent_text = ""
    if recent:
        recent_text = "\nRecent activity:\n" + "\n".join(f"- {r}" for r in recent)
    return (
        f"Given these facts about {subject_uri}:\n{facts_text}{recent_text}\n\n"
        "Return one concise insight sentence only."
    )


def pick_best_extraction(rule: Extraction, model: Extraction) -> Extraction:
    """Choose between the rule result and the model result.

    The model wins only with a complete fact at least as confident as the
    rules, or when the rules found nothing and the model is more confident
    that the text is a question.
    """
    if model.is_complete and model.confidence >= rule.confidence:
        return model
    if not rule.is_complete and model.is_question and model.confidence > rule.confidence:
        return model
    return rule


def _health_message(
    config: ProviderConfig,
    resolved: str | None,
    available: list[str],
) -> str:
    label = config.provider.label
    if resolved is None:
        known = ", ".join(available[:5]) if available else "none"
        return (
            f'{label} connected at {config.base_url}, but model "{config.configured_model}" '
            f"is unavailable. Found: {known}"
        )
    if not is_model_match(config.configured_model, resolved):
        return (
            f'{label} connected at {config.base_url}. Configured "{config.configured_model}" '
            f'not found; using "{resolved}".'
        )
    return f'{label} connected at {config.base_url} using "{resolved}".'


class SenseiOrchestrator:
    """Chooses between rule-based and model-assisted extraction.

    Provider settings live on the instance; nothing here is global. Health
    checks are cached for ``health_cache_ttl`` seconds and refreshed by a
    background task between ``start()`` and ``close()``.
    """

    def __init__(
        self,
        configs: Mapping[LlmProvider, ProviderConfig] | None = None,
        provider: LlmProvider = LlmProvider.LOCAL,
        extractor: RuleExtractor | None = None,
        backend_factory: BackendFactory = create_backend,
        clock: Callable[[], float] = time.monotonic,
        request_timeout: float = DEFAULT_TIMEOUT,
        health_cache_ttl: float = 5.0,
        health_poll_interval: float = 30.0,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            configs: Per-provider settings; missing providers get defaults.
            provider: The provider to use initially.
            extractor: Rule extractor; a default one is created if None.
            backend_factory: Builds a backend for a provider config.
            clock: Monotonic time source for the health cache.
            request_timeout: Upper bound for every endpoint call, in seconds.
            health_cache_ttl: How long a health result is reused.
            health_poll_interval: Seconds between background health checks.
        """
        self._configs = {p: ProviderConfig.default(p) for p in LlmProvider}
        if configs:
            self._configs.update(configs)
        self._provider = provider
        self.extractor = extractor or RuleExtractor()
        self._backend_factory = backend_factory
        self._clock = clock
        self.request_timeout = request_timeout
        self.health_cache_ttl = health_cache_ttl
        self.health_poll_interval = health_poll_interval

        self._backends: dict[LlmProvider, InferenceBackend] = {}
        self._last_check: float | None = None
        self._last_check_provider: LlmProvider | None = None
        self._poller: asyncio.Task[None] | None = None
        self.health = ObservableValue(
            HealthStatus(provider=provider.value, configured_model=self.config.configured_model)
        )

    @property
    def provider(self) -> LlmProvider:
        return self._provider

    @property
    def config(self) -> ProviderConfig:
        """Settings of the active provider."""
        return self._configs[self._provider]

    def config_for(self, provider: LlmProvider) -> ProviderConfig:
        return self._configs[provider]

    @property
    def is_ready(self) -> bool:
        return self.health.value.is_healthy

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run a first health check and start the background poller."""
        await self.check_health(force=True)
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll_health())

    async def close(self) -> None:
        """Stop the poller and release provider clients."""
        if self._poller is not None:
            self._poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poller
            self._poller = None
        for provider in list(self._backends):
            await self._drop_backend(provider)

    async def _poll_health(self) -> None:
        while True:
            await asyncio.sleep(self.health_poll_interval)
            try:
                await self.check_health(force=True)
            except Exception:
                logger.exception("Background health check crashed")

    def _backend(self) -> InferenceBackend:
        backend = self._backends.get(self._provider)
        if backend is None:
            backend = self._backend_factory(self.config, self.request_timeout)
            self._backends[self._provider] = backend
        return backend

    async def _drop_backend(self, provider: LlmProvider) -> None:
        backend = self._backends.pop(provider, None)
        if backend is not None:
            await backend.close()

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def _reset_health_cache(self) -> None:
        self._last_check = None
        self._last_check_provider = None

    async def select_provider(self, provider: LlmProvider) -> HealthStatus:
        """Switch the active provider and re-check its health."""
        self._provider = provider
        self._reset_health_cache()
        logger.info("Selected provider %s", provider.label)
        return await self.check_health(force=True)

    async def set_configured_model(self, provider: LlmProvider, model: str) -> None:
        """Change a provider's model; blank restores the default."""
        config = self._configs[provider]
        config.configured_model = model.strip() or config.default_model
        self._reset_health_cache()
        if provider is self._provider:
            await self.check_health(force=True)

    async def set_api_key(self, provider: LlmProvider, api_key: str) -> None:
        """Change a provider's API key; the provider client is rebuilt."""
        self._configs[provider].api_key = api_key.strip()
        await self._drop_backend(provider)
        self._reset_health_cache()
        if provider is self._provider:
            await self.check_health(force=True)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_health(self, force: bool = False) -> HealthStatus:
        """Check whether the active provider can serve a usable model.

        Args:
            force: Ignore the cached result.

        Returns:
            The new (or cached) health status. Never raises for endpoint
            failures; those are reported as UNREACHABLE.
        """
        now = self._clock()
        if (
            not force
            and self._last_check is not None
            and self._last_check_provider is self._provider
            and now - self._last_check < self.health_cache_ttl
        ):
            return self.health.value
        self._last_check = now
        self._last_check_provider = self._provider

        status = await self._check_endpoint(now)
        self.health.set(status)
        logger.debug("Health %s: %s", status.state.value, status.message)
        return status

    async def _check_endpoint(self, now: float) -> HealthStatus:
        config = self.config
        base = HealthStatus(
            provider=config.provider.value,
            configured_model=config.configured_model,
            checked_at=now,
        )

        if config.provider.requires_api_key and not config.has_api_key:
            return HealthStatus(
                state=HealthState.UNREACHABLE,
                provider=base.provider,
                configured_model=base.configured_model,
                message=(
                    f"{config.provider.label} is selected but its API key is missing. "
                    f"Set {config.provider.api_key_env_var}."
                ),
                checked_at=now,
            )

        try:
            available = await asyncio.wait_for(
                self._backend().list_models(), timeout=self.request_timeout
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning("%s health check failed: %s", config.provider.label, str(e) or "timeout")
            return HealthStatus(
                state=HealthState.UNREACHABLE,
                provider=base.provider,
                configured_model=base.configured_model,
                message=f"{config.provider.label} health check failed: {str(e) or 'timeout'}",
                checked_at=now,
            )

        resolved = resolve_model(
            config.configured_model,
            available,
            config.fallback_models,
            allow_configured_when_empty=config.allow_configured_when_empty,
        )
        return HealthStatus(
            state=HealthState.HEALTHY if resolved else HealthState.DEGRADED_NO_MODEL,
            provider=base.provider,
            configured_model=base.configured_model,
            resolved_model=resolved,
            available_models=tuple(available),
            message=_health_message(config, resolved, available),
            checked_at=now,
        )

    async def _complete(
        self, system: str, prompt: str, max_tokens: int, temperature: float
    ) -> str:
        model = self.health.value.resolved_model
        if model is None:
            raise ProviderError("No resolved model for the active provider")
        try:
            return await asyncio.wait_for(
                self._backend().complete(model, system, prompt, max_tokens, temperature),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Completion timed out after {self.request_timeout}s") from e

    async def _on_request_failure(self, error: Exception) -> None:
        logger.warning("Request to %s failed: %s", self.config.provider.label, error)
        await self.check_health(force=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def parse_input(self, text: str, context: ParsingContext | None = None) -> Extraction:
        """Extract a fact, consulting the model only when the rules fall short.

        Args:
            text: Raw user input.
            context: Optional hints for the model.

        Returns:
            The rule result, or the model result when it is strictly better.
        """
        rule = self.extractor.extract(text)
        if not text.strip() or rule.is_complete:
            return rule

        health = await self.check_health()
        if not health.is_healthy:
            return rule

        started = time.perf_counter()
        try:
            reply = await self._complete(
                f"{CORE_PROMPT}\n{EXTRACTION_SYSTEM_PROMPT}",
                build_extraction_prompt(text, context),
                max_tokens=180,
                temperature=0.1,
            )
        except ProviderError as e:
            await self._on_request_failure(e)
            return rule
        finally:
            logger.debug(
                "Model parse via %s took %.0fms",
                self.config.provider.label,
                (time.perf_counter() - started) * 1000,
            )

        parsed = parse_model_response(reply)
        if isinstance(parsed, ParsedEmpty):
            return rule
        return pick_best_extraction(rule, parsed.to_extraction(text))

    async def summarize(self, text: str, max_length: int = 50) -> str:
        """Shorten text to at most ``max_length`` characters."""
        if len(text) <= max_length:
            return text

        health = await self.check_health()
        if not health.is_healthy:
            return rule_based_summary(text, max_length)

        try:
            summary = await self._complete(
                f"{CORE_PROMPT}\n{SUMMARY_SYSTEM_PROMPT}",
                f"Summarize this in at most {max_length} characters:\n\n{text}",
                max_tokens=80,
                temperature=0.2,
            )
        except ProviderError as e:
            await self._on_request_failure(e)
            return rule_based_summary(text, max_length)

        summary = summary.strip()
        if not summary:
            return rule_based_summary(text, max_length)
        return truncate(summary, max_length)

    async def synthesize(
        self,
        subject_uri: str,
        facts: Mapping[str, str],
        recent: Iterable[str] = (),
    ) -> SynthesisResult:
        """Produce a one-sentence insight from a subject's facts.

        Args:
            subject_uri: The subject the facts belong to.
            facts: Live vault facts, key to value.
            recent: Recent summoning texts about the subject.

        Returns:
            Model text at 0.82 confidence, the rule-based insight at 0.65, or
            an empty result at 0.0 when there is nothing to say.
        """
        facts = dict(facts)
        recent = list(recent)

        health = await self.check_health()
        if health.is_healthy and facts:
            try:
                text = await self._complete(
                    f"{CORE_PROMPT}\n{SYNTHESIS_SYSTEM_PROMPT}",
                    build_synthesis_prompt(subject_uri, facts, recent),
                    max_tokens=180,
                    temperature=0.3,
                )
            except ProviderError as e:
                await self._on_request_failure(e)
            else:
                if text.strip():
                    return SynthesisResult(text.strip(), MODEL_SYNTHESIS_CONFIDENCE)

        fallback = rule_based_synthesis(subject_uri, facts, recent)
        if not fallback:
            return SynthesisResult("", 0.0)
        return SynthesisResult(fallback, FALLBACK_SYNTHESIS_CONFIDENCE)
