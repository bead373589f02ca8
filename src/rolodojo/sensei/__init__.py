"""Model-assisted extraction and inference provider orchestration."""

from .backends import GroqBackend, InferenceBackend, OpenAICompatibleBackend, create_backend
from .health import HealthState, HealthStatus, ObservableValue
from .models import (
    LlmProvider,
    ParsingContext,
    ProviderConfig,
    SynthesisResult,
    is_model_match,
    normalize_base_url,
    resolve_model,
)
from .orchestrator import SenseiOrchestrator, pick_best_extraction
from .parsing import ParsedEmpty, ParsedOk, parse_model_response, rule_based_summary

__all__ = [
    "GroqBackend",
    "HealthState",
    "HealthStatus",
    "InferenceBackend",
    "LlmProvider",
    "ObservableValue",
    "OpenAICompatibleBackend",
    "ParsedEmpty",
    "ParsedOk",
    "ParsingContext",
    "ProviderConfig",
    "SenseiOrchestrator",
    "SynthesisResult",
    "create_backend",
    "is_model_match",
    "normalize_base_url",
    "parse_model_response",
    "pick_best_extraction",
    "resolve_model",
    "rule_based_summary",
]
