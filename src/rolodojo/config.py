"""Configuration loader.

Settings are read from ~/.rolodojo/config.json and then overridden by
environment variables (a .env file is loaded by the entry point). API keys
are only ever taken from the environment and are never written to disk.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .sensei import LlmProvider, ProviderConfig, normalize_base_url
from .sensei.models import DEFAULT_BASE_URLS

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".rolodojo"
CONFIG_FILENAME = "config.json"

ENV_HOME = "ROLODOJO_HOME"
ENV_PROVIDER = "ROLODOJO_PROVIDER"
ENV_BASE_URL = "ROLODOJO_BASE_URL"
ENV_MODEL = "ROLODOJO_MODEL"


@dataclass
class DojoConfig:
    """Runtime configuration.

    Attributes:
        home: Directory holding the database, logs and config file.
        provider: The inference provider to use.
        base_urls: Per-provider base URL overrides, keyed by provider value.
        models: Per-provider model overrides, keyed by provider value.
        api_keys: Per-provider API keys (environment only).
        request_timeout: Timeout for every inference call, in seconds.
        health_cache_ttl: Seconds a health check result is reused.
        health_poll_interval: Seconds between background health checks.
        log_max_size_mb: Size at which the event log rotates.
    """

    home: Path = field(default_factory=lambda: DEFAULT_HOME)
    provider: LlmProvider = LlmProvider.LOCAL
    base_urls: dict[str, str] = field(default_factory=dict)
    models: dict[str, str] = field(default_factory=dict)
    api_keys: dict[str, str] = field(default_factory=dict, repr=False)
    request_timeout: float = 15.0
    health_cache_ttl: float = 5.0
    health_poll_interval: float = 30.0
    log_max_size_mb: float = 10.0

    def __post_init__(self) -> None:
        """Validate numeric settings."""
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.health_poll_interval <= 0:
            raise ValueError("health_poll_interval must be positive")
        if self.health_cache_ttl < 0:
            raise ValueError("health_cache_ttl must not be negative")

    @property
    def db_path(self) -> Path:
        return self.home / "dojo.db"

    @property
    def log_dir(self) -> Path:
        return self.home / "logs"

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_FILENAME


def _positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return float(value)


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if isinstance(v, str) and v.strip()}


def _parse_config(data: dict[str, Any], home: Path) -> DojoConfig:
    """Parse config dictionary into DojoConfig.

    Unknown or invalid values fall back to defaults.
    """
    provider = LlmProvider.LOCAL
    raw_provider = data.get("provider")
    if isinstance(raw_provider, str):
        try:
            provider = LlmProvider.from_string(raw_provider)
        except ValueError as e:
            logger.warning("%s. Using %s.", e, provider.value)

    base_urls: dict[str, str] = {}
    models: dict[str, str] = {}
    providers = data.get("providers", {})
    if isinstance(providers, dict):
        for name, settings in providers.items():
            if not isinstance(settings, dict):
                continue
            base_urls.update(_string_map({name: settings.get("base_url")}))
            models.update(_string_map({name: settings.get("model")}))

    return DojoConfig(
        home=home,
        provider=provider,
        base_urls=base_urls,
        models=models,
        request_timeout=_positive_float(data.get("request_timeout"), 15.0),
        health_cache_ttl=_positive_float(data.get("health_cache_ttl"), 5.0),
        health_poll_interval=_positive_float(data.get("health_poll_interval"), 30.0),
        log_max_size_mb=_positive_float(data.get("log_max_size_mb"), 10.0),
    )


def _apply_env(config: DojoConfig, env: Mapping[str, str]) -> DojoConfig:
    raw_provider = env.get(ENV_PROVIDER, "").strip()
    if raw_provider:
        try:
            config.provider = LlmProvider.from_string(raw_provider)
        except ValueError as e:
            logger.warning("Ignoring %s: %s", ENV_PROVIDER, e)

    active = config.provider.value
    base_url = env.get(ENV_BASE_URL, "").strip()
    if base_url:
        config.base_urls[active] = base_url
    model = env.get(ENV_MODEL, "").strip()
    if model:
        config.models[active] = model

    for provider in LlmProvider:
        var = provider.api_key_env_var
        if var and env.get(var, "").strip():
            config.api_keys[provider.value] = env[var].strip()
    return config


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> DojoConfig:
    """Load DojoConfig from a JSON file plus environment overrides.

    The config file should have this structure:
    ```json
    {
      "provider": "local",
      "providers": {
        "local": {"base_url": "http://localhost:11434/v1", "model": "llama3.3"}
      },
      "request_timeout": 15
    }
    ```

    Args:
        config_path: Path to config file. Defaults to $ROLODOJO_HOME/config.json.
        env: Environment mapping. Uses os.environ if None.

    Returns:
        DojoConfig instance with loaded values.
    """
    env = os.environ if env is None else env
    home = Path(env[ENV_HOME]).expanduser() if env.get(ENV_HOME) else DEFAULT_HOME
    path = config_path or home / CONFIG_FILENAME

    data: dict[str, Any] = {}
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        else:
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.warning("Config in %s is not an object. Using defaults.", path)

    return _apply_env(_parse_config(data, home), env)


def save_config(config: DojoConfig, config_path: Path | None = None) -> None:
    """Save DojoConfig to a JSON file. API keys are not written.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses ``config.config_path`` if None.
    """
    path = config_path or config.config_path
    path.parent.mkdir(parents=True, exist_ok=True)

    providers: dict[str, dict[str, str]] = {}
    for name, url in config.base_urls.items():
        providers.setdefault(name, {})["base_url"] = url
    for name, model in config.models.items():
        providers.setdefault(name, {})["model"] = model

    data: dict[str, Any] = {"provider": config.provider.value}
    if providers:
        data["providers"] = providers
    if config.request_timeout != 15.0:
        data["request_timeout"] = config.request_timeout
    if config.health_cache_ttl != 5.0:
        data["health_cache_ttl"] = config.health_cache_ttl
    if config.health_poll_interval != 30.0:
        data["health_poll_interval"] = config.health_poll_interval
    if config.log_max_size_mb != 10.0:
        data["log_max_size_mb"] = config.log_max_size_mb

    try:
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise


def provider_configs(config: DojoConfig) -> dict[LlmProvider, ProviderConfig]:
    """Build the per-provider settings the orchestrator needs."""
    configs: dict[LlmProvider, ProviderConfig] = {}
    for provider in LlmProvider:
        settings = ProviderConfig.default(provider)
        url = config.base_urls.get(provider.value, "")
        settings.base_url = normalize_base_url(url, DEFAULT_BASE_URLS[provider])
        settings.configured_model = config.models.get(provider.value) or settings.default_model
        settings.api_key = config.api_keys.get(provider.value, "")
        configs[provider] = settings
    return configs
