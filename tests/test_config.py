"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from rolodojo.config import DojoConfig, load_config, provider_configs, save_config
from rolodojo.sensei import LlmProvider


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "dojo-home"


def _write(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, home: Path):
        config = load_config(env={"ROLODOJO_HOME": str(home)})

        assert config.home == home
        assert config.provider is LlmProvider.LOCAL
        assert config.db_path == home / "dojo.db"
        assert config.log_dir == home / "logs"
        assert config.request_timeout == 15.0

    def test_reads_file(self, home: Path):
        _write(
            home / "config.json",
            {
                "provider": "openai",
                "providers": {"openai": {"model": "gpt-4o", "base_url": "https://proxy.test"}},
                "request_timeout": 30,
                "health_cache_ttl": 2.5,
            },
        )

        config = load_config(env={"ROLODOJO_HOME": str(home)})

        assert config.provider is LlmProvider.OPENAI
        assert config.models == {"openai": "gpt-4o"}
        assert config.base_urls == {"openai": "https://proxy.test"}
        assert config.request_timeout == 30.0
        assert config.health_cache_ttl == 2.5

    def test_invalid_values_fall_back(self, home: Path):
        _write(
            home / "config.json",
            {"provider": "claude", "request_timeout": -1, "health_poll_interval": "soon"},
        )

        config = load_config(env={"ROLODOJO_HOME": str(home)})

        assert config.provider is LlmProvider.LOCAL
        assert config.request_timeout == 15.0
        assert config.health_poll_interval == 30.0

    def test_invalid_json_uses_defaults(self, home: Path):
        _write(home / "config.json", "{not json")
        config = load_config(env={"ROLODOJO_HOME": str(home)})
        assert config.provider is LlmProvider.LOCAL

    def test_non_object_uses_defaults(self, home: Path):
        _write(home / "config.json", [1, 2])
        config = load_config(env={"ROLODOJO_HOME": str(home)})
        assert config.models == {}

    def test_explicit_path(self, tmp_path: Path, home: Path):
        path = tmp_path / "other.json"
        _write(path, {"provider": "xai"})
        config = load_config(path, env={"ROLODOJO_HOME": str(home)})
        assert config.provider is LlmProvider.XAI


class TestEnvironmentOverrides:
    """Environment variables win over the file."""

    def test_provider_model_and_url(self, home: Path):
        _write(home / "config.json", {"provider": "local"})
        env = {
            "ROLODOJO_HOME": str(home),
            "ROLODOJO_PROVIDER": "groq",
            "ROLODOJO_MODEL": "llama-3.3-70b",
            "ROLODOJO_BASE_URL": "https://groq.proxy/openai/v1",
        }

        config = load_config(env=env)

        assert config.provider is LlmProvider.GROQ
        assert config.models["groq"] == "llama-3.3-70b"
        assert config.base_urls["groq"] == "https://groq.proxy/openai/v1"

    def test_unknown_provider_is_ignored(self, home: Path):
        config = load_config(env={"ROLODOJO_HOME": str(home), "ROLODOJO_PROVIDER": "nope"})
        assert config.provider is LlmProvider.LOCAL

    def test_api_keys(self, home: Path):
        env = {"ROLODOJO_HOME": str(home), "GROQ_API_KEY": " gsk ", "XAI_API_KEY": ""}
        config = load_config(env=env)
        assert config.api_keys == {"groq": "gsk"}


class TestSaveConfig:
    def test_round_trip_without_secrets(self, home: Path):
        config = DojoConfig(
            home=home,
            provider=LlmProvider.GROQ,
            models={"groq": "llama-3.3-70b"},
            api_keys={"groq": "gsk-secret"},
            request_timeout=20.0,
        )

        save_config(config)

        raw = config.config_path.read_text()
        assert "gsk-secret" not in raw
        data = json.loads(raw)
        assert data["provider"] == "groq"
        assert data["request_timeout"] == 20.0
        assert "health_cache_ttl" not in data

        loaded = load_config(env={"ROLODOJO_HOME": str(home)})
        assert loaded.provider is LlmProvider.GROQ
        assert loaded.models == {"groq": "llama-3.3-70b"}
        assert loaded.api_keys == {}

    def test_api_keys_hidden_from_repr(self):
        config = DojoConfig(api_keys={"groq": "gsk-secret"})
        assert "gsk-secret" not in repr(config)


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [{"request_timeout": 0}, {"health_poll_interval": -1}, {"health_cache_ttl": -0.5}],
    )
    def test_rejects_bad_numbers(self, kwargs):
        with pytest.raises(ValueError):
            DojoConfig(**kwargs)


class TestProviderConfigs:
    def test_builds_every_provider(self, home: Path):
        config = DojoConfig(
            home=home,
            base_urls={"local": "http://gpu-box:11434"},
            models={"local": "mistral"},
            api_keys={"openai": "sk"},
        )

        configs = provider_configs(config)

        assert set(configs) == set(LlmProvider)
        assert configs[LlmProvider.LOCAL].base_url == "http://gpu-box:11434/v1"
        assert configs[LlmProvider.LOCAL].configured_model == "mistral"
        assert configs[LlmProvider.LOCAL].fallback_models == ("openchat-3.6",)
        assert configs[LlmProvider.OPENAI].api_key == "sk"
        assert configs[LlmProvider.XAI].configured_model == "grok-2-latest"
