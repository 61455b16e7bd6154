"""
Unit tests for configuration loading and validation.

Tests strict validation, environment expansion and error handling.
"""

import os
import tempfile

import pytest
import yaml

from storytime_ai.config.loader import (
    AiConfig,
    ProviderConfig,
    default_ai_config,
    expand_env,
    load_ai_config,
)
from storytime_ai.core.errors import ConfigError


def _config_data(**overrides) -> dict:
    data = {
        "default": "openai",
        "providers": {
            "openai": {
                "api_key": "${OPENAI_API_KEY}",
                "base_url": "https://api.openai.com/v1",
                "model": "gpt-4.1",
                "cost_per_1k_tokens": 0.002,
            },
            "local": {
                "driver": "llama",
                "base_url": "http://llama:5009",
                "endpoint": "/generate",
                "model": "llama-3.2",
                "timeout": 300,
            },
        },
    }
    data.update(overrides)
    return data


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config(_config_data())

        config = load_ai_config(config_path, environ={"OPENAI_API_KEY": "sk-live"})

        assert isinstance(config, AiConfig)
        assert config.default_provider == "openai"
        assert config.providers["openai"] == ProviderConfig(
            name="openai", driver="openai", model="gpt-4.1",
            base_url="https://api.openai.com/v1", api_key="sk-live", cost_per_1k_tokens=0.002,
        )
        local = config.get_provider("local")
        assert local.driver == "llama"
        assert local.endpoint == "/generate"
        assert local.timeout == 300
        assert config.moderation.enabled is False

    def test_unset_secret_becomes_none(self):
        config = load_ai_config(self._write_config(_config_data()), environ={})
        assert config.providers["openai"].api_key is None

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="AI config file not found"):
            load_ai_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()
        with pytest.raises(ConfigError, match="Configuration file is empty"):
            load_ai_config(path)

    def test_non_dict_root(self):
        with pytest.raises(ConfigError, match="must be a dictionary"):
            load_ai_config(self._write_config(["openai"]))

    def test_unknown_top_level_keys(self):
        with pytest.raises(ConfigError, match=r"Unknown configuration keys: \['budget'\]"):
            load_ai_config(self._write_config(_config_data(budget={"daily": 1})), environ={})

    def test_missing_providers(self):
        with pytest.raises(ConfigError, match="Missing required 'providers' section"):
            load_ai_config(self._write_config({"default": "openai"}))

    def test_default_must_be_configured(self):
        with pytest.raises(ConfigError, match="Default provider 'nemotron3' is not configured"):
            load_ai_config(self._write_config(_config_data(default="nemotron3")), environ={})

    def test_unsupported_driver(self):
        data = _config_data()
        data["providers"]["local"]["driver"] = "gemini"
        with pytest.raises(ConfigError, match="unsupported driver 'gemini'"):
            load_ai_config(self._write_config(data), environ={})

    def test_missing_base_url(self):
        data = _config_data()
        del data["providers"]["local"]["base_url"]
        with pytest.raises(ConfigError, match="Missing required 'base_url' in providers.local"):
            load_ai_config(self._write_config(data), environ={})

    def test_non_numeric_value(self):
        data = _config_data()
        data["providers"]["openai"]["max_tokens"] = "lots"
        with pytest.raises(ConfigError, match="providers.openai.max_tokens' must be a number"):
            load_ai_config(self._write_config(data), environ={})

    def test_negative_cost(self):
        data = _config_data()
        data["providers"]["openai"]["cost_per_1k_tokens"] = -0.1
        with pytest.raises(ConfigError, match="cost_per_1k_tokens must be >= 0"):
            load_ai_config(self._write_config(data), environ={})

    def test_image_pricing_section(self):
        data = _config_data(image_pricing=[
            {"pattern": "sdxl", "cost_per_input_image": 0.0, "cost_per_output_image": 0.01},
            {"pattern": "default", "cost_per_output_image": 0.05},
        ])

        config = load_ai_config(self._write_config(data), environ={})

        assert config.image_pricing.get_pricing("stability/sdxl").cost_per_output_image == 0.01
        assert config.image_pricing.get_pricing("other").cost_per_output_image == 0.05

    def test_image_pricing_negative_price(self):
        data = _config_data(image_pricing=[{"pattern": "sdxl", "cost_per_output_image": -1}])
        with pytest.raises(ConfigError, match=r"image_pricing\[0\]"):
            load_ai_config(self._write_config(data), environ={})

    def test_moderation_section_coerced(self):
        data = _config_data(moderation={"enabled": "${MODERATION:-true}", "min_threshold": "0.7"})

        config = load_ai_config(self._write_config(data), environ={})

        assert config.moderation.enabled is True
        assert config.moderation.min_threshold == 0.7

    def test_unknown_section_keys(self):
        data = _config_data(replicate={"api_key": "r8", "region": "eu"})
        with pytest.raises(ConfigError, match="Unknown keys in replicate"):
            load_ai_config(self._write_config(data), environ={})

    def test_get_unconfigured_provider(self):
        config = load_ai_config(self._write_config(_config_data()), environ={})
        with pytest.raises(ConfigError, match="Provider 'nemotron3' is not configured"):
            config.get_provider("nemotron3")


class TestExpandEnv:

    def test_default_value(self):
        assert expand_env("${HOST:-localhost}:8000", {}) == "localhost:8000"

    def test_set_value(self):
        assert expand_env({"url": ["${HOST}/v1"]}, {"HOST": "http://x"}) == {"url": ["http://x/v1"]}

    def test_embedded_unset_becomes_empty(self):
        assert expand_env("Bearer ${TOKEN}", {}) == "Bearer "

    def test_non_strings_untouched(self):
        assert expand_env(42, {}) == 42


class TestDefaultConfig:

    def test_defaults(self):
        config = default_ai_config(environ={})

        assert config.default_provider == "openai"
        assert set(config.providers) == {"openai", "llama", "nemotron3"}
        assert config.providers["openai"].cost_per_1k_tokens == 0.002
        assert config.providers["llama"].base_url == "http://host.docker.internal:5009"
        assert config.providers["llama"].timeout == 300
        nemotron = config.providers["nemotron3"]
        assert nemotron.api_key == "sk-no-key-required"
        assert nemotron.temperature == 0.8
        assert nemotron.timeout == 360
        assert config.transcribe.region == "us-east-1"
        assert config.database_path == "storytime_ai.db"

    def test_environment_overrides(self):
        config = default_ai_config(environ={
            "AI_PROVIDER": "nemotron3",
            "OPENAI_API_KEY": "sk-env",
            "OPENAI_MAX_TOKENS": "2048",
            "AI_MODERATION_ENABLED": "true",
            "STORYTIME_AI_DB": "/tmp/ai.db",
        })

        assert config.default_provider == "nemotron3"
        assert config.providers["openai"].api_key == "sk-env"
        assert config.providers["openai"].max_tokens == 2048
        assert config.moderation.enabled is True
        assert config.database_path == "/tmp/ai.db"

    def test_unknown_default_rejected(self):
        with pytest.raises(ConfigError):
            default_ai_config(environ={"AI_PROVIDER": "gemini"})
