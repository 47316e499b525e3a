"""Tests for Settings and SettingsConfigProvider.

Verifies that Settings:
- Loads typed defaults for all fields
- Reads overrides from PROMPT_REFINER_ prefixed env vars
- Points TEMPLATES_CONFIG_PATH at the shipped templates.yaml
"""

from pathlib import Path

from prompt_refiner.core.config import Settings, SettingsConfigProvider


class TestSettingsDefaults:
    def test_service_name_default(self):
        assert Settings().SERVICE_NAME == "prompt-refiner"

    def test_backend_selection_defaults(self):
        settings = Settings()
        assert settings.ACTIVE_BACKEND == "mock"
        assert settings.FALLBACK_BACKEND == "mock"
        assert settings.STRICT_MODE is True

    def test_resilience_defaults(self):
        settings = Settings()
        assert settings.CIRCUIT_BREAKER_THRESHOLD == 3
        assert settings.CIRCUIT_BREAKER_RESET_SECONDS == 30.0
        assert settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS == 2
        assert settings.RETRY_MAX_RETRIES == 3
        assert settings.RETRY_BASE_DELAY == 1.0
        assert settings.RETRY_MAX_DELAY == 10.0

    def test_cache_defaults(self):
        settings = Settings()
        assert settings.CACHE_MAX_SIZE == 50
        assert settings.CACHE_TTL_SECONDS == 3600.0

    def test_max_text_length_default(self):
        assert Settings().MAX_TEXT_LENGTH == 4000

    def test_retry_patterns_cover_transient_errors(self):
        patterns = Settings().RETRY_PATTERNS
        for expected in ("ETIMEDOUT", "ECONNRESET", "ENOTFOUND", "timeout", "rate limit"):
            assert expected in patterns

    def test_templates_config_path_exists(self):
        path = Settings().TEMPLATES_CONFIG_PATH
        assert isinstance(path, Path)
        assert path.name == "templates.yaml"
        assert path.exists()


class TestSettingsEnvOverride:
    def test_active_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("PROMPT_REFINER_ACTIVE_BACKEND", "groq")
        assert Settings().ACTIVE_BACKEND == "groq"

    def test_numeric_override_is_typed(self, monkeypatch):
        monkeypatch.setenv("PROMPT_REFINER_CIRCUIT_BREAKER_THRESHOLD", "5")
        settings = Settings()
        assert settings.CIRCUIT_BREAKER_THRESHOLD == 5
        assert isinstance(settings.CIRCUIT_BREAKER_THRESHOLD, int)

    def test_bool_override(self, monkeypatch):
        monkeypatch.setenv("PROMPT_REFINER_STRICT_MODE", "false")
        assert Settings().STRICT_MODE is False

    def test_unprefixed_env_is_ignored(self, monkeypatch):
        monkeypatch.setenv("ACTIVE_BACKEND", "openai")
        assert Settings().ACTIVE_BACKEND == "mock"


class TestSettingsConfigProvider:
    def test_reads_settings(self):
        provider = SettingsConfigProvider(Settings(ACTIVE_BACKEND="openai", MODEL_ID="gpt-4o", STRICT_MODE=False))
        assert provider.get_active_backend_id() == "openai"
        assert provider.get_model_id() == "gpt-4o"
        assert provider.is_strict_mode() is False

    def test_runtime_override_wins(self):
        settings = Settings(ACTIVE_BACKEND="openai")
        provider = SettingsConfigProvider(settings)
        provider.set_active_backend_id("mock")
        assert provider.get_active_backend_id() == "mock"
        assert settings.ACTIVE_BACKEND == "openai"
