"""Settings for prompt-refiner.

All settings are loaded from environment variables with the
``PROMPT_REFINER_`` prefix.  ``SettingsConfigProvider`` exposes the subset
the orchestrator reads on every call (active backend, model, strict mode).
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

_DEFAULT_TEMPLATES_CONFIG = Path(__file__).resolve().parent.parent.parent / "config" / "templates.yaml"


class Settings(BaseSettings):
    """prompt-refiner configuration.

    All fields can be overridden by environment variables prefixed with
    ``PROMPT_REFINER_``.  For example, ``PROMPT_REFINER_ACTIVE_BACKEND=groq``
    selects the Groq backend.
    """

    # ── Service identity ────────────────────────────────────────────
    SERVICE_NAME: str = "prompt-refiner"
    SERVICE_VERSION: str = "0.1.0"

    # ── Backend selection ───────────────────────────────────────────
    ACTIVE_BACKEND: str = "mock"
    FALLBACK_BACKEND: str = "mock"  # Target of the "use fallback" recovery action
    MODEL_ID: str = "gpt-4o-mini"
    STRICT_MODE: bool = True

    # ── Backend endpoints and credentials ───────────────────────────
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    GROQ_API_KEY: str = ""
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    GITHUB_TOKEN: str = ""
    GITHUB_MODELS_BASE_URL: str = "https://models.inference.ai.azure.com"
    OLLAMA_ENDPOINT: str = "http://localhost:11434"
    BACKEND_TIMEOUT_SECONDS: float = 60.0
    MOCK_LATENCY_SECONDS: float = 0.5

    # ── Resilience: circuit breakers ────────────────────────────────
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures before OPEN
    CIRCUIT_BREAKER_RESET_SECONDS: float = 30.0  # Seconds before HALF_OPEN trial calls
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS: int = 2  # Successful trial calls needed to close

    # ── Resilience: retry ───────────────────────────────────────────
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0  # Seconds, doubled per retry
    RETRY_MAX_DELAY: float = 10.0
    RETRY_PATTERNS: list[str] = [
        "ETIMEDOUT",
        "ECONNRESET",
        "ENOTFOUND",
        "timeout",
        "timed out",
        "rate limit",
        "too many requests",
        "temporarily unavailable",
    ]

    # ── Result cache ────────────────────────────────────────────────
    CACHE_MAX_SIZE: int = 50
    CACHE_TTL_SECONDS: float = 3600.0

    # ── Input / templates ───────────────────────────────────────────
    MAX_TEXT_LENGTH: int = 4000
    TEMPLATES_CONFIG_PATH: Path = _DEFAULT_TEMPLATES_CONFIG

    model_config = {
        "env_prefix": "PROMPT_REFINER_",
    }


class SettingsConfigProvider:
    """Configuration provider backed by ``Settings``.

    The active backend can be switched at runtime (for example by the
    "use fallback" recovery action) without mutating the settings object.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._backend_override: str | None = None

    def get_active_backend_id(self) -> str:
        return self._backend_override or self._settings.ACTIVE_BACKEND

    def set_active_backend_id(self, backend_id: str) -> None:
        self._backend_override = backend_id

    def get_model_id(self) -> str:
        return self._settings.MODEL_ID

    def is_strict_mode(self) -> bool:
        return self._settings.STRICT_MODE
