"""BackendRegistry — lazy, memoized backend instances by identifier.

Each backend id maps to a zero-argument factory.  A handle is constructed
on first reference and reused afterwards so any HTTP connection pool it
owns is shared across calls.  The active backend is whatever the
configuration provider names; unknown ids fall back to the offline mock
backend so ``get_active_backend()`` never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Protocol

from prompt_refiner.backends.base import RefineBackend
from prompt_refiner.backends.mock import MOCK_BACKEND_ID, MockBackend
from prompt_refiner.backends.ollama import OllamaBackend
from prompt_refiner.backends.openai_compat import OpenAICompatibleBackend
from prompt_refiner.core.config import Settings

logger = logging.getLogger(__name__)

BackendFactory = Callable[[], RefineBackend]


class ActiveBackendSource(Protocol):
    def get_active_backend_id(self) -> str: ...


class BackendRegistry:
    """Owns backend handles for the lifetime of an orchestrator.

    Args:
        config:     Provides the currently configured backend id.
        factories:  Backend id → factory.  An offline factory is added
                    under *offline_id* if missing.
        offline_id: Id of the always-available fallback backend.
    """

    def __init__(
        self,
        config: ActiveBackendSource,
        factories: Mapping[str, BackendFactory] | None = None,
        offline_id: str = MOCK_BACKEND_ID,
    ) -> None:
        self._config = config
        self._factories: dict[str, BackendFactory] = dict(factories or {})
        self._offline_id = offline_id
        self._factories.setdefault(offline_id, MockBackend)
        self._instances: dict[str, RefineBackend] = {}

    # ── Registration ────────────────────────────────────────────────

    def register(self, backend_id: str, factory: BackendFactory) -> None:
        """Register (or replace) the factory for *backend_id*.

        Replacing a factory does not affect an already constructed handle.
        """
        self._factories[backend_id] = factory

    def available_ids(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._factories

    # ── Lookup ──────────────────────────────────────────────────────

    def get(self, backend_id: str) -> RefineBackend:
        """Return the handle for *backend_id*, constructing it on first use.

        Raises:
            ValueError: If no factory is registered for *backend_id*.
        """
        instance = self._instances.get(backend_id)
        if instance is not None:
            return instance
        factory = self._factories.get(backend_id)
        if factory is None:
            raise ValueError(f"Unknown backend: {backend_id}")
        instance = factory()
        self._instances[backend_id] = instance
        logger.info("Backend '%s' instantiated", backend_id)
        return instance

    def resolve_active_id(self) -> str:
        """Return the id ``get_active_backend()`` would serve, without constructing it."""
        configured = self._config.get_active_backend_id()
        if configured and configured in self._factories:
            return configured
        logger.warning("Backend '%s' not found, falling back to '%s'", configured, self._offline_id)
        return self._offline_id

    def get_active_backend(self) -> RefineBackend:
        """Return the configured backend, or the offline backend if it is unknown."""
        return self.get(self.resolve_active_id())

    def preload(self, backend_id: str) -> None:
        """Construct *backend_id* ahead of its first request."""
        self.get(backend_id)

    def loaded_count(self) -> int:
        return len(self._instances)

    async def clear(self) -> None:
        """Close and drop every constructed handle."""
        instances = list(self._instances.items())
        self._instances.clear()
        for backend_id, instance in instances:
            try:
                await instance.aclose()
            except Exception:
                logger.exception("Failed to close backend '%s'", backend_id)
        if instances:
            logger.info("Released %d backend(s)", len(instances))


def default_backend_factories(settings: Settings) -> dict[str, BackendFactory]:
    """Factories for every built-in backend, configured from *settings*."""
    timeout = settings.BACKEND_TIMEOUT_SECONDS
    return {
        MOCK_BACKEND_ID: lambda: MockBackend(latency=settings.MOCK_LATENCY_SECONDS),
        "openai": lambda: OpenAICompatibleBackend(
            backend_id="openai",
            name="OpenAI (GPT)",
            base_url=settings.OPENAI_BASE_URL,
            api_key=settings.OPENAI_API_KEY,
            default_model="gpt-4o-mini",
            model_prefixes=("gpt-", "o1", "o3", "o4", "chatgpt-"),
            timeout=timeout,
        ),
        "groq": lambda: OpenAICompatibleBackend(
            backend_id="groq",
            name="Groq",
            base_url=settings.GROQ_BASE_URL,
            api_key=settings.GROQ_API_KEY,
            default_model="llama-3.1-8b-instant",
            model_prefixes=("llama", "mixtral", "gemma", "qwen", "deepseek"),
            timeout=timeout,
        ),
        "gemini": lambda: OpenAICompatibleBackend(
            backend_id="gemini",
            name="Google Gemini",
            base_url=settings.GEMINI_BASE_URL,
            api_key=settings.GEMINI_API_KEY,
            default_model="gemini-2.0-flash",
            model_prefixes=("gemini",),
            timeout=timeout,
        ),
        "github": lambda: OpenAICompatibleBackend(
            backend_id="github",
            name="GitHub Models",
            base_url=settings.GITHUB_MODELS_BASE_URL,
            api_key=settings.GITHUB_TOKEN,
            default_model="gpt-4o-mini",
            timeout=timeout,
        ),
        "ollama": lambda: OllamaBackend(endpoint=settings.OLLAMA_ENDPOINT, timeout=timeout),
    }
