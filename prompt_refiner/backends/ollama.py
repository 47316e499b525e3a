"""Local Ollama backend.

Tries ``/api/chat`` first and falls back to ``/api/generate`` for models or
server versions that do not support chat.  Local models tend to wander off
the template, so the system template is reinforced before sending.
"""

from __future__ import annotations

import logging

import httpx

from prompt_refiner.backends.base import BackendOptions, RefineBackend
from prompt_refiner.core.errors import BackendFailureError

logger = logging.getLogger(__name__)

OLLAMA_BACKEND_ID = "ollama"
DEFAULT_OLLAMA_MODEL = "llama3"
DEFAULT_TEMPERATURE = 0.3

_HOSTED_MODEL_MARKERS = ("gpt-", "claude-", "gemini")

LOCAL_MODEL_REINFORCEMENT = """

CRITICAL RULE FOR LOCAL MODEL:
- Start your response DIRECTLY with the [Context] or [Objective] tag.
- DO NOT include introductions, preambles, or invented tags.
- Respond exclusively with the refined prompt following the template above."""


def effective_model(configured: str | None) -> str:
    """Map the configured model id to one Ollama can serve."""
    if not configured or configured == "custom" or any(m in configured for m in _HOSTED_MODEL_MARKERS):
        return DEFAULT_OLLAMA_MODEL
    return configured


def build_local_prompt(user_text: str, system_template: str) -> str:
    return f'{system_template}{LOCAL_MODEL_REINFORCEMENT}\n\nOriginal user prompt: "{user_text}"'


class OllamaBackend(RefineBackend):
    """Backend for a local Ollama server.

    Args:
        endpoint: Ollama base URL, e.g. ``http://localhost:11434``.
        timeout:  Per-request timeout in seconds.
        client:   Pre-built client (tests inject a mock transport).
    """

    backend_id = OLLAMA_BACKEND_ID
    name = "Ollama (Local)"

    def __init__(
        self,
        endpoint: str = "http://localhost:11434",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = (endpoint or "").strip().rstrip("/")
        self._timeout = timeout
        self._client = client

    def is_configured(self) -> bool:
        return bool(self._endpoint)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def refine(self, user_text: str, system_template: str, options: BackendOptions) -> str:
        if not self._endpoint:
            raise BackendFailureError(self.backend_id, "Ollama endpoint is not configured", retryable=False)

        model = effective_model(options.model)
        prompt = build_local_prompt(user_text, system_template)
        temperature = DEFAULT_TEMPERATURE if options.temperature is None else options.temperature

        try:
            return await self._chat(model, prompt, temperature)
        except BackendFailureError as chat_error:
            if chat_error.retryable:
                raise
            logger.warning("Ollama /api/chat failed, retrying with /api/generate: %s", chat_error.detail)
            return await self._generate(model, prompt, temperature)

    async def _chat(self, model: str, prompt: str, temperature: float) -> str:
        data = await self._post(
            "/api/chat",
            {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        try:
            return data["message"]["content"]
        except (KeyError, TypeError) as exc:
            raise BackendFailureError(self.backend_id, "Malformed /api/chat response", retryable=False) from exc

    async def _generate(self, model: str, prompt: str, temperature: float) -> str:
        data = await self._post(
            "/api/generate",
            {
                "model": model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        try:
            return data["response"]
        except (KeyError, TypeError) as exc:
            raise BackendFailureError(self.backend_id, "Malformed /api/generate response", retryable=False) from exc

    async def _post(self, path: str, body: dict) -> dict:
        url = f"{self._endpoint}{path}"
        try:
            response = await self._get_client().post(url, json=body)
        except httpx.TimeoutException as exc:
            raise BackendFailureError(self.backend_id, f"Request to {url} timed out", retryable=True) from exc
        except httpx.TransportError as exc:
            raise BackendFailureError(
                self.backend_id,
                f"Could not connect to Ollama at {self._endpoint}. Is Ollama running?",
                retryable=True,
            ) from exc

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code == 429
            raise BackendFailureError(
                self.backend_id,
                f"HTTP {response.status_code}: {response.text[:200]}",
                retryable=retryable,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendFailureError(self.backend_id, "Invalid JSON from Ollama", retryable=False) from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
