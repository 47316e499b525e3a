"""OpenAI-compatible chat completions backend.

Serves every vendor exposing ``POST {base_url}/chat/completions`` in the
OpenAI format (OpenAI, Groq, Gemini's OpenAI endpoint, GitHub Models).
Transport failures are translated into ``BackendFailureError`` with an
explicit ``retryable`` flag so the retry executor never has to guess.
"""

from __future__ import annotations

import logging

import httpx

from prompt_refiner.backends.base import BackendOptions, RefineBackend
from prompt_refiner.core.errors import BackendFailureError

logger = logging.getLogger(__name__)

# HTTP status codes that are safe to retry
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_AUTH_STATUS_CODES = frozenset({401, 403})


def build_chat_payload(
    user_text: str,
    system_template: str,
    model: str,
    temperature: float | None,
) -> dict:
    """Build an OpenAI chat completions request body."""
    messages: list[dict[str, str]] = []
    if system_template:
        messages.append({"role": "system", "content": system_template})
    messages.append({"role": "user", "content": user_text})

    payload: dict = {"model": model, "messages": messages}
    if temperature is not None:
        payload["temperature"] = temperature
    return payload


class OpenAICompatibleBackend(RefineBackend):
    """Backend speaking the OpenAI chat completions protocol over ``httpx``.

    Args:
        backend_id:     Registry identifier (``openai``, ``groq``, ...).
        name:           Human-readable name.
        base_url:       API root, e.g. ``https://api.openai.com/v1``.
        api_key:        Bearer token; an empty key fails without a request.
        default_model:  Model used when the configured one is foreign.
        model_prefixes: Prefixes of model ids this vendor serves.  Empty
                        accepts any configured model.
        timeout:        Per-request timeout in seconds.
        client:         Pre-built client (tests inject a mock transport).
    """

    def __init__(
        self,
        backend_id: str,
        name: str,
        base_url: str,
        api_key: str,
        default_model: str,
        model_prefixes: tuple[str, ...] = (),
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.backend_id = backend_id
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._default_model = default_model
        self._model_prefixes = model_prefixes
        self._timeout = timeout
        self._client = client

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def effective_model(self, configured: str | None) -> str:
        """Return *configured* if this vendor serves it, else the default model."""
        if not configured:
            return self._default_model
        if self._model_prefixes and not configured.startswith(self._model_prefixes):
            return self._default_model
        return configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
            logger.info("%s HTTP client initialized", self.name)
        return self._client

    async def refine(self, user_text: str, system_template: str, options: BackendOptions) -> str:
        if not self._api_key:
            raise BackendFailureError(
                self.backend_id,
                f"API key is required to use {self.name}",
                retryable=False,
            )

        payload = build_chat_payload(
            user_text,
            system_template,
            self.effective_model(options.model),
            options.temperature,
        )
        headers = {"Authorization": f"Bearer {self._api_key}"}
        url = f"{self._base_url}/chat/completions"

        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise BackendFailureError(self.backend_id, "Request timeout", retryable=True) from exc
        except httpx.TransportError as exc:
            raise BackendFailureError(self.backend_id, f"Connection failed: {exc}", retryable=True) from exc

        self._raise_for_status(response)
        return self._extract_text(response)

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = f"HTTP {status}: {response.text[:200]}"
        if status in _AUTH_STATUS_CODES:
            raise BackendFailureError(self.backend_id, f"Authentication failed ({detail})", retryable=False)
        if status == 429:
            raise BackendFailureError(self.backend_id, f"Rate limit exceeded ({detail})", retryable=True)
        raise BackendFailureError(self.backend_id, detail, retryable=status in _RETRYABLE_STATUS_CODES)

    def _extract_text(self, response: httpx.Response) -> str:
        try:
            body = response.json()
            return body["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise BackendFailureError(self.backend_id, "Malformed completion response", retryable=False) from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
