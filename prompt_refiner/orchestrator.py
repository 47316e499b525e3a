"""RefinementOrchestrator — the single "refine text X with backend Y" operation.

Composes the result cache, the per-backend circuit breakers, the retry
executor and the backend registry around one call:

    validate → cache lookup → load template → breaker(retry(backend.refine))
             → cache store → optional output validation

Every suspension point (template load, backend call, backoff) honours the
caller's ``CancellationToken``.  A cancelled call writes nothing to the
cache and moves no breaker counter.

Usage::

    async with build_orchestrator() as orchestrator:
        result = await orchestrator.refine("improve my login flow")
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from pydantic import ValidationError

from prompt_refiner.backends.base import BackendOptions
from prompt_refiner.backends.mock import MOCK_BACKEND_ID
from prompt_refiner.backends.registry import BackendRegistry, default_backend_factories
from prompt_refiner.core.cancellation import CancellationToken
from prompt_refiner.core.config import Settings, SettingsConfigProvider
from prompt_refiner.core.errors import (
    BackendFailureError,
    CircuitOpenError,
    InvalidInputError,
    PromptRefinerError,
    RecoveryAction,
)
from prompt_refiner.models.schemas import (
    RefinementOptions,
    RefinementRequest,
    RefinementResult,
    ValidationResult,
)
from prompt_refiner.resilience.cache import ResultCache
from prompt_refiner.resilience.circuit_breaker import CircuitBreakerRegistry
from prompt_refiner.resilience.retry import RetryPolicy, with_retry
from prompt_refiner.templates import DEFAULT_TEMPLATE_ID, TemplateRegistry
from prompt_refiner.validation.input_validators import (
    MAX_TEXT_LENGTH,
    format_validation_errors,
    sanitize_string,
    validate_text_length,
)
from prompt_refiner.validation.output_validator import OutputValidator

logger = logging.getLogger(__name__)

RE_REFINE_TEMPLATE = (
    "Original prompt: {original}\n\n"
    "Previous refined version: {previous}\n\n"
    "Feedback/Requirements for improvement: {feedback}\n\n"
    "Please refine the prompt again incorporating the feedback above."
)


def _coerce_options(options: RefinementOptions | Mapping[str, Any] | None) -> RefinementOptions:
    """Return *options* as ``RefinementOptions``, validating plain mappings.

    Raises:
        InvalidInputError: With per-field ``errors`` if the mapping does not
            validate.
    """
    if options is None:
        return RefinementOptions()
    if isinstance(options, RefinementOptions):
        return options
    try:
        return RefinementOptions.model_validate(dict(options))
    except ValidationError as exc:
        raise InvalidInputError("Invalid refinement options", errors=format_validation_errors(exc)) from exc


# ── Collaborator interfaces ─────────────────────────────────────────────


class ConfigProvider(Protocol):
    def get_active_backend_id(self) -> str: ...

    def set_active_backend_id(self, backend_id: str) -> None: ...

    def get_model_id(self) -> str: ...

    def is_strict_mode(self) -> bool: ...


class TemplateSource(Protocol):
    async def load_template(self, template_id: str | None = None, *, strict: bool) -> str: ...


class OutputCheck(Protocol):
    def validate(self, output: str, strict: bool = False) -> ValidationResult: ...


# Called when the active backend's circuit is open.  Returns the action the
# user picked; ``None`` behaves like ``RecoveryAction.DISMISS``.
CircuitOpenHandler = Callable[[CircuitOpenError], Awaitable[RecoveryAction | None]]


# ── Orchestrator ────────────────────────────────────────────────────────


class RefinementOrchestrator:
    """Runs refinements through cache, breaker, retry and backend registry.

    All collaborators are injected; ``build_orchestrator()`` wires the
    defaults from ``Settings``.

    Args:
        config:              Active backend, model and strict-mode source.
        backends:            Backend registry (owned; closed by ``close()``).
        breakers:            Per-backend circuit breakers.
        cache:               Result cache shared by every call.
        templates:           System template source.
        policy:              Retry policy for backend calls.
        validator:           Optional output validator.
        max_text_length:     Upper bound on input length.
        fallback_backend_id: Backend used by ``RecoveryAction.USE_FALLBACK``.
        on_circuit_open:     Optional recovery callback for open circuits.
    """

    def __init__(
        self,
        config: ConfigProvider,
        backends: BackendRegistry,
        breakers: CircuitBreakerRegistry,
        cache: ResultCache,
        templates: TemplateSource,
        policy: RetryPolicy | None = None,
        validator: OutputCheck | None = None,
        max_text_length: int = MAX_TEXT_LENGTH,
        fallback_backend_id: str = MOCK_BACKEND_ID,
        on_circuit_open: CircuitOpenHandler | None = None,
    ) -> None:
        self._config = config
        self._backends = backends
        self._breakers = breakers
        self._cache = cache
        self._templates = templates
        self._policy = policy or RetryPolicy()
        self._validator = validator
        self._max_text_length = max_text_length
        self._fallback_backend_id = fallback_backend_id
        self._on_circuit_open = on_circuit_open

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def backends(self) -> BackendRegistry:
        return self._backends

    # ── Public API ──────────────────────────────────────────────────

    async def refine(
        self,
        text: str,
        cancellation: CancellationToken | None = None,
        options: RefinementOptions | Mapping[str, Any] | None = None,
    ) -> RefinementResult:
        """Refine *text* with the active backend.

        Raises:
            InvalidInputError: Empty or over-long *text*, or invalid *options*.
            RefinementCancelledError: *cancellation* fired.
            TemplateLoadError: The system template could not be loaded.
            CircuitOpenError: The backend's circuit rejected the call and
                no recovery action re-routed it.
            BackendFailureError: The backend failed after retries.
        """
        return await self._refine(
            text,
            cancellation or CancellationToken(),
            _coerce_options(options),
            attempted=frozenset(),
        )

    async def re_refine(
        self,
        original: str,
        previous: str,
        feedback: str,
        cancellation: CancellationToken | None = None,
        options: RefinementOptions | Mapping[str, Any] | None = None,
    ) -> RefinementResult:
        """Refine again, feeding back the previous result and user feedback.

        The returned ``iteration`` is one more than ``options.iteration``
        (which defaults to 1).
        """
        options = _coerce_options(options)
        prompt = RE_REFINE_TEMPLATE.format(original=original, previous=previous, feedback=feedback)
        next_options = options.model_copy(update={"iteration": (options.iteration or 1) + 1})
        return await self.refine(prompt, cancellation, next_options)

    def stats(self) -> dict:
        """Cache and breaker state for diagnostics."""
        return {
            "cache": self._cache.stats(),
            "breakers": self._breakers.all_snapshots(),
            "backends_loaded": self._backends.loaded_count(),
        }

    async def close(self) -> None:
        """Release every backend handle and its connections."""
        await self._backends.clear()

    async def __aenter__(self) -> RefinementOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Internals ───────────────────────────────────────────────────

    async def _refine(
        self,
        text: str,
        cancellation: CancellationToken,
        options: RefinementOptions,
        attempted: frozenset[str],
    ) -> RefinementResult:
        text = sanitize_string(text) if isinstance(text, str) else text
        validate_text_length(text, self._max_text_length)
        cancellation.raise_if_cancelled()

        backend_id = self._backends.resolve_active_id()
        request = RefinementRequest(
            text=text,
            backend_id=backend_id,
            model_id=self._config.get_model_id(),
            template_id=options.template_id or DEFAULT_TEMPLATE_ID,
            strict=self._config.is_strict_mode(),
        )
        iteration = options.iteration or 1

        cache_key = ResultCache.generate_key(request.cache_params())
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Cache hit for backend '%s' (%d chars)", backend_id, len(text))
            return RefinementResult(
                refined_text=cached,
                template_used=request.template_id,
                iteration=iteration,
                backend_id=backend_id,
                cached=True,
            )

        logger.debug("Loading prompt template '%s'", request.template_id)
        system_template = await cancellation.guard(
            self._templates.load_template(request.template_id, strict=request.strict)
        )
        cancellation.raise_if_cancelled()

        logger.info(
            "Calling backend '%s' (iteration=%d, template=%s, %d chars)",
            backend_id, iteration, request.template_id, len(text),
        )
        try:
            refined = await self._call_backend(request, system_template, options, cancellation)
        except CircuitOpenError as exc:
            return await self._recover(exc, text, cancellation, options, attempted | {backend_id})

        self._cache.set(cache_key, refined)

        validation = None
        if self._validator is not None and options.validate_output:
            validation = self._validator.validate(refined, request.strict)
            if not validation.valid:
                logger.warning(
                    "Refined text failed validation: score=%d issues=%d",
                    validation.score, len(validation.issues),
                )

        logger.info("Refinement completed with backend '%s'", backend_id)
        return RefinementResult(
            refined_text=refined,
            template_used=request.template_id,
            iteration=iteration,
            validation=validation,
            backend_id=backend_id,
        )

    async def _call_backend(
        self,
        request: RefinementRequest,
        system_template: str,
        options: RefinementOptions,
        cancellation: CancellationToken,
    ) -> str:
        backend = self._backends.get(request.backend_id)
        breaker = self._breakers.get(request.backend_id)
        backend_options = BackendOptions(
            strict=request.strict,
            temperature=options.temperature,
            model=request.model_id,
        )

        async def attempt() -> str:
            try:
                return await cancellation.guard(backend.refine(request.text, system_template, backend_options))
            except PromptRefinerError:
                raise
            except Exception as exc:
                raise BackendFailureError(request.backend_id, str(exc) or type(exc).__name__) from exc

        return await breaker.execute(lambda: with_retry(attempt, self._policy, cancellation))

    async def _recover(
        self,
        error: CircuitOpenError,
        text: str,
        cancellation: CancellationToken,
        options: RefinementOptions,
        attempted: frozenset[str],
    ) -> RefinementResult:
        logger.warning("Circuit open for backend '%s' (state=%s)", error.backend_id, error.state)
        if self._on_circuit_open is None:
            raise error

        action = await self._on_circuit_open(error)
        if action is RecoveryAction.USE_FALLBACK:
            self._config.set_active_backend_id(self._fallback_backend_id)
            logger.info("Switched to fallback backend '%s'", self._fallback_backend_id)
        elif action is not RecoveryAction.SWITCH_BACKEND:
            raise error

        next_backend = self._backends.resolve_active_id()
        if next_backend in attempted:
            logger.warning("Backend '%s' already attempted, not re-invoking", next_backend)
            raise error
        return await self._refine(text, cancellation, options, attempted)


# ── Composition root ────────────────────────────────────────────────────


def build_orchestrator(
    settings: Settings | None = None,
    on_circuit_open: CircuitOpenHandler | None = None,
) -> RefinementOrchestrator:
    """Wire a ``RefinementOrchestrator`` from *settings* (env-loaded by default)."""
    settings = settings or Settings()
    config = SettingsConfigProvider(settings)
    return RefinementOrchestrator(
        config=config,
        backends=BackendRegistry(config, default_backend_factories(settings)),
        breakers=CircuitBreakerRegistry(
            failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
            reset_timeout=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            half_open_max=settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
        ),
        cache=ResultCache(max_size=settings.CACHE_MAX_SIZE, ttl=settings.CACHE_TTL_SECONDS),
        templates=TemplateRegistry(settings.TEMPLATES_CONFIG_PATH),
        policy=RetryPolicy.from_settings(settings),
        validator=OutputValidator(),
        max_text_length=settings.MAX_TEXT_LENGTH,
        fallback_backend_id=settings.FALLBACK_BACKEND,
        on_circuit_open=on_circuit_open,
    )
