"""Shared fakes for prompt-refiner unit tests."""

from __future__ import annotations

import asyncio

import pytest

from prompt_refiner.backends.base import BackendOptions, RefineBackend
from prompt_refiner.backends.registry import BackendRegistry
from prompt_refiner.orchestrator import RefinementOrchestrator
from prompt_refiner.resilience.cache import ResultCache
from prompt_refiner.resilience.circuit_breaker import CircuitBreakerRegistry
from prompt_refiner.resilience.retry import RetryPolicy


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConfig:
    def __init__(self, backend_id: str = "a", model_id: str = "m1", strict: bool = True) -> None:
        self.backend_id = backend_id
        self.model_id = model_id
        self.strict = strict

    def get_active_backend_id(self) -> str:
        return self.backend_id

    def set_active_backend_id(self, backend_id: str) -> None:
        self.backend_id = backend_id

    def get_model_id(self) -> str:
        return self.model_id

    def is_strict_mode(self) -> bool:
        return self.strict


class StaticTemplates:
    """Template source returning a fixed body and recording requests."""

    def __init__(self, body: str = "SYSTEM TEMPLATE", error: Exception | None = None) -> None:
        self.body = body
        self.error = error
        self.requests: list[tuple[str | None, bool]] = []

    async def load_template(self, template_id: str | None = None, *, strict: bool) -> str:
        self.requests.append((template_id, strict))
        if self.error is not None:
            raise self.error
        return self.body


class ScriptedBackend(RefineBackend):
    """Backend replaying a script of results and exceptions.

    Once the script is exhausted, the last entry repeats.  A string entry
    is returned, an exception entry is raised.  ``block`` makes every call
    wait until cancelled.
    """

    def __init__(self, backend_id: str, script: list | None = None, block: bool = False) -> None:
        self.backend_id = backend_id
        self.name = backend_id
        self.script = list(script or [])
        self.block = block
        self.calls: list[tuple[str, str, BackendOptions]] = []
        self.started = asyncio.Event()
        self.cancelled = False
        self.closed = False

    async def refine(self, user_text: str, system_template: str, options: BackendOptions) -> str:
        self.calls.append((user_text, system_template, options))
        self.started.set()
        if self.block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        outcome = self.script[min(len(self.calls), len(self.script)) - 1] if self.script else f"[refined] {user_text}"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_config() -> FakeConfig:
    return FakeConfig()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def build(fake_config, fast_policy, clock):
    """Factory building an orchestrator around the given backends."""

    def _build(*backends: RefineBackend, templates=None, **kwargs) -> RefinementOrchestrator:
        registry = BackendRegistry(fake_config, {b.backend_id: (lambda b=b: b) for b in backends})
        return RefinementOrchestrator(
            config=fake_config,
            backends=registry,
            breakers=kwargs.pop("breakers", CircuitBreakerRegistry(clock=clock)),
            cache=kwargs.pop("cache", ResultCache(clock=clock)),
            templates=templates or StaticTemplates(),
            policy=kwargs.pop("policy", fast_policy),
            **kwargs,
        )

    return _build


@pytest.fixture
def scripted_backend() -> type[ScriptedBackend]:
    return ScriptedBackend


@pytest.fixture
def static_templates() -> type[StaticTemplates]:
    return StaticTemplates
