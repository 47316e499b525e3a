"""Abstract refinement backend interface."""

from __future__ import annotations

import abc
from dataclasses import dataclass


@dataclass(frozen=True)
class BackendOptions:
    """Per-call options forwarded to a backend.

    Attributes:
        strict:      Strict-mode flag from configuration.
        temperature: Sampling temperature, or ``None`` for the backend default.
        model:       Configured model id; backends may substitute their own
                     default when the id belongs to another vendor.
    """

    strict: bool = False
    temperature: float | None = None
    model: str | None = None


class RefineBackend(abc.ABC):
    """Abstract base class for text refinement backends."""

    backend_id: str = ""
    name: str = ""

    @abc.abstractmethod
    async def refine(self, user_text: str, system_template: str, options: BackendOptions) -> str:
        """Refine *user_text* following *system_template*.

        Args:
            user_text:       The raw text supplied by the user.
            system_template: System instructions guiding the model.
            options:         Strict mode, temperature and model selection.

        Returns:
            The refined text.
        """
        ...

    def is_configured(self) -> bool:
        """Whether the backend has what it needs (API key, endpoint, ...)."""
        return True

    async def aclose(self) -> None:
        """Release connection resources held by the backend."""
        return None
