"""Structured errors for the refinement layer.

Every failure that reaches a caller is a ``PromptRefinerError`` subclass
carrying a machine-readable ``kind`` and a ``retryable`` flag, so recovery
decisions never depend on parsing our own messages.  Failures raised by
external backends keep their original shape until the orchestrator wraps
them in ``BackendFailureError``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from pydantic import BaseModel


class ErrorKind(str, enum.Enum):
    """Tag carried by every ``PromptRefinerError``."""

    INVALID_INPUT = "invalid_input"
    CANCELLED = "cancelled"
    BACKEND_FAILURE = "backend_failure"
    CIRCUIT_OPEN = "circuit_open"
    TEMPLATE_LOAD_FAILURE = "template_load_failure"


class RecoveryAction(str, enum.Enum):
    """Choices offered to the caller when a backend's circuit is open."""

    SWITCH_BACKEND = "switch_backend"
    USE_FALLBACK = "use_fallback"
    DISMISS = "dismiss"


class PromptRefinerError(Exception):
    """Base exception for all prompt-refiner errors.

    ``retryable`` is ``False`` for local failures.  ``None`` means the
    error does not know and the retry executor falls back to matching the
    message against its retryable patterns.
    """

    kind: ErrorKind = ErrorKind.BACKEND_FAILURE
    retryable: bool | None = False


class InvalidInputError(PromptRefinerError):
    """Raised when the text to refine or the call options are invalid.

    ``errors`` lists ``{"field": ..., "message": ...}`` entries when the
    failure came from field validation.
    """

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class RefinementCancelledError(PromptRefinerError):
    """Raised when the caller's cancellation token fires."""

    kind = ErrorKind.CANCELLED

    def __init__(self, detail: str = "Operation cancelled") -> None:
        super().__init__(detail)


class TemplateLoadError(PromptRefinerError):
    """Raised when the system template cannot be loaded."""

    kind = ErrorKind.TEMPLATE_LOAD_FAILURE

    def __init__(self, template_id: str, detail: str = "") -> None:
        self.template_id = template_id
        self.detail = detail
        msg = f"Could not load prompt template '{template_id}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class BackendFailureError(PromptRefinerError):
    """Raised when a backend call fails.

    Attributes:
        backend_id: Identifier of the failing backend.
        detail:     Human-readable failure description.
        retryable:  ``True`` / ``False`` when the backend knows whether the
                    failure is transient, ``None`` to classify by message.
    """

    kind = ErrorKind.BACKEND_FAILURE

    def __init__(self, backend_id: str, detail: str = "", retryable: bool | None = None) -> None:
        self.backend_id = backend_id
        self.detail = detail
        self.retryable = retryable
        msg = f"Backend '{backend_id}' failed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class CircuitOpenError(PromptRefinerError):
    """Raised when a call is rejected because a backend's circuit is open.

    Attributes:
        backend_id:       Backend whose breaker rejected the call.
        state:            Breaker state observed at rejection (``open`` or
                          ``half_open`` once the trial budget is spent).
        retry_after:      Seconds until the breaker will admit a trial call.
        recovery_actions: Actions the caller can offer the user.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, backend_id: str, state: str, retry_after: float) -> None:
        self.backend_id = backend_id
        self.state = state
        self.retry_after = max(0.0, retry_after)
        self.recovery_actions = (RecoveryAction.SWITCH_BACKEND, RecoveryAction.USE_FALLBACK)
        super().__init__(
            f"Backend '{backend_id}' is temporarily unavailable (circuit {state}), "
            f"retry after {self.retry_after:.1f}s"
        )


# ── Message classification ─────────────────────────────────────────────


class ErrorType(str, enum.Enum):
    """Coarse classification of arbitrary failure messages."""

    NETWORK = "NETWORK"
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    INVALID_INPUT = "INVALID_INPUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorInfo:
    """User-facing description of a classified failure."""

    type: ErrorType
    user_message: str
    should_retry: bool
    action: str | None = None


# Checked in order; the first rule with a matching needle wins.
_CLASSIFICATION_RULES: tuple[tuple[tuple[str, ...], ErrorInfo], ...] = (
    (
        ("fetch", "network", "connection", "econnrefused", "enotfound"),
        ErrorInfo(
            ErrorType.NETWORK,
            "Network error. Please check your internet connection and try again.",
            should_retry=True,
            action="Retry",
        ),
    ),
    (
        ("401", "403", "unauthorized", "invalid api key", "authentication", "api key is required"),
        ErrorInfo(
            ErrorType.AUTHENTICATION,
            "Authentication failed. Your API key may be invalid or expired.",
            should_retry=False,
            action="Set API Key",
        ),
    ),
    (
        ("429", "rate limit", "too many requests"),
        ErrorInfo(
            ErrorType.RATE_LIMIT,
            "Rate limit exceeded. Please wait a moment and try again, or switch to a different model.",
            should_retry=True,
            action="Switch Model",
        ),
    ),
    (
        ("timeout", "etimedout", "timed out"),
        ErrorInfo(
            ErrorType.TIMEOUT,
            "Request timed out. The server is taking too long to respond.",
            should_retry=True,
            action="Retry",
        ),
    ),
    (
        ("invalid", "bad request", "400"),
        ErrorInfo(
            ErrorType.INVALID_INPUT,
            "Invalid input. Please check your text and try again.",
            should_retry=False,
        ),
    ),
)


def classify_error(exc: BaseException) -> ErrorInfo:
    """Map an arbitrary failure to an ``ErrorInfo`` by inspecting its message."""
    message = str(exc).lower()
    for needles, info in _CLASSIFICATION_RULES:
        if any(needle in message for needle in needles):
            return info
    if "provider" in message or "backend" in message or "template" in message:
        return ErrorInfo(
            ErrorType.PROVIDER_ERROR,
            f"Backend error: {exc}",
            should_retry=False,
            action="View Logs",
        )
    return ErrorInfo(
        ErrorType.UNKNOWN,
        "An unexpected error occurred. Please try again.",
        should_retry=False,
        action="View Logs",
    )


# ── Structured response ────────────────────────────────────────────────


class StructuredErrorResponse(BaseModel):
    """Serializable error outcome handed to presentation layers.

    No stack traces; ``backend_id`` and ``action`` are set when the
    failure suggests a concrete recovery step.
    """

    error: str
    code: str
    request_id: str
    backend_id: str | None = None
    action: str | None = None

    @classmethod
    def from_exception(cls, exc: Exception, request_id: str) -> StructuredErrorResponse:
        """Create from an exception, mapping to machine-readable codes."""
        if isinstance(exc, CircuitOpenError):
            return cls(
                error=str(exc),
                code="CIRCUIT_OPEN",
                request_id=request_id,
                backend_id=exc.backend_id,
                action=RecoveryAction.SWITCH_BACKEND.value,
            )
        if isinstance(exc, BackendFailureError):
            info = classify_error(exc)
            return cls(
                error=str(exc),
                code="BACKEND_FAILURE",
                request_id=request_id,
                backend_id=exc.backend_id,
                action=info.action,
            )
        if isinstance(exc, InvalidInputError):
            return cls(error=str(exc), code="INVALID_INPUT", request_id=request_id)
        if isinstance(exc, RefinementCancelledError):
            return cls(error=str(exc), code="CANCELLED", request_id=request_id)
        if isinstance(exc, TemplateLoadError):
            return cls(error=str(exc), code="TEMPLATE_LOAD_FAILURE", request_id=request_id)
        if isinstance(exc, PromptRefinerError):
            return cls(error=str(exc), code="REFINER_ERROR", request_id=request_id)
        # Unhandled: never expose internal details
        info = classify_error(exc)
        return cls(
            error=info.user_message,
            code=info.type.value,
            request_id=request_id,
            action=info.action,
        )
