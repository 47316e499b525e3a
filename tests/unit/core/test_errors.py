"""Structured error tests — hierarchy, tagging, classification, responses."""

import pytest

from prompt_refiner.core.errors import (
    BackendFailureError,
    CircuitOpenError,
    ErrorKind,
    ErrorType,
    InvalidInputError,
    PromptRefinerError,
    RecoveryAction,
    RefinementCancelledError,
    StructuredErrorResponse,
    TemplateLoadError,
    classify_error,
)

# ── Hierarchy and tags ─────────────────────────────────────────────────


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "exc,kind",
        [
            (InvalidInputError("x"), ErrorKind.INVALID_INPUT),
            (RefinementCancelledError(), ErrorKind.CANCELLED),
            (BackendFailureError("a"), ErrorKind.BACKEND_FAILURE),
            (CircuitOpenError("a", "open", 1.0), ErrorKind.CIRCUIT_OPEN),
            (TemplateLoadError("default"), ErrorKind.TEMPLATE_LOAD_FAILURE),
        ],
    )
    def test_kind_tag(self, exc, kind):
        assert isinstance(exc, PromptRefinerError)
        assert exc.kind is kind

    def test_cancelled_default_message(self):
        assert str(RefinementCancelledError()) == "Operation cancelled"

    def test_backend_failure_message_and_fields(self):
        err = BackendFailureError("groq", "HTTP 503", retryable=True)
        assert str(err) == "Backend 'groq' failed: HTTP 503"
        assert err.backend_id == "groq"
        assert err.retryable is True

    def test_backend_failure_retryable_unknown_by_default(self):
        assert BackendFailureError("groq").retryable is None

    def test_local_errors_are_not_retryable(self):
        assert InvalidInputError("x").retryable is False
        assert CircuitOpenError("a", "open", 1.0).retryable is False

    def test_circuit_open_offers_recovery(self):
        err = CircuitOpenError("openai", "open", 12.0)
        assert err.recovery_actions == (RecoveryAction.SWITCH_BACKEND, RecoveryAction.USE_FALLBACK)
        assert "openai" in str(err)

    def test_circuit_open_retry_after_never_negative(self):
        assert CircuitOpenError("a", "open", -3.0).retry_after == 0.0

    def test_template_load_error_names_template(self):
        err = TemplateLoadError("coding", "file missing")
        assert err.template_id == "coding"
        assert "coding" in str(err)


# ── classify_error ──────────────────────────────────────────────────────


class TestClassifyError:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("fetch failed: ECONNREFUSED", ErrorType.NETWORK),
            ("HTTP 401 Unauthorized", ErrorType.AUTHENTICATION),
            ("Invalid API key provided", ErrorType.AUTHENTICATION),
            ("429 Too Many Requests", ErrorType.RATE_LIMIT),
            ("Request timed out", ErrorType.TIMEOUT),
            ("400 bad request", ErrorType.INVALID_INPUT),
            ("provider returned garbage", ErrorType.PROVIDER_ERROR),
            ("something odd", ErrorType.UNKNOWN),
        ],
    )
    def test_classification(self, message, expected):
        assert classify_error(RuntimeError(message)).type is expected

    def test_retry_hint(self):
        assert classify_error(RuntimeError("rate limit")).should_retry is True
        assert classify_error(RuntimeError("401")).should_retry is False


# ── StructuredErrorResponse ────────────────────────────────────────────


class TestStructuredErrorResponse:
    def test_circuit_open(self):
        resp = StructuredErrorResponse.from_exception(CircuitOpenError("openai", "open", 5.0), "req-1")
        assert resp.code == "CIRCUIT_OPEN"
        assert resp.backend_id == "openai"
        assert resp.action == "switch_backend"

    def test_backend_failure_carries_action(self):
        exc = BackendFailureError("openai", "Rate limit exceeded (HTTP 429)", retryable=True)
        resp = StructuredErrorResponse.from_exception(exc, "req-2")
        assert resp.code == "BACKEND_FAILURE"
        assert resp.backend_id == "openai"
        assert resp.action == "Switch Model"

    @pytest.mark.parametrize(
        "exc,code",
        [
            (InvalidInputError("Prompt cannot be empty"), "INVALID_INPUT"),
            (RefinementCancelledError(), "CANCELLED"),
            (TemplateLoadError("default"), "TEMPLATE_LOAD_FAILURE"),
        ],
    )
    def test_core_codes(self, exc, code):
        resp = StructuredErrorResponse.from_exception(exc, "req-3")
        assert resp.code == code
        assert resp.error == str(exc)

    def test_unhandled_exception_hides_details(self):
        resp = StructuredErrorResponse.from_exception(RuntimeError("secret /etc/path"), "req-4")
        assert resp.code == "UNKNOWN"
        assert "/etc/path" not in resp.error
        assert resp.request_id == "req-4"

    def test_no_stack_trace_in_output(self):
        resp = StructuredErrorResponse.from_exception(ValueError("boom"), "req-5")
        assert "Traceback" not in resp.model_dump_json()
