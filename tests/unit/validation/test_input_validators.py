"""Tests for input sanitization, length validation and error formatting."""

import unicodedata

import pytest
from pydantic import ValidationError

from prompt_refiner.core.errors import InvalidInputError
from prompt_refiner.models.schemas import RefinementOptions, RefinementRequest
from prompt_refiner.validation.input_validators import (
    format_validation_errors,
    sanitize_string,
    validate_text_length,
)


class TestSanitizeString:
    def test_strips_null_bytes(self):
        assert sanitize_string("hello\x00world") == "helloworld"

    def test_normalizes_unicode_nfc(self):
        nfd = "e\u0301"
        assert sanitize_string(nfd) == unicodedata.normalize("NFC", nfd)

    def test_passthrough_clean_string(self):
        assert sanitize_string("clean string") == "clean string"

    def test_request_model_sanitizes_text(self):
        request = RefinementRequest(text="a\x00b", backend_id="mock", model_id="m")
        assert request.text == "ab"


class TestValidateTextLength:
    def test_accepts_normal_text(self):
        validate_text_length("improve my login flow")

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_rejects_empty(self, text):
        with pytest.raises(InvalidInputError, match="Prompt cannot be empty"):
            validate_text_length(text)

    def test_accepts_exact_limit(self):
        validate_text_length("x" * 4000)

    def test_rejects_over_limit_with_length(self):
        with pytest.raises(InvalidInputError, match=r"\(4001 characters\). Maximum allowed is 4000"):
            validate_text_length("x" * 4001)

    def test_custom_limit(self):
        with pytest.raises(InvalidInputError):
            validate_text_length("abcdef", max_length=5)


class TestFormatValidationErrors:
    def test_returns_field_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            RefinementOptions(iteration=0, temperature=5.0)
        result = format_validation_errors(exc_info.value)
        assert {e["field"] for e in result} == {"iteration", "temperature"}
        assert all("message" in e for e in result)

    def test_no_stack_trace_in_output(self):
        with pytest.raises(ValidationError) as exc_info:
            RefinementOptions(iteration=-1)
        for err in format_validation_errors(exc_info.value):
            assert "Traceback" not in err["message"]
