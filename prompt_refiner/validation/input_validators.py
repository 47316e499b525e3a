"""Input validation and sanitization.

Provides ``sanitize_string()`` for null-byte stripping and Unicode NFC
normalization, ``validate_text_length()`` for the refine entry point, and
``format_validation_errors()`` for the per-field errors attached to
``InvalidInputError`` when call options fail validation.
"""

from __future__ import annotations

import unicodedata
from typing import Any

from prompt_refiner.core.errors import InvalidInputError

MIN_TEXT_LENGTH = 1
MAX_TEXT_LENGTH = 4000


def sanitize_string(value: str) -> str:
    """Strip null bytes and normalize to Unicode NFC.

    Applied as a Pydantic ``field_validator`` on user-supplied text.
    """
    value = value.replace("\x00", "")
    value = unicodedata.normalize("NFC", value)
    return value


def validate_text_length(text: str, max_length: int = MAX_TEXT_LENGTH) -> None:
    """Raise ``InvalidInputError`` unless *text* is non-empty and within *max_length*."""
    if not isinstance(text, str) or len(text.strip()) < MIN_TEXT_LENGTH:
        raise InvalidInputError("Prompt cannot be empty")
    if len(text) > max_length:
        raise InvalidInputError(
            f"Prompt is too long ({len(text)} characters). Maximum allowed is {max_length} characters."
        )


def format_validation_errors(exc: Any) -> list[dict[str, str]]:
    """Convert a Pydantic ``ValidationError`` into a structured list.

    Returns a list of ``{"field": ..., "message": ...}`` dicts.  Never
    includes stack traces or internal paths.
    """
    errors: list[dict[str, str]] = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = ".".join(str(part) for part in loc) if loc else "unknown"
        errors.append({
            "field": field,
            "message": err.get("msg", "Validation error"),
        })
    return errors
