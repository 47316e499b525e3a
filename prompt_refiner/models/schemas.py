"""Request, option and result models for refinement calls.

Reference: refine / re-refine contract, output validation result shape.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from prompt_refiner.validation.input_validators import sanitize_string


class RefinementOptions(BaseModel):
    """Optional knobs for a single ``refine`` call."""

    model_config = ConfigDict(frozen=True)

    template_id: str | None = Field(default=None, max_length=100)
    validate_output: bool = True
    iteration: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class RefinementRequest(BaseModel):
    """Fingerprint of a refinement: everything that determines the result."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    text: str = Field(..., min_length=1)
    backend_id: str
    model_id: str
    template_id: str = "default"
    strict: bool = True

    @field_validator("text", mode="before")
    @classmethod
    def sanitize_text(cls, v: str) -> str:
        if isinstance(v, str):
            return sanitize_string(v)
        return v

    def cache_params(self) -> dict:
        """Named parameters hashed into the result cache key."""
        return {
            "backend_id": self.backend_id,
            "model_id": self.model_id,
            "strict": self.strict,
            "template": self.template_id,
            "text": self.text,
        }


class ValidationIssue(BaseModel):
    """Single problem found in a refined text."""

    type: Literal["error", "warning", "info"]
    message: str
    section: str | None = None


class ValidationResult(BaseModel):
    """Heuristic quality assessment of a refined text."""

    valid: bool
    score: int = Field(..., ge=0, le=100)
    issues: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class RefinementResult(BaseModel):
    """Outcome of a successful ``refine`` call."""

    refined_text: str
    template_used: str
    iteration: int = Field(default=1, ge=1)
    validation: ValidationResult | None = None
    backend_id: str | None = None
    cached: bool = False
