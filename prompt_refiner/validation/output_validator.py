"""Heuristic quality checks for refined text.

Scores a refined prompt 0–100 by looking for the expected section headers,
conversational filler, a wrapping code fence, line count and actionable
language.  A result is valid when it carries no error-level issue and the
score is at least ``PASSING_SCORE``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from prompt_refiner.models.schemas import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

PASSING_SCORE = 70
MIN_OUTPUT_CHARS = 50
MIN_OUTPUT_LINES = 3
MAX_OUTPUT_LINES = 100


@dataclass(frozen=True)
class ExpectedSection:
    name: str
    required: bool
    aliases: tuple[str, ...]


EXPECTED_SECTIONS: tuple[ExpectedSection, ...] = (
    ExpectedSection("Objective", True, ("objective", "goal", "task")),
    ExpectedSection("Context", False, ("context", "background", "situation")),
    ExpectedSection("Constraints", False, ("constraints", "requirements", "rules")),
    ExpectedSection("Scope", False, ("scope", "limits", "boundaries")),
    ExpectedSection("Expected Output", True, ("expected output", "output", "deliverable", "result")),
)

_FILLER_PATTERNS = (
    re.compile(r"^(sure|okay|alright|great|perfect),?\s*", re.IGNORECASE),
    re.compile(r"here('s| is) (the|your) (refined|improved|optimized|better) (prompt|version)", re.IGNORECASE),
    re.compile(r"i('ve| have) (refined|improved|optimized)", re.IGNORECASE),
    re.compile(r"let me (refine|improve|optimize)", re.IGNORECASE),
)

# [Section], ## Section, Section:
_SECTION_PATTERNS = (
    re.compile(r"^\[([^\]]+)\]"),
    re.compile(r"^#{1,3}\s+(.+)$"),
    re.compile(r"^([A-Z][A-Za-z\s]+):"),
)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")

ACTIONABLE_VERBS = ("create", "build", "implement", "develop", "design", "write", "analyze", "generate")

_ISSUE_ICONS = {"error": "[x]", "warning": "[!]", "info": "[i]"}


class OutputValidator:
    """Scores refined prompts.  Stateless; one instance can be shared."""

    def validate(self, output: str, strict: bool = False) -> ValidationResult:
        """Validate *output*.  In strict mode a missing required section is an error."""
        issues: list[ValidationIssue] = []
        suggestions: list[str] = []

        if not output or not output.strip():
            issues.append(ValidationIssue(type="error", message="Output is empty"))
            return ValidationResult(valid=False, score=0, issues=issues, suggestions=suggestions)

        score = 100

        if len(output) < MIN_OUTPUT_CHARS:
            issues.append(ValidationIssue(
                type="warning",
                message="Output seems too short to be a complete refined prompt",
            ))
            score -= 20

        # ── Sections ────────────────────────────────────────────────
        found = [s.lower() for s in self._find_sections(output)]
        for expected in EXPECTED_SECTIONS:
            present = any(alias in section for section in found for alias in expected.aliases)
            if present:
                continue
            if expected.required:
                issues.append(ValidationIssue(
                    type="error" if strict else "warning",
                    message=f"Missing required section: {expected.name}",
                    section=expected.name,
                ))
                score -= 30 if strict else 15
            else:
                suggestions.append(f"Consider adding {expected.name} section for clarity")
                score -= 5

        # ── Filler / formatting ─────────────────────────────────────
        if any(p.search(output) for p in _FILLER_PATTERNS):
            issues.append(ValidationIssue(
                type="warning",
                message="Output contains conversational filler that should be removed",
            ))
            score -= 10

        stripped = output.strip()
        if _CODE_BLOCK.search(output) and stripped.startswith("```") and stripped.endswith("```"):
            issues.append(ValidationIssue(
                type="warning",
                message="Output is wrapped in markdown code block - this may not be desired",
            ))
            score -= 15

        line_count = len(output.split("\n"))
        if line_count < MIN_OUTPUT_LINES:
            issues.append(ValidationIssue(
                type="warning",
                message="Output is very short - may lack sufficient detail",
            ))
            score -= 10
        elif line_count > MAX_OUTPUT_LINES:
            suggestions.append("Consider if the prompt can be more concise")
            score -= 5

        lowered = output.lower()
        if not any(verb in lowered for verb in ACTIONABLE_VERBS):
            suggestions.append("Consider using more actionable verbs (create, build, implement, etc.)")
            score -= 5

        score = max(0, min(100, score))
        valid = not any(i.type == "error" for i in issues) and score >= PASSING_SCORE

        logger.debug(
            "Output validated: valid=%s score=%d issues=%d suggestions=%d",
            valid, score, len(issues), len(suggestions),
        )
        return ValidationResult(valid=valid, score=score, issues=issues, suggestions=suggestions)

    def is_valid_quick(self, output: str) -> bool:
        if not output or len(output.strip()) < MIN_OUTPUT_CHARS:
            return False
        return self.validate(output, strict=False).valid

    @staticmethod
    def format_result(result: ValidationResult) -> str:
        """Render *result* as plain text."""
        lines = [f"Validation Score: {result.score}/100", ""]
        if result.issues:
            lines.append("Issues:")
            lines.extend(f"{_ISSUE_ICONS[i.type]} {i.message}" for i in result.issues)
            lines.append("")
        if result.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"- {s}" for s in result.suggestions)
        return "\n".join(lines) + "\n"

    @staticmethod
    def _find_sections(output: str) -> list[str]:
        sections: list[str] = []
        for line in output.split("\n"):
            line = line.strip()
            for pattern in _SECTION_PATTERNS:
                match = pattern.match(line)
                if match:
                    sections.append(match.group(1).strip())
                    break
        return sections
