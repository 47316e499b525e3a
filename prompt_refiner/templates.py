"""Prompt template registry.

Loads template definitions from a YAML config file.  Each entry carries
either inline ``content`` or a ``file`` path relative to the YAML file.
The ``default`` and ``strict`` entries are the system templates used when
no specific template is requested; which one is served depends on the
strict-mode flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from prompt_refiner.core.errors import TemplateLoadError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_ID = "default"
STRICT_TEMPLATE_ID = "strict"

VALID_CATEGORIES = frozenset({"general", "coding", "writing", "analysis", "custom"})


# ── Data class ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TemplateDefinition:
    """Immutable definition of a single prompt template.

    Attributes:
        id:          Template identifier (e.g. ``coding``).
        name:        Human-readable name.
        description: One-line summary.
        category:    One of ``VALID_CATEGORIES``.
        content:     Inline template body, or ``None`` when *path* is set.
        path:        Absolute path of the template file, or ``None``.
    """

    id: str
    name: str
    description: str
    category: str
    content: str | None = None
    path: Path | None = None


# ── Registry ────────────────────────────────────────────────────────────


class TemplateRegistry:
    """Loads template definitions from ``templates.yaml``.

    Args:
        config_path: Path to the YAML file with the ``templates:`` list.

    Raises:
        FileNotFoundError: If the YAML file does not exist.
        ValueError: If the YAML is invalid, missing required keys,
                    declares both or neither of ``content``/``file``,
                    or has duplicates.
    """

    def __init__(self, config_path: str | Path) -> None:
        self._templates: dict[str, TemplateDefinition] = {}
        self._load(Path(config_path))

    # ── Loading ─────────────────────────────────────────────────────

    def _load(self, path: Path) -> None:
        if not path.exists():
            raise FileNotFoundError(f"Template config not found: {path}")

        raw = path.read_text(encoding="utf-8")
        try:
            data: Any = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

        if not isinstance(data, dict) or "templates" not in data:
            raise ValueError(f"YAML must contain a top-level 'templates' key in {path}")

        entries = data["templates"]
        if not entries:
            raise ValueError(f"No templates defined in {path}")

        for item in entries:
            self._register(item, path)

        for required in (DEFAULT_TEMPLATE_ID, STRICT_TEMPLATE_ID):
            if required not in self._templates:
                raise ValueError(f"Template '{required}' must be defined in {path}")

    def _register(self, item: dict[str, Any], path: Path) -> None:
        template_id = item.get("id")
        if not template_id:
            raise ValueError(f"Template entry missing 'id' in {path}")

        if template_id in self._templates:
            raise ValueError(f"Duplicate template id '{template_id}' in {path}")

        for key in ("name", "description"):
            if not item.get(key):
                raise ValueError(f"Template '{template_id}' missing '{key}' in {path}")

        category = item.get("category", "general")
        if category not in VALID_CATEGORIES:
            raise ValueError(
                f"Template '{template_id}' has unknown category '{category}' in {path}. "
                f"Valid categories: {sorted(VALID_CATEGORIES)}"
            )

        content = item.get("content")
        file_name = item.get("file")
        if bool(content) == bool(file_name):
            raise ValueError(f"Template '{template_id}' must define exactly one of 'content' or 'file' in {path}")

        self._templates[template_id] = TemplateDefinition(
            id=template_id,
            name=item["name"],
            description=item["description"],
            category=category,
            content=content,
            path=(path.parent / file_name).resolve() if file_name else None,
        )

    # ── Access ──────────────────────────────────────────────────────

    def get(self, template_id: str) -> TemplateDefinition | None:
        """Return the ``TemplateDefinition`` for *template_id*, or ``None``."""
        return self._templates.get(template_id)

    def list_all(self) -> list[TemplateDefinition]:
        return list(self._templates.values())

    @property
    def template_count(self) -> int:
        return len(self._templates)

    def template_ids(self) -> set[str]:
        return set(self._templates.keys())

    # ── Content ─────────────────────────────────────────────────────

    async def load_template(self, template_id: str | None = None, *, strict: bool) -> str:
        """Return the system template text for a refinement.

        A custom *template_id* serves that template.  ``None``, ``default``,
        ``strict`` and unknown ids serve the strict or default system
        template according to *strict*.

        Raises:
            TemplateLoadError: If the template file cannot be read or is not
                valid UTF-8.
        """
        definition = None
        if template_id and template_id not in (DEFAULT_TEMPLATE_ID, STRICT_TEMPLATE_ID):
            definition = self._templates.get(template_id)
            if definition is None:
                logger.warning("Template '%s' not found, using system template", template_id)

        if definition is None:
            definition = self._templates[STRICT_TEMPLATE_ID if strict else DEFAULT_TEMPLATE_ID]

        if definition.content is not None:
            return definition.content
        return await self._read(definition)

    async def _read(self, definition: TemplateDefinition) -> str:
        try:
            async with aiofiles.open(definition.path, encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to load template '%s' from %s: %s", definition.id, definition.path, exc)
            raise TemplateLoadError(definition.id, "Could not load prompt template. Please check installation.") from exc
