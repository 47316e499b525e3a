"""Tests for TemplateRegistry — YAML loading, validation and content lookup."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from prompt_refiner.core.config import Settings
from prompt_refiner.core.errors import TemplateLoadError
from prompt_refiner.templates import TemplateRegistry


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "templates.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    (tmp_path / "default.md").write_text("DEFAULT BODY", encoding="utf-8")
    (tmp_path / "strict.md").write_text("STRICT BODY", encoding="utf-8")
    _write(
        tmp_path,
        """
        templates:
          - id: default
            name: Default
            description: General use
            file: default.md
          - id: strict
            name: Strict
            description: Strict format
            file: strict.md
          - id: coding
            name: Code Assistant
            description: Coding prompts
            category: coding
            content: CODING BODY
          - id: broken
            name: Broken
            description: Points at a missing file
            category: custom
            file: missing.md
        """,
    )
    return tmp_path


class TestLoading:
    def test_loads_definitions(self, config_dir):
        registry = TemplateRegistry(config_dir / "templates.yaml")
        assert registry.template_count == 4
        assert registry.template_ids() == {"default", "strict", "coding", "broken"}
        coding = registry.get("coding")
        assert coding.category == "coding"
        assert coding.content == "CODING BODY"
        assert registry.get("default").path == (config_dir / "default.md").resolve()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TemplateRegistry(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid YAML"):
            TemplateRegistry(_write(tmp_path, "templates: [unclosed"))

    def test_missing_top_level_key(self, tmp_path):
        with pytest.raises(ValueError, match="top-level 'templates'"):
            TemplateRegistry(_write(tmp_path, "other: []"))

    def test_duplicate_ids(self, tmp_path):
        path = _write(
            tmp_path,
            """
            templates:
              - {id: default, name: A, description: a, content: x}
              - {id: default, name: B, description: b, content: y}
            """,
        )
        with pytest.raises(ValueError, match="Duplicate template id 'default'"):
            TemplateRegistry(path)

    def test_content_and_file_are_exclusive(self, tmp_path):
        path = _write(
            tmp_path,
            """
            templates:
              - {id: default, name: A, description: a, content: x, file: a.md}
            """,
        )
        with pytest.raises(ValueError, match="exactly one of 'content' or 'file'"):
            TemplateRegistry(path)

    def test_unknown_category(self, tmp_path):
        path = _write(
            tmp_path,
            """
            templates:
              - {id: default, name: A, description: a, content: x, category: poetry}
            """,
        )
        with pytest.raises(ValueError, match="unknown category"):
            TemplateRegistry(path)

    def test_system_templates_required(self, tmp_path):
        path = _write(
            tmp_path,
            """
            templates:
              - {id: default, name: A, description: a, content: x}
            """,
        )
        with pytest.raises(ValueError, match="'strict' must be defined"):
            TemplateRegistry(path)


class TestLoadTemplate:
    async def test_default_and_strict_follow_mode(self, config_dir):
        registry = TemplateRegistry(config_dir / "templates.yaml")
        assert await registry.load_template(strict=False) == "DEFAULT BODY"
        assert await registry.load_template(strict=True) == "STRICT BODY"
        assert await registry.load_template("default", strict=True) == "STRICT BODY"
        assert await registry.load_template("strict", strict=False) == "DEFAULT BODY"

    async def test_custom_template_content(self, config_dir):
        registry = TemplateRegistry(config_dir / "templates.yaml")
        assert await registry.load_template("coding", strict=True) == "CODING BODY"

    async def test_unknown_id_uses_system_template(self, config_dir):
        registry = TemplateRegistry(config_dir / "templates.yaml")
        assert await registry.load_template("nope", strict=False) == "DEFAULT BODY"

    async def test_unreadable_file_raises_template_load_error(self, config_dir):
        registry = TemplateRegistry(config_dir / "templates.yaml")
        with pytest.raises(TemplateLoadError) as exc_info:
            await registry.load_template("broken", strict=False)
        assert exc_info.value.template_id == "broken"

    async def test_non_utf8_file_raises_template_load_error(self, tmp_path):
        (tmp_path / "default.md").write_text("DEFAULT BODY", encoding="utf-8")
        (tmp_path / "latin1.md").write_bytes(b"\xff\xfe\xfa caf\xe9")
        path = _write(
            tmp_path,
            """
            templates:
              - {id: default, name: A, description: a, file: default.md}
              - {id: strict, name: S, description: s, content: STRICT BODY}
              - {id: legacy, name: L, description: l, file: latin1.md}
            """,
        )
        registry = TemplateRegistry(path)
        with pytest.raises(TemplateLoadError) as exc_info:
            await registry.load_template("legacy", strict=False)
        assert exc_info.value.template_id == "legacy"
        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)


class TestShippedTemplates:
    async def test_shipped_config_loads(self):
        registry = TemplateRegistry(Settings().TEMPLATES_CONFIG_PATH)
        assert {"default", "strict", "coding", "writing", "analysis"} <= registry.template_ids()
        strict_body = await registry.load_template(strict=True)
        assert "[Expected Output]" in strict_body
        assert "[Objective]" in await registry.load_template(strict=False)
