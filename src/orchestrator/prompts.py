from __future__ import annotations

import json
import logging
import re
from importlib import resources
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AgentType = Literal["planner", "coder", "reviewer"]
SkillType = Literal["commit", "test"]

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptTemplateError(RuntimeError):
    """Raised when a prompt template cannot be loaded."""


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left untouched."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


class PromptLibrary:
    """Loads and caches prompt templates for one engine.

    Templates come from ``prompts_dir`` when given, otherwise from the
    templates bundled in ``orchestrator.templates``.
    """

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self.prompts_dir = prompts_dir
        self._cache: dict[str, str] = {}

    def load_template(self, relative_path: str) -> str:
        if relative_path in self._cache:
            return self._cache[relative_path]
        try:
            if self.prompts_dir is not None:
                content = (self.prompts_dir / relative_path).read_text(encoding="utf-8")
            else:
                content = (
                    resources.files("orchestrator.templates")
                    .joinpath(relative_path)
                    .read_text(encoding="utf-8")
                )
        except (OSError, ModuleNotFoundError) as exc:
            raise PromptTemplateError(
                f"Failed to load prompt template {relative_path}: {exc}"
            ) from exc
        logger.debug("Loaded prompt template %s", relative_path)
        self._cache[relative_path] = content
        return content

    def build_agent_prompt(self, agent: AgentType, variables: dict[str, Any]) -> str:
        return render_template(self.load_template(f"agents/{agent}.md"), variables)

    def build_skill_prompt(self, skill: SkillType, variables: dict[str, Any]) -> str:
        return render_template(self.load_template(f"skills/{skill}.md"), variables)

    def build_custom_prompt(self, relative_path: str, variables: dict[str, Any]) -> str:
        return render_template(self.load_template(relative_path), variables)

    def clear_cache(self) -> None:
        self._cache.clear()

    def invalidate(self, relative_path: str) -> None:
        self._cache.pop(relative_path, None)

    @property
    def cached_templates(self) -> list[str]:
        return sorted(self._cache)
