from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

BackendName = Literal["claude", "anthropic"]


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"
    test_command: str = "pytest -q"
    type_check_command: str = "mypy src"
    lint_command: str = "ruff check src tests"
    prompts_dir: str = ""


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "claude"
    fallback: BackendName = "anthropic"
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 300.0
    claude_binary: str = "claude"


@dataclass(slots=True)
class RoleConfig:
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 4096
    temperature: float = 0.5


def _planner_defaults() -> RoleConfig:
    return RoleConfig(model="claude-opus-4-1", max_tokens=4096, temperature=0.7)


def _coder_defaults() -> RoleConfig:
    return RoleConfig(model="claude-sonnet-4-5", max_tokens=8192, temperature=0.5)


def _reviewer_defaults() -> RoleConfig:
    return RoleConfig(model="claude-sonnet-4-5", max_tokens=4096, temperature=0.3)


def _committer_defaults() -> RoleConfig:
    return RoleConfig(model="claude-sonnet-4-5", max_tokens=500, temperature=0.3)


ROLE_DEFAULTS = {
    "planner": _planner_defaults,
    "coder": _coder_defaults,
    "reviewer": _reviewer_defaults,
    "committer": _committer_defaults,
}


@dataclass(slots=True)
class AgentsConfig:
    planner: RoleConfig = field(default_factory=_planner_defaults)
    coder: RoleConfig = field(default_factory=_coder_defaults)
    reviewer: RoleConfig = field(default_factory=_reviewer_defaults)
    committer: RoleConfig = field(default_factory=_committer_defaults)

    @classmethod
    def from_dict(cls, data: dict) -> AgentsConfig:
        roles: dict[str, RoleConfig] = {}
        for role, factory in ROLE_DEFAULTS.items():
            base = factory()
            overrides = data.get(role, {})
            roles[role] = RoleConfig(
                model=str(overrides.get("model", base.model)),
                max_tokens=int(overrides.get("max_tokens", base.max_tokens)),
                temperature=float(overrides.get("temperature", base.temperature)),
            )
        return cls(**roles)

    def role(self, name: str) -> RoleConfig:
        if name not in ROLE_DEFAULTS:
            raise KeyError(f"Unknown agent role: {name}")
        return getattr(self, name)


@dataclass(slots=True)
class WorkflowConfig:
    name: str = "default"
    auto_approve: bool = False
    auto_commit: bool = False
    max_healing_attempts: int = 3
    debug: bool = False


@dataclass(slots=True)
class OrchestratorConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)

    @classmethod
    def default(cls) -> OrchestratorConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> OrchestratorConfig:
        return cls(
            project=ProjectConfig(**data.get("project", {})),
            backend=BackendConfig(**data.get("backend", {})),
            agents=AgentsConfig.from_dict(data.get("agents", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
        )

    def to_dict(self) -> dict:
        return {
            "project": {
                "name": self.project.name,
                "test_command": self.project.test_command,
                "type_check_command": self.project.type_check_command,
                "lint_command": self.project.lint_command,
                "prompts_dir": self.project.prompts_dir,
            },
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
                "claude_binary": self.backend.claude_binary,
            },
            "agents": {
                role: {
                    "model": self.agents.role(role).model,
                    "max_tokens": self.agents.role(role).max_tokens,
                    "temperature": self.agents.role(role).temperature,
                }
                for role in ROLE_DEFAULTS
            },
            "workflow": {
                "name": self.workflow.name,
                "auto_approve": self.workflow.auto_approve,
                "auto_commit": self.workflow.auto_commit,
                "max_healing_attempts": self.workflow.max_healing_attempts,
                "debug": self.workflow.debug,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: OrchestratorConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ["project", "backend", "agents", "workflow"]:
        values = data[section]
        if section == "agents":
            for role, role_values in values.items():
                lines.append(f"[agents.{role}]")
                for key, value in role_values.items():
                    lines.append(f"{key} = {_toml_value(value)}")
                lines.append("")
            continue
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> OrchestratorConfig:
    if not path.exists():
        return OrchestratorConfig.default()
    return OrchestratorConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: OrchestratorConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
