from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from orchestrator.backends import (
    AnthropicBackend,
    ClaudeCliBackend,
    CompletionBackend,
    ResilientBackend,
    RetryPolicy,
)
from orchestrator.config import BackendName, OrchestratorConfig, load_config, save_config
from orchestrator.engine import WorkflowEngine, WorkflowInProgressError
from orchestrator.events import WorkflowEvent
from orchestrator.git import GitClient
from orchestrator.models import WorkflowSummary
from orchestrator.prompts import PromptLibrary, PromptTemplateError
from orchestrator.skills import SkillExecutor
from orchestrator.specialists import CoderAgent, CommitterAgent, PlannerAgent, ReviewerAgent
from orchestrator.stages import StageExecutor, render_plan
from orchestrator.validation import ValidationRunner
from orchestrator.workspace import Workspace

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "orchestrator.toml"


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config_path: Path
    config: OrchestratorConfig
    engine: WorkflowEngine
    skills: SkillExecutor
    validator: ValidationRunner


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _build_single_backend(
    backend_name: BackendName, config: OrchestratorConfig, repo_root: Path
) -> CompletionBackend:
    if backend_name == "anthropic":
        return AnthropicBackend()
    return ClaudeCliBackend(binary=config.backend.claude_binary, working_directory=repo_root)


def _log_backend_event(event: dict[str, Any]) -> None:
    if event.get("event") == "backend_attempt_failed":
        logger.warning(
            "Backend %s attempt %s failed: %s",
            event.get("backend"),
            event.get("attempt"),
            event.get("error"),
        )
    else:
        logger.info("Backend event: %s", event)


def _build_backend(config: OrchestratorConfig, repo_root: Path) -> CompletionBackend:
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.backend.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=config.backend.primary,
        primary_backend=_build_single_backend(config.backend.primary, config, repo_root),
        fallback_name=config.backend.fallback,
        fallback_backend=_build_single_backend(config.backend.fallback, config, repo_root),
        retry_policy=policy,
        event_hook=_log_backend_event,
    )


def _load_runtime(repo_root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    backend = _build_backend(config, repo_root)
    prompts_dir = config.project.prompts_dir.strip()
    prompts = PromptLibrary(_resolve_config_path(repo_root, prompts_dir) if prompts_dir else None)
    validator = ValidationRunner(
        repo_root,
        test_command=config.project.test_command,
        type_check_command=config.project.type_check_command,
        lint_command=config.project.lint_command,
    )
    stages = StageExecutor(
        planner=PlannerAgent(backend, config.agents.planner),
        coder=CoderAgent(backend, config.agents.coder),
        reviewer=ReviewerAgent(backend, config.agents.reviewer),
        validator=validator,
        workspace=Workspace(repo_root),
        prompts=prompts,
        max_healing_attempts=max(1, int(config.workflow.max_healing_attempts)),
    )
    skills = SkillExecutor(
        git=GitClient(repo_root),
        committer=CommitterAgent(backend, config.agents.committer),
        prompts=prompts,
        validator=validator,
    )
    engine = WorkflowEngine(stages, skills=skills, config=config.workflow)
    return Runtime(
        repo_root=repo_root,
        config_path=config_path,
        config=config,
        engine=engine,
        skills=skills,
        validator=validator,
    )


def _echo_event(event: WorkflowEvent) -> None:
    tag = event.role or event.skill
    label = f"{event.type} ({tag})" if tag else event.type
    detail = ""
    if "error" in event.data and event.data["error"]:
        detail = f": {event.data['error']}"
    elif "attempts" in event.data:
        detail = f": {event.data['attempts']} attempt(s)"
    click.echo(f"[{event.phase}] {label}{detail}")


class ApprovalPrompt:
    """Asks on the terminal whether a proposed plan may be implemented."""

    def __init__(self, engine: WorkflowEngine) -> None:
        self.engine = engine
        self.aborted = False

    async def __call__(self, event: WorkflowEvent) -> None:
        if event.type != "approval:requested":
            return
        request = event.data["request"]
        click.echo("")
        click.echo(render_plan(request.plan))
        click.echo("")
        try:
            approved = await asyncio.to_thread(click.confirm, "Approve this plan?", default=True)
            feedback: str | None = None
            if not approved:
                feedback = await asyncio.to_thread(
                    click.prompt, "Reason for rejection", default="", show_default=False
                )
        except (click.Abort, EOFError):
            # stdin closed before an answer.
            self.aborted = True
            self.engine.cancel()
            return
        self.engine.submit_approval(approved, feedback or None)


def _summary_payload(summary: WorkflowSummary) -> dict[str, Any]:
    return {
        "id": summary.id,
        "status": summary.status,
        "started_at": summary.started_at.isoformat(),
        "duration_seconds": round(summary.duration_seconds, 3),
        "steps": dict(summary.steps),
        "error": summary.error,
    }


@click.group()
def cli() -> None:
    """Plan, implement and review changes with AI agents."""


@cli.command("init")
@click.option("--backend", type=click.Choice(["claude", "anthropic"]), default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def init_command(backend: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = load_config(config_path)
    config.project.name = config.project.name if config_path.exists() else repo_root.name
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
    save_config(config_path, config)

    click.echo(f"Initialized orchestrator in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.primary}")


@cli.command("run")
@click.argument("request")
@click.option("--auto-approve", is_flag=True, default=False, help="Skip the approval prompt.")
@click.option("--auto-commit", is_flag=True, default=False, help="Commit approved changes.")
@click.option("--max-healing-attempts", type=click.IntRange(min=1), default=None)
@click.option("--debug", is_flag=True, default=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the summary as JSON.")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def run_command(
    request: str,
    auto_approve: bool,
    auto_commit: bool,
    max_healing_attempts: int | None,
    debug: bool,
    as_json: bool,
    config_value: str,
) -> None:
    repo_root = Path.cwd().resolve()
    runtime = _load_runtime(repo_root, _resolve_config_path(repo_root, config_value))
    workflow = runtime.config.workflow
    workflow.auto_approve = workflow.auto_approve or auto_approve
    workflow.auto_commit = workflow.auto_commit or auto_commit
    workflow.debug = workflow.debug or debug
    if max_healing_attempts is not None:
        workflow.max_healing_attempts = max_healing_attempts
        runtime.engine.stages.max_healing_attempts = max_healing_attempts
    _configure_logging(workflow.debug)

    engine = runtime.engine
    engine.on(_echo_event)
    prompt: ApprovalPrompt | None = None
    if not workflow.auto_approve:
        prompt = ApprovalPrompt(engine)
        engine.on(prompt)

    try:
        summary = asyncio.run(engine.start(request))
    except (WorkflowInProgressError, PromptTemplateError) as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(_summary_payload(summary), ensure_ascii=False, indent=2))
    else:
        click.echo(f"Workflow: {summary.id}")
        click.echo(f"Status: {summary.status}")
        for step, status in summary.steps.items():
            click.echo(f"  {step}: {status}")
        click.echo(f"Duration: {summary.duration_seconds:.1f}s")
    if prompt is not None and prompt.aborted:
        raise click.ClickException("Approval aborted; workflow cancelled.")
    if summary.status == "failed":
        raise click.ClickException(f"Workflow failed: {summary.error}")


@cli.command("skill")
@click.argument("skill_name", type=click.Choice(["commit", "test"]))
@click.option("--message-context", default="", help="Work context for the commit message.")
@click.option("--debug", is_flag=True, default=False)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def skill_command(skill_name: str, message_context: str, debug: bool, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    runtime = _load_runtime(repo_root, _resolve_config_path(repo_root, config_value))
    _configure_logging(debug or runtime.config.workflow.debug)

    try:
        result = asyncio.run(runtime.skills.execute(skill_name, message_context))
    except PromptTemplateError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(result.message)
    commit_hash = getattr(result, "commit_hash", None)
    if commit_hash:
        click.echo(f"Commit: {commit_hash}")
    for step in result.next_steps:
        click.echo(f"Next: {step}")
    if not result.success:
        raise click.ClickException(result.error or f"Skill {skill_name} failed")


@cli.command("backend")
@click.argument("backend_name", type=click.Choice(["claude", "anthropic"]))
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def backend_command(backend_name: str, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = load_config(config_path)
    config.backend.primary = backend_name  # type: ignore[assignment]
    save_config(config_path, config)
    click.echo(f"Primary backend set to {backend_name}")
