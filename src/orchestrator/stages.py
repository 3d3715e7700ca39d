from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from orchestrator.extraction import extract_implementation, extract_plan, extract_review
from orchestrator.models import (
    FileChange,
    ImplementationResult,
    PlanResult,
    ReviewResult,
)
from orchestrator.prompts import PromptLibrary
from orchestrator.specialists import CoderAgent, PlannerAgent, ReviewerAgent
from orchestrator.validation import ValidationReport, ValidationRunner
from orchestrator.workspace import Workspace

logger = logging.getLogger(__name__)

NO_PREVIOUS_FAILURE = "None. This is the first attempt."


class StagePreconditionError(RuntimeError):
    """Raised when a stage is asked to run without its required inputs."""


class PlanMissingError(StagePreconditionError):
    def __init__(self) -> None:
        super().__init__("Coder requires an approved plan.")


class PlanNotApprovedError(StagePreconditionError):
    def __init__(self, approval_status: str) -> None:
        super().__init__(
            f"Plan must be approved before execution (current status: {approval_status})."
        )
        self.approval_status = approval_status


class ImplementationMissingError(StagePreconditionError):
    def __init__(self) -> None:
        super().__init__("Reviewer requires an implementation result.")


def render_plan(plan: PlanResult) -> str:
    lines = [f"## Plan: {plan.title}", "", "### Objective", plan.objective, ""]
    if plan.affected_files:
        lines.append("### Affected Files")
        for item in plan.affected_files:
            lines.append(f"- `{item.path}` ({item.change_kind}): {item.description}")
        lines.append("")
    if plan.phases:
        lines.append("### Phases")
        for phase in plan.phases:
            lines.append(f"{phase.number}. **{phase.title}**")
            lines.extend(f"   - {task.description}" for task in phase.tasks)
        lines.append("")
    if plan.risks:
        lines.append("### Risks")
        for risk in plan.risks:
            lines.append(f"- **{risk.impact}**: {risk.description} → {risk.mitigation}")
    return "\n".join(lines).strip()


def render_changes(files: tuple[FileChange, ...]) -> str:
    if not files:
        return "No files changed."
    return "\n".join(
        f"- `{item.path}` ({item.change_kind}, +{item.lines_added}/-{item.lines_removed}):"
        f" {item.summary}"
        for item in files
    )


class StageExecutor:
    """Runs one role per call: prompt, generate, validate, extract."""

    def __init__(
        self,
        *,
        planner: PlannerAgent,
        coder: CoderAgent,
        reviewer: ReviewerAgent,
        validator: ValidationRunner,
        workspace: Workspace,
        prompts: PromptLibrary,
        max_healing_attempts: int = 3,
    ) -> None:
        if max_healing_attempts < 1:
            raise ValueError("max_healing_attempts must be at least 1")
        self.planner = planner
        self.coder = coder
        self.reviewer = reviewer
        self.validator = validator
        self.workspace = workspace
        self.prompts = prompts
        self.max_healing_attempts = max_healing_attempts

    async def run_planner(
        self, request: str, project_context: dict[str, Any] | None = None
    ) -> PlanResult:
        prompt = self.prompts.build_agent_prompt(
            "planner",
            {
                "request": request,
                "project_context": project_context or "No additional context.",
                "project_structure": self.workspace.directory_tree(),
            },
        )
        response = await self.planner.run(prompt)
        plan = extract_plan(response.content, request)
        logger.info(
            "Planner produced %d phases, %d affected files (success=%s)",
            len(plan.phases),
            len(plan.affected_files),
            plan.success,
        )
        return plan

    async def run_coder(self, request: str, plan: PlanResult | None) -> ImplementationResult:
        if plan is None:
            raise PlanMissingError()
        if plan.approval_status != "approved":
            raise PlanNotApprovedError(plan.approval_status)

        rendered_plan = render_plan(plan)
        affected_paths = [item.path for item in plan.affected_files]
        previous_failure = NO_PREVIOUS_FAILURE
        limit = self.max_healing_attempts
        attempt = 0

        while True:
            attempt += 1
            logger.info("Coder attempt %d/%d", attempt, limit)
            prompt = self.prompts.build_agent_prompt(
                "coder",
                {
                    "request": request,
                    "plan": rendered_plan,
                    "file_contents": self.workspace.read_files(affected_paths)
                    or "No existing files.",
                    "project_structure": self.workspace.directory_tree(),
                    "previous_failure": previous_failure,
                    "attempt": str(attempt),
                    "max_attempts": str(limit),
                },
            )
            response = await self.coder.run(prompt)
            extracted = extract_implementation(response.content)
            # Write first so validation sees this attempt's files.
            written = self.workspace.apply_changes(extracted.file_changes)
            logger.debug("Applied %d of %d file changes", len(written), len(extracted.file_changes))

            report = await self.validator.run_all()
            files = tuple(
                FileChange(
                    path=change.path,
                    change_kind=change.change_kind,
                    summary=change.summary,
                    lines_added=change.lines_added,
                    lines_removed=change.lines_removed,
                )
                for change in extracted.file_changes
            )

            if report.passed:
                return ImplementationResult(
                    success=True,
                    message=extracted.message,
                    files=files,
                    test_results=report.to_test_results(),
                    healing_attempts=attempt,
                    next_step="reviewer",
                )
            if attempt >= limit:
                logger.warning("Validation still failing after %d attempt(s)", attempt)
                return ImplementationResult(
                    success=False,
                    message=extracted.message,
                    files=files,
                    test_results=report.to_test_results(),
                    healing_attempts=attempt,
                    error=f"Validation failed after {attempt} healing attempt(s).",
                    next_step="user_intervention",
                )
            previous_failure = self._failure_summary(attempt, report)

    @staticmethod
    def _failure_summary(attempt: int, report: ValidationReport) -> str:
        return f"Attempt {attempt} failed validation.\n\n{report.failure_details()}"

    async def run_reviewer(
        self,
        request: str,
        plan: PlanResult | None,
        implementation: ImplementationResult | None,
    ) -> ReviewResult:
        if implementation is None:
            raise ImplementationMissingError()

        lint = await self.validator.run_lint()
        prompt = self.prompts.build_agent_prompt(
            "reviewer",
            {
                "request": request,
                "plan": render_plan(plan) if plan else "No plan available.",
                "changed_files": "\n\n".join(
                    part
                    for part in (
                        render_changes(implementation.files),
                        self.workspace.read_files(
                            item.path
                            for item in implementation.files
                            if item.change_kind != "delete"
                        ),
                    )
                    if part
                ),
                "test_results": asdict(implementation.test_results),
                "lint_report": (
                    f"errors: {lint.error_count}, warnings: {lint.warning_count}\n"
                    f"{lint.output[-1000:]}"
                ).strip(),
            },
        )
        response = await self.reviewer.run(prompt)
        review = extract_review(response.content)
        logger.info("Reviewer score %d, decision %s", review.score, review.decision)
        return review
