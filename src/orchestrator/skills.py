from __future__ import annotations

import logging
from typing import Literal

from orchestrator.backends.base import BackendExecutionError
from orchestrator.git import GitClient, GitError
from orchestrator.models import CommitResult, SkillResult, TestSkillResult
from orchestrator.prompts import PromptLibrary
from orchestrator.specialists import CommitterAgent
from orchestrator.validation import ValidationRunner

logger = logging.getLogger(__name__)

SkillName = Literal["commit", "test"]
SKILL_COMMANDS: dict[str, SkillName] = {"/commit": "commit", "/test": "test"}
MAX_DIFF_CHARS = 20000


def clean_commit_message(raw: str) -> str:
    lines = [line for line in raw.strip().splitlines() if not line.strip().startswith("```")]
    return "\n".join(lines).strip()


class SkillExecutor:
    """Post-processing actions that run after the agents are done."""

    def __init__(
        self,
        *,
        git: GitClient,
        committer: CommitterAgent,
        prompts: PromptLibrary,
        validator: ValidationRunner,
    ) -> None:
        self.git = git
        self.committer = committer
        self.prompts = prompts
        self.validator = validator

    async def execute(self, skill: str, work_context: str = "") -> SkillResult:
        if skill == "commit":
            return await self.execute_commit(work_context)
        if skill == "test":
            return await self.execute_test()
        raise ValueError(f"Unknown skill: {skill}")

    async def execute_command(self, command: str, work_context: str = "") -> SkillResult:
        skill = SKILL_COMMANDS.get(command.strip())
        if skill is None:
            return SkillResult(
                skill=command,
                success=False,
                message=f"Unknown command: {command}",
                error=f"Unknown command: {command}",
            )
        return await self.execute(skill, work_context)

    async def execute_commit(self, work_context: str = "") -> CommitResult:
        if not self.git.is_repository():
            return CommitResult(
                skill="commit",
                success=False,
                message="Not a git repository.",
                error=f"{self.git.repo_root} is not inside a git work tree",
            )
        try:
            changed = self.git.changed_files()
            if not changed:
                return CommitResult(
                    skill="commit",
                    success=False,
                    message="No changes to commit.",
                    error="No changes to commit",
                )

            paths = [item.path for item in changed]
            self.git.add(paths)
            diff = self.git.diff(staged=True)
            stat = self.git.staged_numstat()

            prompt = self.prompts.build_skill_prompt(
                "commit",
                {
                    "git_diff": diff[:MAX_DIFF_CHARS],
                    "changed_files": "\n".join(f"- {path}" for path in paths),
                    "work_context": work_context or "General maintenance",
                },
            )
            response = await self.committer.run(prompt)
            message = clean_commit_message(response.content)
            if not message:
                raise GitError("Commit message generation returned no text.")

            commit_hash = self.git.commit(message)
        except (GitError, BackendExecutionError) as exc:
            logger.error("Commit skill failed: %s", exc)
            return CommitResult(
                skill="commit", success=False, message="Commit failed.", error=str(exc)
            )

        logger.info("Committed %s (%d files)", commit_hash[:8], stat.files)
        return CommitResult(
            skill="commit",
            success=True,
            message="Commit created.",
            commit_hash=commit_hash,
            commit_message=message,
            files_changed=stat.files or len(paths),
            lines_added=stat.added,
            lines_removed=stat.removed,
            next_steps=["git push"],
        )

    async def execute_test(self) -> TestSkillResult:
        result = await self.validator.run_tests()
        if result.success:
            message = f"All tests passed ({result.passed}/{result.total})."
            next_steps = ["/commit"]
        else:
            message = f"{result.failed} of {result.total} tests failed."
            next_steps = []
        return TestSkillResult(
            skill="test",
            success=result.success,
            message=message,
            error=None if result.success else result.output[-500:] or "Test command failed",
            next_steps=next_steps,
            total=result.total,
            passed=result.passed,
            failed=result.failed,
            skipped=result.skipped,
            duration_seconds=result.duration_seconds,
        )
