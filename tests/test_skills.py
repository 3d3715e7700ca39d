import asyncio
import subprocess
from pathlib import Path

import pytest
from samples import ScriptedBackend, init_git_repo

from orchestrator.git import GitClient, GitError
from orchestrator.prompts import PromptLibrary
from orchestrator.skills import SkillExecutor, clean_commit_message
from orchestrator.specialists import CommitterAgent
from orchestrator.validation import ValidationRunner


def _executor(repo: Path, backend: ScriptedBackend, test_command: str = "") -> SkillExecutor:
    return SkillExecutor(
        git=GitClient(repo),
        committer=CommitterAgent(backend),
        prompts=PromptLibrary(),
        validator=ValidationRunner(repo, test_command=test_command),
    )


def test_clean_commit_message_strips_fences() -> None:
    assert clean_commit_message("```text\nfix: typo\n```\n") == "fix: typo"
    assert clean_commit_message("  feat: x\n\nbody  ") == "feat: x\n\nbody"


def test_commit_skill_stages_and_commits_changes(tmp_path: Path) -> None:
    init_git_repo(tmp_path)
    (tmp_path / "calc.py").write_text("def multiply(a, b):\n    return a * b\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("seed\nmore\n", encoding="utf-8")
    backend = ScriptedBackend()

    result = asyncio.run(_executor(tmp_path, backend).execute_commit("Add multiply"))

    assert result.success is True
    assert result.commit_message == (
        "feat(calc): add multiply helper\n\nAdds multiply and its tests."
    )
    assert result.files_changed == 2
    assert result.lines_added == 3
    assert result.lines_removed == 0
    assert result.next_steps == ["git push"]
    head = subprocess.run(
        ["git", "log", "-1", "--format=%H %s"],
        cwd=tmp_path,
        check=True,
        text=True,
        capture_output=True,
    ).stdout.strip()
    assert head == f"{result.commit_hash} feat(calc): add multiply helper"
    prompt = backend.prompts_for("committer")[0]
    assert "Add multiply" in prompt
    assert "+def multiply(a, b):" in prompt
    assert GitClient(tmp_path).changed_files() == []


def test_commit_skill_without_changes_fails(tmp_path: Path) -> None:
    init_git_repo(tmp_path)
    backend = ScriptedBackend()

    result = asyncio.run(_executor(tmp_path, backend).execute_commit())

    assert result.success is False
    assert result.message == "No changes to commit."
    assert backend.requests == []


def test_commit_skill_outside_repository_fails(tmp_path: Path) -> None:
    result = asyncio.run(_executor(tmp_path, ScriptedBackend()).execute("commit"))

    assert result.success is False
    assert result.message == "Not a git repository."
    assert "not inside a git work tree" in (result.error or "")


def test_test_skill_reports_counts(tmp_path: Path) -> None:
    executor = _executor(tmp_path, ScriptedBackend(), test_command="echo '5 passed in 0.20s'")

    result = asyncio.run(executor.execute("test"))

    assert result.success is True
    assert (result.total, result.passed, result.failed) == (5, 5, 0)
    assert result.next_steps == ["/commit"]


def test_test_skill_reports_failures(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path, ScriptedBackend(), test_command="echo '1 passed, 2 failed' && false"
    )

    result = asyncio.run(executor.execute_test())

    assert result.success is False
    assert result.failed == 2
    assert result.message == "2 of 3 tests failed."


def test_execute_command_routes_slash_commands(tmp_path: Path) -> None:
    executor = _executor(tmp_path, ScriptedBackend())

    unknown = asyncio.run(executor.execute_command("/deploy"))
    tested = asyncio.run(executor.execute_command(" /test "))

    assert unknown.success is False
    assert unknown.error == "Unknown command: /deploy"
    assert tested.skill == "test"
    assert tested.success is True


def test_execute_rejects_unknown_skill(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unknown skill"):
        asyncio.run(_executor(tmp_path, ScriptedBackend()).execute("deploy"))


def test_git_client_lists_changes(tmp_path: Path) -> None:
    init_git_repo(tmp_path)
    (tmp_path / "new.txt").write_text("x\n", encoding="utf-8")
    git = GitClient(tmp_path)

    assert git.is_repository() is True
    assert [(item.path, item.status) for item in git.changed_files()] == [("new.txt", "??")]
    with pytest.raises(GitError):
        git.commit("nothing staged")
