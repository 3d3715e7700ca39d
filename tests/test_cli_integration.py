import json
from pathlib import Path

from click.testing import CliRunner
from samples import ScriptedBackend, init_git_repo

from orchestrator.cli import cli
from orchestrator.config import load_config, save_config


def _set_safe_commands(config_path: Path, test_command: str = "") -> None:
    config = load_config(config_path)
    config.project.test_command = test_command
    config.project.type_check_command = ""
    config.project.lint_command = ""
    save_config(config_path, config)


def _prepare(tmp_path: Path, monkeypatch, backend: ScriptedBackend | None = None) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    monkeypatch.chdir(repo)
    scripted = backend or ScriptedBackend()
    monkeypatch.setattr("orchestrator.cli._build_backend", lambda config, repo_root: scripted)
    return repo


def test_init_writes_config(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)

    result = CliRunner().invoke(cli, ["init", "--backend", "anthropic"])

    assert result.exit_code == 0
    assert "Backend: anthropic" in result.output
    config = load_config(repo / "orchestrator.toml")
    assert config.project.name == "repo"
    assert config.backend.primary == "anthropic"


def test_run_auto_approve_completes(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    assert runner.invoke(cli, ["init"]).exit_code == 0
    _set_safe_commands(repo / "orchestrator.toml")

    result = runner.invoke(cli, ["run", "Add a multiply function", "--auto-approve"])

    assert result.exit_code == 0, result.output
    assert "[plan] agent:started (planner)" in result.output
    assert "Status: completed" in result.output
    assert "  commit: skipped" in result.output
    assert "return a * b" in (repo / "calc.py").read_text(encoding="utf-8")


def test_run_json_summary(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml")

    result = runner.invoke(cli, ["run", "Add a multiply function", "--auto-approve", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index("{") :])
    assert payload["status"] == "completed"
    assert payload["steps"]["review"] == "completed"
    assert payload["id"].startswith("wf-")


def test_run_interactive_approval(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml")

    result = runner.invoke(cli, ["run", "Add a multiply function"], input="y\n")

    assert result.exit_code == 0, result.output
    assert "## Plan: Add multiply function" in result.output
    assert "Approve this plan?" in result.output
    assert "Status: completed" in result.output


def test_run_interactive_rejection_cancels(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml")

    result = runner.invoke(cli, ["run", "Add a multiply function"], input="n\nout of scope\n")

    assert result.exit_code == 0, result.output
    assert "Status: cancelled" in result.output
    assert "  implement: pending" in result.output
    assert not (repo / "calc.py").exists()


def test_run_closed_stdin_at_approval_cancels(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml")

    result = runner.invoke(cli, ["run", "Add a multiply function"], input="")

    assert result.exit_code == 1
    assert "workflow:cancelled" in result.output
    assert "Status: cancelled" in result.output
    assert "Approval aborted; workflow cancelled." in result.output
    assert not (repo / "calc.py").exists()


def test_run_failure_exits_nonzero(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml", test_command="false")

    result = runner.invoke(
        cli,
        ["run", "Add a multiply function", "--auto-approve", "--max-healing-attempts", "2"],
    )

    assert result.exit_code != 0
    assert "healing:failed (coder): Validation failed after 2 healing attempt(s)." in result.output
    assert "Workflow failed" in result.output


def test_backend_command_updates_primary(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    runner = CliRunner()
    runner.invoke(cli, ["init"])

    result = runner.invoke(cli, ["backend", "anthropic"])

    assert result.exit_code == 0
    assert "Primary backend set to anthropic" in result.output
    assert load_config(repo / "orchestrator.toml").backend.primary == "anthropic"


def test_skill_commit_and_test(tmp_path: Path, monkeypatch) -> None:
    repo = _prepare(tmp_path, monkeypatch)
    init_git_repo(repo)
    runner = CliRunner()
    runner.invoke(cli, ["init"])
    _set_safe_commands(repo / "orchestrator.toml", test_command="echo '2 passed in 0.01s'")

    commit_result = runner.invoke(cli, ["skill", "commit", "--message-context", "Add config"])
    test_result = runner.invoke(cli, ["skill", "test"])
    empty_result = runner.invoke(cli, ["skill", "commit"])

    assert commit_result.exit_code == 0, commit_result.output
    assert "Commit created." in commit_result.output
    assert "Next: git push" in commit_result.output
    assert test_result.exit_code == 0
    assert "All tests passed (2/2)." in test_result.output
    assert empty_result.exit_code != 0
    assert "No changes to commit" in empty_result.output
