import asyncio
from pathlib import Path

import pytest
from samples import PLAN_MARKDOWN, ScriptedBackend, ScriptedValidator, build_stages

from orchestrator.extraction import extract_plan
from orchestrator.models import FileChange, ImplementationResult, approve_plan, reject_plan
from orchestrator.stages import (
    ImplementationMissingError,
    PlanMissingError,
    PlanNotApprovedError,
    render_changes,
    render_plan,
)


def _approved_plan():
    return approve_plan(extract_plan(PLAN_MARKDOWN, "Add multiply"))


def test_run_planner_renders_prompt_and_extracts_plan(tmp_path: Path) -> None:
    (tmp_path / "calc.py").write_text("def add(a, b):\n    return a + b\n", encoding="utf-8")
    backend = ScriptedBackend()
    stages = build_stages(tmp_path, backend)

    plan = asyncio.run(stages.run_planner("Add multiply", {"language": "python"}))

    assert plan.success is True
    assert plan.title == "Add multiply function"
    prompt = backend.prompts_for("planner")[0]
    assert "Add multiply" in prompt
    assert "calc.py" in prompt
    assert '"language": "python"' in prompt


def test_run_coder_requires_approved_plan(tmp_path: Path) -> None:
    stages = build_stages(tmp_path, ScriptedBackend())
    pending = extract_plan(PLAN_MARKDOWN, "Add multiply")

    with pytest.raises(PlanMissingError):
        asyncio.run(stages.run_coder("Add multiply", None))
    with pytest.raises(PlanNotApprovedError, match="current status: pending"):
        asyncio.run(stages.run_coder("Add multiply", pending))
    with pytest.raises(PlanNotApprovedError, match="current status: rejected"):
        asyncio.run(stages.run_coder("Add multiply", reject_plan(pending)))


def test_run_coder_writes_files_and_passes_first_time(tmp_path: Path) -> None:
    validator = ScriptedValidator(tmp_path)
    stages = build_stages(tmp_path, ScriptedBackend(), validator)

    result = asyncio.run(stages.run_coder("Add multiply", _approved_plan()))

    assert result.success is True
    assert result.healing_attempts == 1
    assert result.next_step == "reviewer"
    assert result.test_results.passed is True
    assert [item.path for item in result.files] == ["calc.py", "test_calc.py"]
    assert "def multiply" in (tmp_path / "calc.py").read_text(encoding="utf-8")
    assert validator.calls == 1


def test_run_coder_heals_after_failed_validation(tmp_path: Path) -> None:
    backend = ScriptedBackend()
    validator = ScriptedValidator(tmp_path, [False, True])
    stages = build_stages(tmp_path, backend, validator)

    result = asyncio.run(stages.run_coder("Add multiply", _approved_plan()))

    assert result.success is True
    assert result.healing_attempts == 2
    prompts = backend.prompts_for("coder")
    assert len(prompts) == 2
    assert "Attempt 1 of 3" in prompts[0]
    assert "first attempt" in prompts[0]
    assert "Attempt 1 failed validation" in prompts[1]
    assert "FAILED test_calc.py::test_multiply" in prompts[1]


def test_run_coder_stops_at_attempt_limit(tmp_path: Path) -> None:
    backend = ScriptedBackend()
    validator = ScriptedValidator(tmp_path, [False, False, False, False])
    stages = build_stages(tmp_path, backend, validator, max_healing_attempts=3)

    result = asyncio.run(stages.run_coder("Add multiply", _approved_plan()))

    assert result.success is False
    assert result.healing_attempts == 3
    assert result.next_step == "user_intervention"
    assert result.error == "Validation failed after 3 healing attempt(s)."
    assert result.test_results.passed is False
    assert len(backend.prompts_for("coder")) == 3
    assert validator.calls == 3


def test_stage_executor_rejects_zero_attempts(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        build_stages(tmp_path, ScriptedBackend(), max_healing_attempts=0)


def test_run_reviewer_requires_implementation(tmp_path: Path) -> None:
    stages = build_stages(tmp_path, ScriptedBackend())

    with pytest.raises(ImplementationMissingError):
        asyncio.run(stages.run_reviewer("Add multiply", _approved_plan(), None))


def test_run_reviewer_includes_changed_file_contents(tmp_path: Path) -> None:
    backend = ScriptedBackend()
    stages = build_stages(tmp_path, backend)
    plan = _approved_plan()
    implementation = asyncio.run(stages.run_coder("Add multiply", plan))

    review = asyncio.run(stages.run_reviewer("Add multiply", plan, implementation))

    assert review.success is True
    assert review.decision == "approved"
    prompt = backend.prompts_for("reviewer")[0]
    assert "=== calc.py ===" in prompt
    assert "return a * b" in prompt
    assert '"passed": true' in prompt


def test_render_helpers() -> None:
    rendered = render_plan(_approved_plan())

    assert rendered.startswith("## Plan: Add multiply function")
    assert "`test_calc.py` (create)" in rendered
    assert "1. **Implement**" in rendered
    assert "**low**: Float inputs lose precision → Document integer use" in rendered
    assert render_changes(()) == "No files changed."
    assert render_changes((FileChange(path="a.py", lines_added=2, summary="x"),)) == (
        "- `a.py` (modify, +2/-0): x"
    )


def test_failed_implementation_is_still_reviewable(tmp_path: Path) -> None:
    stages = build_stages(tmp_path, ScriptedBackend())
    failed = ImplementationResult(success=False, message="broken", error="tests failed")

    review = asyncio.run(stages.run_reviewer("Add multiply", _approved_plan(), failed))

    assert review.success is True
