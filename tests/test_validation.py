import asyncio
from pathlib import Path

from orchestrator.validation import (
    LintResult,
    TestRunResult,
    TypeCheckResult,
    ValidationReport,
    ValidationRunner,
    parse_lint_output,
    parse_test_output,
    parse_type_check_output,
)


def test_parse_pytest_summary() -> None:
    result = parse_test_output("===== 3 passed, 1 failed, 2 skipped in 0.42s =====", False)

    assert (result.total, result.passed, result.failed, result.skipped) == (6, 3, 1, 2)
    assert result.duration_seconds == 0.42
    assert result.success is False


def test_parse_vitest_summary() -> None:
    result = parse_test_output(" Test Files  2 passed (2)\n      Tests  5 passed (6)", True)

    assert (result.total, result.passed, result.failed) == (6, 5, 1)


def test_parse_type_check_output() -> None:
    assert parse_type_check_output("Found 2 errors in 1 file", False).error_count == 2
    assert parse_type_check_output("Success: no issues found", True).error_count == 0
    assert parse_type_check_output("crashed", False).error_count == 1
    tsc = parse_type_check_output("src/a.ts(1,1): error TS2322: bad\nsrc/b.ts: error TS1005", False)
    assert tsc.error_count == 2


def test_parse_lint_output() -> None:
    ruff = parse_lint_output("a.py:1:1: F401 unused import\nFound 3 errors.", False)
    assert ruff.error_count == 3

    eslint = parse_lint_output("✖ 4 problems (1 error, 3 warnings)", False)
    assert (eslint.error_count, eslint.warning_count) == (1, 3)

    bare = parse_lint_output("a.py:1:1: E501 line too long\nb.py:2:3: F841 unused", False)
    assert bare.error_count == 2

    assert parse_lint_output("All checks passed!", True).error_count == 0


def test_validation_report_flags_each_check() -> None:
    report = ValidationReport(
        tests=TestRunResult(success=True, total=2, passed=2),
        type_check=TypeCheckResult(success=True),
        lint=LintResult(success=False, error_count=1, output="a.py:1:1: F401"),
    )

    assert report.passed is False
    assert "Lint errors: 1" in report.details()
    assert "Lint output:\na.py:1:1: F401" in report.failure_details()
    results = report.to_test_results()
    assert results.passed is False
    assert results.lint is False
    assert results.passed_count == 2


def test_run_command_skips_empty_command(tmp_path: Path) -> None:
    result = asyncio.run(ValidationRunner(tmp_path).run_command("  "))

    assert result.skipped is True
    assert result.success is True


def test_run_command_executes_without_shell(tmp_path: Path) -> None:
    result = asyncio.run(ValidationRunner(tmp_path).run_command("echo hello"))

    assert result.success is True
    assert result.used_shell is False
    assert result.output == "hello"


def test_run_command_uses_shell_for_operators(tmp_path: Path) -> None:
    result = asyncio.run(ValidationRunner(tmp_path).run_command("echo first && exit 3"))

    assert result.used_shell is True
    assert result.exit_code == 3
    assert result.output == "first"


def test_run_command_reports_missing_executable(tmp_path: Path) -> None:
    result = asyncio.run(ValidationRunner(tmp_path).run_command("orchestrator-no-such-tool"))

    assert result.exit_code == 127
    assert "could not be started" in result.output


def test_run_command_times_out(tmp_path: Path) -> None:
    runner = ValidationRunner(tmp_path, timeout_seconds=0.2)

    result = asyncio.run(runner.run_command("sleep 5"))

    assert result.exit_code == 124
    assert "timed out" in result.output


def test_run_all_with_disabled_checks_passes(tmp_path: Path) -> None:
    report = asyncio.run(ValidationRunner(tmp_path).run_all())

    assert report.passed is True
    assert report.tests.total == 0


def test_run_tests_parses_command_output(tmp_path: Path) -> None:
    runner = ValidationRunner(tmp_path, test_command="echo '4 passed in 0.10s'")

    result = asyncio.run(runner.run_tests())

    assert result.success is True
    assert result.passed == 4
    assert result.duration_seconds == 0.1
