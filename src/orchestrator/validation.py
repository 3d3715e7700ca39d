from __future__ import annotations

import asyncio
import logging
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from orchestrator.models import TestResults

logger = logging.getLogger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")
PYTEST_COUNT_PATTERN = re.compile(r"(\d+)\s+(passed|failed|skipped|errors?|xfailed|xpassed)\b")
PYTEST_DURATION_PATTERN = re.compile(r"\bin\s+([\d.]+)s\b")
VITEST_COUNT_PATTERN = re.compile(r"Tests\s+(\d+)\s+passed\s+\((\d+)\)")
MYPY_SUMMARY_PATTERN = re.compile(r"Found\s+(\d+)\s+errors?")
ERROR_LINE_PATTERN = re.compile(r":\d+(?::\d+)?:?\s+error\b|\berror\s+TS\d+", re.IGNORECASE)
ERROR_COUNT_PATTERN = re.compile(r"(\d+)\s+errors?\b", re.IGNORECASE)
WARNING_COUNT_PATTERN = re.compile(r"(\d+)\s+warnings?\b", re.IGNORECASE)
OUTPUT_TAIL_CHARS = 2000


@dataclass(slots=True)
class CommandResult:
    command: str
    exit_code: int
    output: str
    duration_seconds: float = 0.0
    used_shell: bool = False
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(slots=True)
class TestRunResult:
    __test__ = False

    success: bool
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    output: str = ""


@dataclass(slots=True)
class TypeCheckResult:
    success: bool
    error_count: int = 0
    output: str = ""


@dataclass(slots=True)
class LintResult:
    success: bool
    error_count: int = 0
    warning_count: int = 0
    output: str = ""


@dataclass(slots=True)
class ValidationReport:
    tests: TestRunResult
    type_check: TypeCheckResult
    lint: LintResult

    @property
    def passed(self) -> bool:
        return self.tests.success and self.type_check.success and self.lint.success

    def details(self) -> str:
        return "\n".join(
            [
                f"Tests: {self.tests.passed}/{self.tests.total} passed"
                f" ({'ok' if self.tests.success else 'failing'})",
                f"Type errors: {self.type_check.error_count}"
                f" ({'ok' if self.type_check.success else 'failing'})",
                f"Lint errors: {self.lint.error_count}, warnings: {self.lint.warning_count}"
                f" ({'ok' if self.lint.success else 'failing'})",
            ]
        )

    def failure_details(self) -> str:
        parts: list[str] = [self.details()]
        for label, ok, output in (
            ("Test output", self.tests.success, self.tests.output),
            ("Type check output", self.type_check.success, self.type_check.output),
            ("Lint output", self.lint.success, self.lint.output),
        ):
            if not ok and output:
                parts.append(f"{label}:\n{output}")
        return "\n\n".join(parts)

    def to_test_results(self) -> TestResults:
        return TestResults(
            passed=self.passed,
            total=self.tests.total,
            passed_count=self.tests.passed,
            failed_count=self.tests.failed,
            type_check=self.type_check.success,
            lint=self.lint.success,
            details=self.details(),
        )


def parse_test_output(output: str, success: bool) -> TestRunResult:
    vitest = VITEST_COUNT_PATTERN.search(output)
    if vitest:
        passed = int(vitest.group(1))
        failed = max(0, int(vitest.group(2)) - passed)
        skipped = 0
    else:
        counts: dict[str, int] = {}
        for amount, label in PYTEST_COUNT_PATTERN.findall(output):
            key = "error" if label.startswith("error") else label
            counts[key] = int(amount)
        passed = counts.get("passed", 0) + counts.get("xpassed", 0)
        failed = counts.get("failed", 0) + counts.get("error", 0)
        skipped = counts.get("skipped", 0) + counts.get("xfailed", 0)

    duration = PYTEST_DURATION_PATTERN.search(output)
    return TestRunResult(
        success=success,
        total=passed + failed + skipped,
        passed=passed,
        failed=failed,
        skipped=skipped,
        duration_seconds=float(duration.group(1)) if duration else 0.0,
        output=output[-OUTPUT_TAIL_CHARS:],
    )


def parse_type_check_output(output: str, success: bool) -> TypeCheckResult:
    summary = MYPY_SUMMARY_PATTERN.search(output)
    if summary:
        error_count = int(summary.group(1))
    else:
        error_count = sum(1 for line in output.splitlines() if ERROR_LINE_PATTERN.search(line))
    if not success and error_count == 0:
        error_count = 1
    return TypeCheckResult(
        success=success, error_count=error_count, output=output[-OUTPUT_TAIL_CHARS:]
    )


def parse_lint_output(output: str, success: bool) -> LintResult:
    errors = ERROR_COUNT_PATTERN.findall(output)
    warnings = WARNING_COUNT_PATTERN.findall(output)
    error_count = int(errors[-1]) if errors else 0
    if not errors and not success:
        error_count = sum(
            1 for line in output.splitlines() if re.match(r"^\S+:\d+:\d+:", line.strip())
        ) or 1
    return LintResult(
        success=success,
        error_count=error_count,
        warning_count=int(warnings[-1]) if warnings else 0,
        output=output[-OUTPUT_TAIL_CHARS:],
    )


class ValidationRunner:
    """Runs the project's test, type-check and lint commands.

    An empty command disables that check; a disabled check passes.
    """

    def __init__(
        self,
        project_root: Path,
        *,
        test_command: str = "",
        type_check_command: str = "",
        lint_command: str = "",
        timeout_seconds: float = 600.0,
    ) -> None:
        self.project_root = project_root.resolve()
        self.test_command = test_command
        self.type_check_command = type_check_command
        self.lint_command = lint_command
        self.timeout_seconds = timeout_seconds

    async def run_command(self, command: str) -> CommandResult:
        command_text = command.strip()
        if not command_text:
            return CommandResult(command=command, exit_code=0, output="", skipped=True)

        used_shell = bool(SHELL_REQUIRED_PATTERN.search(command_text))
        argv: list[str] = []
        if not used_shell:
            try:
                argv = shlex.split(command_text)
            except ValueError:
                used_shell = True

        started = time.monotonic()
        try:
            if used_shell:
                process = await asyncio.create_subprocess_shell(
                    command_text,
                    cwd=self.project_root,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=self.project_root,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
        except (FileNotFoundError, PermissionError) as exc:
            logger.warning("Validation command could not start: %s (%s)", command_text, exc)
            return CommandResult(
                command=command,
                exit_code=127,
                output=f"Command could not be started: {exc}",
                used_shell=used_shell,
            )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Validation command timed out: %s", command_text)
            return CommandResult(
                command=command,
                exit_code=124,
                output=f"Command timed out after {self.timeout_seconds:.1f}s",
                duration_seconds=time.monotonic() - started,
                used_shell=used_shell,
            )

        output = (stdout or b"").decode("utf-8", errors="replace").strip()
        result = CommandResult(
            command=command,
            exit_code=process.returncode if process.returncode is not None else 1,
            output=output,
            duration_seconds=time.monotonic() - started,
            used_shell=used_shell,
        )
        logger.debug("`%s` exited with %s", command_text, result.exit_code)
        return result

    async def run_tests(self) -> TestRunResult:
        result = await self.run_command(self.test_command)
        parsed = parse_test_output(result.output, result.success)
        if not parsed.duration_seconds:
            parsed.duration_seconds = round(result.duration_seconds, 3)
        return parsed

    async def run_type_check(self) -> TypeCheckResult:
        result = await self.run_command(self.type_check_command)
        return parse_type_check_output(result.output, result.success)

    async def run_lint(self) -> LintResult:
        result = await self.run_command(self.lint_command)
        return parse_lint_output(result.output, result.success)

    async def run_all(self) -> ValidationReport:
        tests = await self.run_tests()
        type_check = await self.run_type_check()
        lint = await self.run_lint()
        report = ValidationReport(tests=tests, type_check=type_check, lint=lint)
        logger.info("Validation %s\n%s", "passed" if report.passed else "failed", report.details())
        return report
