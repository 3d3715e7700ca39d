from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path

from orchestrator.backends.base import (
    BackendExecutionError,
    BackendProcessError,
    CompletionBackend,
    CompletionRequest,
)

logger = logging.getLogger(__name__)

MODEL_ALIASES = ("opus", "sonnet", "haiku")


class ClaudeCliBackend(CompletionBackend):
    """Completion through a locally authenticated ``claude`` CLI session."""

    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    @staticmethod
    def model_alias(model: str) -> str:
        lowered = model.lower()
        for alias in MODEL_ALIASES:
            if alias in lowered:
                return alias
        return model

    def build_command(self, request: CompletionRequest) -> list[str]:
        return [
            self.binary,
            "--print",
            "--model",
            self.model_alias(request.model),
            "--output-format",
            "text",
            "--no-session-persistence",
        ]

    @staticmethod
    def build_prompt(request: CompletionRequest) -> str:
        prompt = ""
        if request.system:
            prompt += f"System: {request.system}\n\n"
        prompt += f"User: {request.prompt}\n\n"
        return f"[Temperature: {request.temperature}]\n\n{prompt}"

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        command = self.build_command(request)
        logger.debug("Starting claude CLI with model %s", command[3])
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise BackendProcessError(
                f"Claude binary not found: {self.binary}",
                backend="claude",
                retriable=False,
            ) from exc

        if process.stdin is None or process.stdout is None:
            raise BackendProcessError(
                "Claude backend did not expose stdio pipes.", backend="claude", retriable=False
            )

        process.stdin.write(self.build_prompt(request).encode("utf-8"))
        await process.stdin.drain()
        process.stdin.close()

        produced = False
        async for raw_line in process.stdout:
            line = raw_line.decode("utf-8", errors="replace")
            if line.strip():
                produced = True
            yield line

        return_code = await process.wait()
        stderr_output = ""
        if process.stderr is not None:
            stderr_output = (await process.stderr.read()).decode("utf-8", errors="replace").strip()
        if return_code != 0:
            raise BackendExecutionError(
                f"Claude backend failed with exit code {return_code}: {stderr_output}",
                backend="claude",
                exit_code=return_code,
                retriable=True,
            )
        if not produced:
            raise BackendExecutionError(
                stderr_output or "No output from Claude CLI",
                backend="claude",
                exit_code=return_code,
                retriable=True,
            )
