from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass


class BackendExecutionError(RuntimeError):
    """Raised when a completion backend call fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when backend execution exceeds configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when backend process lifecycle fails."""


@dataclass(slots=True)
class CompletionRequest:
    prompt: str
    model: str
    max_tokens: int = 4096
    temperature: float = 0.5
    system: str | None = None


class CompletionBackend(ABC):
    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Run a completion and stream textual chunks."""

    async def complete(self, request: CompletionRequest) -> str:
        chunks: list[str] = []
        async for chunk in self.stream(request):
            chunks.append(chunk)
        return "".join(chunks).strip()
