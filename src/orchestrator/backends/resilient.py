from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from orchestrator.backends.base import (
    BackendExecutionError,
    BackendTimeoutError,
    CompletionBackend,
    CompletionRequest,
)

logger = logging.getLogger(__name__)

BackendEventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_seconds: float = 0.5
    timeout_seconds: float = 300.0


class ResilientBackend(CompletionBackend):
    """Wraps primary/fallback backends with timeout, retry, and failover."""

    def __init__(
        self,
        primary_name: str,
        primary_backend: CompletionBackend,
        fallback_name: str,
        fallback_backend: CompletionBackend,
        retry_policy: RetryPolicy,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.primary_name = primary_name
        self.primary_backend = primary_backend
        self.fallback_name = fallback_name
        self.fallback_backend = fallback_backend
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        logger.debug("Backend event: %s", event)
        if self.event_hook:
            self.event_hook(event)

    async def _collect_chunks(
        self, backend: CompletionBackend, request: CompletionRequest
    ) -> list[str]:
        async def _consume() -> list[str]:
            chunks: list[str] = []
            async for chunk in backend.stream(request):
                chunks.append(chunk)
            return chunks

        try:
            return await asyncio.wait_for(_consume(), timeout=self.retry_policy.timeout_seconds)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Backend request timed out after {self.retry_policy.timeout_seconds:.1f}s",
                retriable=True,
            ) from exc

    async def _execute_attempts(self, request: CompletionRequest) -> list[str]:
        attempts: list[tuple[str, CompletionBackend]] = [(self.primary_name, self.primary_backend)]
        if self.fallback_name != self.primary_name:
            attempts.append((self.fallback_name, self.fallback_backend))

        errors: list[str] = []
        for index, (backend_name, backend) in enumerate(attempts):
            if index > 0:
                self._emit({"event": "backend_failover_start", "backend": backend_name})
            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt > 0:
                    delay = self.retry_policy.backoff_seconds * (2 ** (attempt - 1))
                    self._emit(
                        {
                            "event": "backend_retry",
                            "backend": backend_name,
                            "attempt": attempt,
                            "delay_seconds": delay,
                        }
                    )
                    await asyncio.sleep(delay)
                try:
                    chunks = await self._collect_chunks(backend, request)
                    if backend_name != self.primary_name:
                        self._emit(
                            {
                                "event": "backend_fallback_success",
                                "backend": backend_name,
                                "attempt": attempt,
                            }
                        )
                    return chunks
                except BackendExecutionError as exc:
                    errors.append(f"{backend_name}[{attempt}]: {exc}")
                    self._emit(
                        {
                            "event": "backend_attempt_failed",
                            "backend": backend_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "retriable": exc.retriable,
                        }
                    )
                    if not exc.retriable:
                        break
                except Exception as exc:
                    errors.append(f"{backend_name}[{attempt}]: {exc}")
                    self._emit(
                        {
                            "event": "backend_attempt_failed",
                            "backend": backend_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "retriable": True,
                        }
                    )

        summary = "; ".join(errors[-6:])
        raise BackendExecutionError(
            f"All backend attempts failed for model {request.model}. {summary}",
            retriable=False,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        chunks = await self._execute_attempts(request)
        for chunk in chunks:
            yield chunk
