from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic

from orchestrator.backends.base import BackendExecutionError, CompletionBackend, CompletionRequest

logger = logging.getLogger(__name__)


class AnthropicBackend(CompletionBackend):
    """Completion through the Anthropic Messages API with streaming."""

    def __init__(self, client: Any | None = None, api_key: str | None = None) -> None:
        self._client = client
        self._api_key = api_key

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    def build_params(self, request: CompletionRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system:
            params["system"] = request.system
        return params

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        params = self.build_params(request)
        logger.debug("Streaming completion from %s", request.model)
        try:
            async with self.client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.AuthenticationError as exc:
            raise BackendExecutionError(
                f"Anthropic authentication failed: {exc}", backend="anthropic", retriable=False
            ) from exc
        except anthropic.BadRequestError as exc:
            raise BackendExecutionError(
                f"Anthropic rejected the request: {exc}", backend="anthropic", retriable=False
            ) from exc
        except anthropic.APIError as exc:
            raise BackendExecutionError(
                f"Anthropic API error: {exc}", backend="anthropic", retriable=True
            ) from exc
