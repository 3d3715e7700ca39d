from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from orchestrator.backends.base import CompletionBackend, CompletionRequest
from orchestrator.config import RoleConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SpecialistResponse:
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class SpecialistAgent:
    role: str = "specialist"
    system_prompt: str = "You are a software specialist."

    def __init__(self, backend: CompletionBackend, role_config: RoleConfig | None = None) -> None:
        self.backend = backend
        self.role_config = role_config or RoleConfig()

    def build_request(self, prompt: str) -> CompletionRequest:
        return CompletionRequest(
            prompt=prompt,
            model=self.role_config.model,
            max_tokens=self.role_config.max_tokens,
            temperature=self.role_config.temperature,
            system=self.system_prompt.strip() or None,
        )

    async def run(self, prompt: str) -> SpecialistResponse:
        request = self.build_request(prompt)
        logger.debug("%s: prompt of %d chars to %s", self.role, len(prompt), request.model)
        content = await self.backend.complete(request)
        logger.debug("%s: response of %d chars", self.role, len(content))
        return SpecialistResponse(
            role=self.role,
            content=content,
            metadata={"model": request.model, "prompt_chars": len(prompt)},
        )
