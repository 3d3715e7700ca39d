from __future__ import annotations

from orchestrator.specialists.base import SpecialistAgent


class CommitterAgent(SpecialistAgent):
    role = "committer"
    system_prompt = "You write concise Conventional Commits messages. Reply with the message only."
