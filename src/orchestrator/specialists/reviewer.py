from __future__ import annotations

from orchestrator.specialists.base import SpecialistAgent


class ReviewerAgent(SpecialistAgent):
    role = "reviewer"
    system_prompt = """
You are the Reviewer specialist.
Evaluate correctness, security, performance and test coverage.
Be specific: cite file and line for every issue, and end with a decision.
""".strip()
