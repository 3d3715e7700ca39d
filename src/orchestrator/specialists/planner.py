from __future__ import annotations

from orchestrator.specialists.base import SpecialistAgent


class PlannerAgent(SpecialistAgent):
    role = "planner"
    system_prompt = """
You are the Planner/Architect specialist.
Analyze requirements, list the files to touch, split the work into phases,
and call out risks with mitigations.
You produce plans, not code.
""".strip()
