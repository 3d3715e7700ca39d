from __future__ import annotations

from orchestrator.specialists.base import SpecialistAgent


class CoderAgent(SpecialistAgent):
    role = "coder"
    system_prompt = """
You are the Coder specialist.
Implement the approved plan exactly, emitting complete file contents
under a heading that names each file path.
When a previous attempt failed validation, fix those failures first.
""".strip()
