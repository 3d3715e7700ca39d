from orchestrator.specialists.base import SpecialistAgent, SpecialistResponse
from orchestrator.specialists.coder import CoderAgent
from orchestrator.specialists.committer import CommitterAgent
from orchestrator.specialists.planner import PlannerAgent
from orchestrator.specialists.reviewer import ReviewerAgent

__all__ = [
    "CoderAgent",
    "CommitterAgent",
    "PlannerAgent",
    "ReviewerAgent",
    "SpecialistAgent",
    "SpecialistResponse",
]
