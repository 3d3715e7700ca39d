from __future__ import annotations

import secrets
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Literal

WorkflowStatus = Literal[
    "idle",
    "planning",
    "awaiting_approval",
    "implementing",
    "reviewing",
    "committing",
    "completed",
    "failed",
    "cancelled",
]
WorkflowPhase = Literal["init", "plan", "approve", "implement", "review", "commit", "complete"]
StepStatus = Literal["pending", "completed", "failed", "skipped"]
ApprovalStatus = Literal["pending", "approved", "rejected", "needs_revision"]
ChangeKind = Literal["create", "modify", "delete"]
NextStep = Literal["planner", "coder", "reviewer", "complete", "user_intervention"]
Impact = Literal["high", "medium", "low"]
Verdict = Literal["pass", "warning", "fail"]
SecurityVerdict = Literal["safe", "warning", "vulnerable", "not_applicable"]
ReviewDecision = Literal["approved", "conditional", "rejected"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})
DEFAULT_REJECTION_MESSAGE = "Rejected by user."


class InvalidApprovalTransition(ValueError):
    """Raised when a plan's approval status would move out of a decided state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move plan approval from '{current}' to '{target}'.")
        self.current = current
        self.target = target


@dataclass(frozen=True, slots=True)
class AffectedFile:
    path: str
    change_kind: ChangeKind = "modify"
    description: str = ""


@dataclass(frozen=True, slots=True)
class PlanTask:
    id: str
    description: str
    completed: bool = False
    file: str | None = None


@dataclass(frozen=True, slots=True)
class PlanPhase:
    number: int
    title: str
    tasks: tuple[PlanTask, ...] = ()


@dataclass(frozen=True, slots=True)
class Risk:
    description: str
    impact: Impact = "medium"
    mitigation: str = ""


@dataclass(frozen=True, slots=True)
class PlanResult:
    success: bool
    message: str
    title: str
    objective: str
    affected_files: tuple[AffectedFile, ...] = ()
    phases: tuple[PlanPhase, ...] = ()
    risks: tuple[Risk, ...] = ()
    approval_status: ApprovalStatus = "pending"
    rejection_reason: str | None = None
    error: str | None = None
    next_step: NextStep | None = None
    role: Literal["planner"] = "planner"


@dataclass(frozen=True, slots=True)
class FileChange:
    path: str
    change_kind: ChangeKind = "modify"
    summary: str = ""
    lines_added: int = 0
    lines_removed: int = 0


@dataclass(frozen=True, slots=True)
class TestResults:
    __test__ = False

    passed: bool
    total: int = 0
    passed_count: int = 0
    failed_count: int = 0
    type_check: bool = True
    lint: bool = True
    coverage: float | None = None
    details: str = ""


@dataclass(frozen=True, slots=True)
class ImplementationResult:
    success: bool
    message: str
    files: tuple[FileChange, ...] = ()
    test_results: TestResults = field(default_factory=lambda: TestResults(passed=False))
    healing_attempts: int = 1
    error: str | None = None
    next_step: NextStep | None = None
    role: Literal["coder"] = "coder"


@dataclass(frozen=True, slots=True)
class ReviewSummary:
    quality: Verdict = "pass"
    security: Verdict = "pass"
    performance: Verdict = "pass"
    test_coverage: Verdict = "pass"

    @classmethod
    def failing(cls) -> ReviewSummary:
        return cls(quality="fail", security="fail", performance="fail", test_coverage="fail")


@dataclass(frozen=True, slots=True)
class ReviewIssue:
    file: str
    description: str
    line: int | None = None
    recommendation: str | None = None


@dataclass(frozen=True, slots=True)
class SecurityCheck:
    sql_injection: SecurityVerdict = "not_applicable"
    xss: SecurityVerdict = "not_applicable"
    csrf: SecurityVerdict = "not_applicable"
    authentication: SecurityVerdict = "not_applicable"
    sensitive_data: SecurityVerdict = "not_applicable"


@dataclass(frozen=True, slots=True)
class ReviewResult:
    success: bool
    message: str
    score: int = 0
    summary: ReviewSummary = field(default_factory=ReviewSummary.failing)
    positives: tuple[str, ...] = ()
    critical_issues: tuple[ReviewIssue, ...] = ()
    suggestions: tuple[ReviewIssue, ...] = ()
    security_check: SecurityCheck = field(default_factory=SecurityCheck)
    decision: ReviewDecision = "rejected"
    conditions: tuple[str, ...] = ()
    error: str | None = None
    next_step: NextStep | None = None
    role: Literal["reviewer"] = "reviewer"


RoleResult = PlanResult | ImplementationResult | ReviewResult


@dataclass(slots=True)
class SkillResult:
    skill: str
    success: bool
    message: str
    error: str | None = None
    next_steps: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CommitResult(SkillResult):
    commit_hash: str | None = None
    commit_message: str | None = None
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0


@dataclass(slots=True)
class TestSkillResult(SkillResult):
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    workflow_id: str
    plan: PlanResult
    requested_at: datetime


@dataclass(frozen=True, slots=True)
class ApprovalResponse:
    workflow_id: str
    approved: bool
    feedback: str | None
    responded_at: datetime


def new_workflow_id() -> str:
    millis = int(datetime.now(UTC).timestamp() * 1000)
    return f"wf-{millis}-{secrets.token_hex(4)[:7]}"


@dataclass(slots=True)
class WorkflowContext:
    id: str
    request: str
    status: WorkflowStatus = "idle"
    current_phase: WorkflowPhase = "init"
    plan: PlanResult | None = None
    implementation: ImplementationResult | None = None
    review: ReviewResult | None = None
    skill_results: dict[str, SkillResult] = field(default_factory=dict)
    skipped_phases: set[str] = field(default_factory=set)
    failed_phases: set[str] = field(default_factory=set)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class WorkflowSummary:
    id: str
    status: WorkflowStatus
    started_at: datetime
    duration_seconds: float
    steps: dict[str, StepStatus]
    error: str | None = None


def _transition(plan: PlanResult, target: ApprovalStatus) -> None:
    if plan.approval_status not in ("pending", target):
        raise InvalidApprovalTransition(plan.approval_status, target)


def approve_plan(plan: PlanResult) -> PlanResult:
    _transition(plan, "approved")
    return replace(plan, approval_status="approved")


def reject_plan(plan: PlanResult, reason: str | None = None) -> PlanResult:
    _transition(plan, "rejected")
    return replace(
        plan,
        approval_status="rejected",
        message=reason or DEFAULT_REJECTION_MESSAGE,
        rejection_reason=reason,
    )


def request_revision(plan: PlanResult, feedback: str) -> PlanResult:
    _transition(plan, "needs_revision")
    return replace(plan, approval_status="needs_revision", message=feedback)
