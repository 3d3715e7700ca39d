"""Workflow engine: plan, approve, implement, review and optionally commit.

One engine instance runs one workflow at a time. Phases run sequentially on
the caller's event loop; the only long wait is the approval gate, which is a
one-shot future resolved by ``submit_approval`` (or released by ``cancel``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from orchestrator.config import WorkflowConfig
from orchestrator.events import EventType, Listener, ListenerRegistry, WorkflowEvent
from orchestrator.models import (
    ApprovalRequest,
    ApprovalResponse,
    ImplementationResult,
    PlanResult,
    ReviewResult,
    RoleResult,
    StepStatus,
    WorkflowContext,
    WorkflowPhase,
    WorkflowStatus,
    WorkflowSummary,
    approve_plan,
    new_workflow_id,
    reject_plan,
)
from orchestrator.skills import SkillExecutor
from orchestrator.stages import StageExecutor

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", PlanResult, ImplementationResult, ReviewResult)

PHASE_SLOTS: dict[str, str] = {"plan": "plan", "implement": "implementation", "review": "review"}


class WorkflowInProgressError(RuntimeError):
    """Raised when ``start`` is called while a run is still in flight."""


class StageFailedError(RuntimeError):
    """Raised when a stage reports ``success=False``."""

    def __init__(self, role: str, message: str) -> None:
        super().__init__(message)
        self.role = role


class _WorkflowHalted(Exception):
    """Unwinds ``start`` after cancellation."""


class WorkflowEngine:
    def __init__(
        self,
        stages: StageExecutor,
        skills: SkillExecutor | None = None,
        config: WorkflowConfig | None = None,
    ) -> None:
        self.stages = stages
        self.skills = skills
        self.config = config or WorkflowConfig()
        self._listeners = ListenerRegistry()
        self._context: WorkflowContext | None = None
        self._approval: asyncio.Future[ApprovalResponse | None] | None = None
        self._active: tuple[str, str] | None = None
        self._running = False

    # Public accessors

    def on(self, listener: Listener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def get_context(self) -> WorkflowContext | None:
        return self._context

    def get_status(self) -> WorkflowStatus:
        return self._context.status if self._context else "idle"

    def get_current_phase(self) -> WorkflowPhase | None:
        return self._context.current_phase if self._context else None

    def get_summary(self) -> WorkflowSummary | None:
        return self._summary(self._context) if self._context else None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def awaiting_approval(self) -> bool:
        return self._approval is not None and not self._approval.done()

    # Control

    async def start(
        self, request: str, project_context: dict[str, Any] | None = None
    ) -> WorkflowSummary:
        if self._running:
            raise WorkflowInProgressError("A workflow is already running on this engine.")

        context = WorkflowContext(id=new_workflow_id(), request=request)
        self._context = context
        self._running = True
        self._emit(context, "workflow:started", data={"request": request})
        try:
            await self._run_phases(context, project_context)
        except _WorkflowHalted:
            logger.info("Workflow %s halted after cancellation", context.id)
        except asyncio.CancelledError:
            self._cancel_context(context, reason="task_cancelled")
            raise
        except Exception as exc:
            if context.status == "cancelled":
                logger.warning("Ignoring failure after cancellation of %s: %s", context.id, exc)
            else:
                context.status = "failed"
                context.error = str(exc) or exc.__class__.__name__
                context.completed_at = datetime.now(UTC)
                logger.error("Workflow %s failed: %s", context.id, context.error)
                self._emit(context, "workflow:failed", data={"error": context.error})
        finally:
            self._running = False
            self._approval = None
            self._active = None
        return self._summary(context)

    def submit_approval(self, approved: bool, feedback: str | None = None) -> None:
        context = self._context
        if context is None or not self.awaiting_approval:
            logger.debug("submit_approval ignored: no approval outstanding")
            return
        assert self._approval is not None
        self._approval.set_result(
            ApprovalResponse(
                workflow_id=context.id,
                approved=approved,
                feedback=feedback,
                responded_at=datetime.now(UTC),
            )
        )

    def cancel(self) -> None:
        if self._context is None or self._context.is_terminal:
            return
        self._cancel_context(self._context, reason="manual")

    def reset(self) -> None:
        if self._running and self._context is not None:
            self._cancel_context(self._context, reason="reset")
        self._approval = None
        self._active = None
        self._context = None

    # Phases

    async def _run_phases(
        self, context: WorkflowContext, project_context: dict[str, Any] | None
    ) -> None:
        self._ensure_active(context)
        plan = await self._run_agent(
            context,
            role="planner",
            status="planning",
            phase="plan",
            call=lambda: self.stages.run_planner(context.request, project_context),
        )

        self._ensure_active(context)
        if self.config.auto_approve:
            context.plan = approve_plan(plan)
        else:
            await self._await_approval(context, plan)

        assert context.plan is not None
        if context.plan.approval_status == "rejected":
            context.status = "cancelled"
            context.completed_at = datetime.now(UTC)
            self._emit(
                context,
                "workflow:cancelled",
                data={"reason": "rejected", "feedback": context.plan.rejection_reason},
            )
            return

        self._ensure_active(context)
        approved_plan = context.plan
        implementation = await self._run_agent(
            context,
            role="coder",
            status="implementing",
            phase="implement",
            call=lambda: self.stages.run_coder(context.request, approved_plan),
        )

        self._ensure_active(context)
        review = await self._run_agent(
            context,
            role="reviewer",
            status="reviewing",
            phase="review",
            call=lambda: self.stages.run_reviewer(context.request, approved_plan, implementation),
        )

        self._ensure_active(context)
        if self.config.auto_commit and review.decision == "approved" and self.skills is not None:
            await self._run_commit(context)
        else:
            context.skipped_phases.add("commit")

        self._ensure_active(context)
        context.status = "completed"
        context.current_phase = "complete"
        context.completed_at = datetime.now(UTC)
        self._emit(context, "workflow:completed", data={})

    async def _run_agent(
        self,
        context: WorkflowContext,
        *,
        role: str,
        status: WorkflowStatus,
        phase: WorkflowPhase,
        call: Callable[[], Awaitable[ResultT]],
    ) -> ResultT:
        context.status = status
        context.current_phase = phase
        self._active = ("agent", role)
        self._emit(context, "agent:started", role=role)
        try:
            result = await call()
        except Exception as exc:
            if self._active == ("agent", role):
                self._active = None
                context.failed_phases.add(phase)
                self._emit(context, "agent:failed", role=role, data={"error": str(exc)})
            raise

        if self._active != ("agent", role):
            # cancel() already closed this agent out.
            raise _WorkflowHalted()
        self._active = None
        self._store(context, phase, result)

        if isinstance(result, ImplementationResult):
            self._emit_healing(context, result)

        if not result.success:
            error = result.error or f"{role} stage failed"
            self._emit(context, "agent:failed", role=role, data={"error": error, "result": result})
            raise StageFailedError(role, error)
        self._emit(context, "agent:completed", role=role, data={"result": result})
        return result

    async def _await_approval(self, context: WorkflowContext, plan: PlanResult) -> None:
        context.status = "awaiting_approval"
        context.current_phase = "approve"
        self._approval = asyncio.get_running_loop().create_future()
        # Listeners may call submit_approval synchronously, so the future exists first.
        self._emit(
            context,
            "approval:requested",
            data={
                "request": ApprovalRequest(
                    workflow_id=context.id, plan=plan, requested_at=datetime.now(UTC)
                )
            },
        )
        response = await self._approval
        self._approval = None
        if response is None:
            raise _WorkflowHalted()

        self._emit(context, "approval:received", data={"response": response})
        if response.approved:
            context.plan = approve_plan(plan)
        else:
            context.plan = reject_plan(plan, response.feedback)

    async def _run_commit(self, context: WorkflowContext) -> None:
        assert self.skills is not None
        context.status = "committing"
        context.current_phase = "commit"
        self._active = ("skill", "commit")
        self._emit(context, "skill:started", skill="commit")
        work_context = context.request
        if context.plan is not None:
            work_context = f"{context.plan.title}\n\n{context.request}"
        try:
            result = await self.skills.execute_commit(work_context)
        except Exception as exc:
            if self._active == ("skill", "commit"):
                self._active = None
                context.failed_phases.add("commit")
                self._emit(context, "skill:failed", skill="commit", data={"error": str(exc)})
            raise

        if self._active != ("skill", "commit"):
            raise _WorkflowHalted()
        self._active = None
        context.skill_results["commit"] = result
        if result.success:
            self._emit(context, "skill:completed", skill="commit", data={"result": result})
        else:
            self._emit(
                context,
                "skill:failed",
                skill="commit",
                data={"error": result.error, "result": result},
            )

    # Helpers

    def _ensure_active(self, context: WorkflowContext) -> None:
        if context.status == "cancelled":
            raise _WorkflowHalted()

    def _cancel_context(self, context: WorkflowContext, *, reason: str) -> None:
        if context.is_terminal:
            return
        if self._active is not None:
            kind, name = self._active
            self._active = None
            error = "Cancelled while in progress."
            if kind == "agent":
                context.failed_phases.add(context.current_phase)
                self._emit(context, "agent:failed", role=name, data={"error": error})
            else:
                context.failed_phases.add(name)
                self._emit(context, "skill:failed", skill=name, data={"error": error})
        context.status = "cancelled"
        context.completed_at = datetime.now(UTC)
        self._emit(context, "workflow:cancelled", data={"reason": reason})
        if self.awaiting_approval:
            assert self._approval is not None
            self._approval.set_result(None)

    def _emit_healing(self, context: WorkflowContext, result: ImplementationResult) -> None:
        if result.success and result.healing_attempts > 1:
            self._emit(
                context,
                "healing:succeeded",
                role="coder",
                data={"attempts": result.healing_attempts},
            )
        elif not result.success and result.next_step == "user_intervention":
            self._emit(
                context,
                "healing:failed",
                role="coder",
                data={"attempts": result.healing_attempts, "error": result.error},
            )

    @staticmethod
    def _store(context: WorkflowContext, phase: WorkflowPhase, result: RoleResult) -> None:
        setattr(context, PHASE_SLOTS[phase], result)

    def _emit(
        self,
        context: WorkflowContext,
        event_type: EventType,
        *,
        role: str | None = None,
        skill: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        event = WorkflowEvent(
            type=event_type,
            workflow_id=context.id,
            phase=context.current_phase,
            role=role,
            skill=skill,
            data=data or {},
        )
        logger.debug("[%s] %s %s", context.id, event_type, role or skill or "")
        self._listeners.emit(event)

    def _step_status(self, context: WorkflowContext, phase: str) -> StepStatus:
        if phase == "commit":
            commit = context.skill_results.get("commit")
            if commit is not None:
                return "completed" if commit.success else "failed"
            if "commit" in context.failed_phases:
                return "failed"
            return "skipped" if "commit" in context.skipped_phases else "pending"
        result = getattr(context, PHASE_SLOTS[phase])
        if result is not None:
            return "completed" if result.success else "failed"
        return "failed" if phase in context.failed_phases else "pending"

    def _summary(self, context: WorkflowContext) -> WorkflowSummary:
        finished = context.completed_at or datetime.now(UTC)
        return WorkflowSummary(
            id=context.id,
            status=context.status,
            started_at=context.started_at,
            duration_seconds=max(0.0, (finished - context.started_at).total_seconds()),
            steps={
                phase: self._step_status(context, phase)
                for phase in ("plan", "implement", "review", "commit")
            },
            error=context.error,
        )
