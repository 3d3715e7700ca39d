from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from orchestrator.models import WorkflowPhase

logger = logging.getLogger(__name__)

EventType = Literal[
    "workflow:started",
    "workflow:completed",
    "workflow:failed",
    "workflow:cancelled",
    "agent:started",
    "agent:completed",
    "agent:failed",
    "skill:started",
    "skill:completed",
    "skill:failed",
    "approval:requested",
    "approval:received",
    "healing:succeeded",
    "healing:failed",
]


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    type: EventType
    workflow_id: str
    phase: WorkflowPhase
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    role: str | None = None
    skill: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[WorkflowEvent], Awaitable[None] | None]


class ListenerRegistry:
    """Ordered fan-out of workflow events.

    Delivery is synchronous and in registration order. A listener that
    raises is logged and skipped. A listener returning an awaitable gets it
    scheduled on the running loop; failures of that task are logged too.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Future[Any]] = set()

    def add(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: WorkflowEvent) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
            except Exception:
                logger.exception("Workflow listener failed on %s", event.type)
                continue
            if inspect.isawaitable(outcome):
                self._schedule(outcome, event)

    def _schedule(self, outcome: Awaitable[Any], event: WorkflowEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
            future = asyncio.ensure_future(outcome, loop=loop)
        except RuntimeError:
            logger.warning("Dropping async listener result for %s: no running loop", event.type)
            if inspect.iscoroutine(outcome):
                outcome.close()
            return
        self._pending.add(future)

        def _done(task: asyncio.Future[Any]) -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Async workflow listener failed on %s", event.type, exc_info=exc
                )

        future.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled async listener work to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
