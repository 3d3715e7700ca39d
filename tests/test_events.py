import asyncio
import logging

import pytest

from orchestrator.events import EventType, ListenerRegistry, WorkflowEvent


def _event(event_type: EventType = "workflow:started") -> WorkflowEvent:
    return WorkflowEvent(type=event_type, workflow_id="wf-1-abcdef0", phase="init")


def test_listeners_receive_events_in_registration_order() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []
    registry.add(lambda event: seen.append(f"first:{event.type}"))
    registry.add(lambda event: seen.append(f"second:{event.type}"))

    registry.emit(_event())

    assert seen == ["first:workflow:started", "second:workflow:started"]


def test_failing_listener_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    registry = ListenerRegistry()
    seen: list[str] = []

    def _broken(event: WorkflowEvent) -> None:
        raise RuntimeError("listener bug")

    registry.add(_broken)
    registry.add(lambda event: seen.append(event.type))

    with caplog.at_level(logging.ERROR, logger="orchestrator.events"):
        registry.emit(_event())

    assert seen == ["workflow:started"]
    assert "listener failed" in caplog.text


def test_unsubscribe_removes_listener() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []
    unsubscribe = registry.add(lambda event: seen.append(event.type))

    unsubscribe()
    unsubscribe()
    registry.emit(_event())

    assert seen == []
    assert len(registry) == 0


def test_async_listeners_are_scheduled_on_running_loop() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []

    async def _listener(event: WorkflowEvent) -> None:
        await asyncio.sleep(0)
        seen.append(event.type)

    registry.add(_listener)

    async def scenario() -> None:
        registry.emit(_event("agent:started"))
        assert seen == []
        await registry.drain()

    asyncio.run(scenario())

    assert seen == ["agent:started"]


def test_async_listener_without_loop_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    registry = ListenerRegistry()

    async def _listener(event: WorkflowEvent) -> None:
        raise AssertionError("should never run")

    registry.add(_listener)

    with caplog.at_level(logging.WARNING, logger="orchestrator.events"):
        registry.emit(_event())

    assert "no running loop" in caplog.text
