"""Tests for the event bus and the shared context store."""
from __future__ import annotations

import pytest

from agent_engine.core.context import SharedContext
from agent_engine.core.events import CONTEXT_UPDATE, EventBus


@pytest.mark.anyio
async def test_subscribers_receive_events_while_subscribed() -> None:
    bus = EventBus()
    bus.publish("before")

    async with bus.subscribe() as first, bus.subscribe() as second:
        assert bus.subscriber_count == 2
        bus.publish("agent:deployed", agent_name="x")
        event = first.get_nowait()
        assert event.name == "agent:deployed"
        assert event.payload == {"agent_name": "x"}
        assert second.get_nowait() is event

    assert bus.subscriber_count == 0


@pytest.mark.anyio
async def test_full_queue_drops_oldest_event() -> None:
    bus = EventBus(max_queue_size=2)
    async with bus.subscribe() as queue:
        for name in ("one", "two", "three"):
            bus.publish(name)
        assert [queue.get_nowait().name for _ in range(queue.qsize())] == ["two", "three"]


@pytest.mark.anyio
async def test_context_updates_are_published() -> None:
    bus = EventBus()
    context = SharedContext(bus)

    async with bus.subscribe() as queue:
        context.set("current_feature", "search")
        context.delete("current_feature")
        context.delete("never-set")
        events = [queue.get_nowait() for _ in range(queue.qsize())]

    assert [event.name for event in events] == [CONTEXT_UPDATE, CONTEXT_UPDATE]
    assert events[0].payload == {"key": "current_feature", "value": "search"}
    assert "current_feature" not in context
    assert context.get("current_feature", "none") == "none"


def test_snapshot_is_a_copy() -> None:
    context = SharedContext()
    context.set("owner", "team-a")
    snapshot = context.snapshot()
    snapshot["owner"] = "team-b"
    assert context.get("owner") == "team-a"
