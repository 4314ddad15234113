from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import pytest

from helpers.event_bus import EventBus
from helpers.event_notifier import GridEventNotifier


def test_sync_handlers_receive_payload():
    bus = EventBus()
    received = []
    bus.on("tick", received.append)

    assert bus.emit("tick", {"price": 1}) is True
    assert received[0]["price"] == 1
    assert received[0]["event_type"] == "tick"
    assert "timestamp" in received[0]


def test_emit_without_listeners():
    assert EventBus().emit("nobody-listens", {}) is False


def test_off_and_once():
    bus = EventBus()
    first, second = [], []
    bus.on("tick", first.append)
    bus.once("tick", second.append)

    bus.emit("tick")
    bus.emit("tick")
    assert len(first) == 2
    assert len(second) == 1

    bus.off("tick", first.append)
    assert bus.listener_count("tick") == 0


def test_off_without_handler_drops_all():
    bus = EventBus()
    bus.on("tick", lambda event: None)
    bus.on("tick", lambda event: None)
    bus.off("tick")
    assert bus.listener_count("tick") == 0


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.on("tick", broken)
    bus.on("tick", received.append)
    bus.emit("tick")
    assert len(received) == 1


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled_and_drained():
    bus = EventBus()
    received = []

    async def slow(event):
        await asyncio.sleep(0)
        received.append(event["n"])
        if event["n"] < 3:
            bus.emit("count", {"n": event["n"] + 1})

    bus.on("count", slow)
    bus.emit("count", {"n": 1})
    assert received == []

    await bus.drain()
    assert received == [1, 2, 3]


@pytest.mark.asyncio
async def test_failing_async_handler_is_contained():
    bus = EventBus()

    async def broken(event):
        raise RuntimeError("boom")

    bus.on("tick", broken)
    bus.emit("tick")
    await bus.drain()


def test_notifier_stamps_and_records(tmp_path):
    bus = EventBus()
    received = []
    bus.on("grid.created", received.append)
    history = tmp_path / "events" / "grid_events.jsonl"
    notifier = GridEventNotifier(bus, "adaptive-smart-grid", history_path=history)

    event = notifier.notify("grid.created", {"grid_id": "grid_1", "start_price": Decimal("100.5")})

    assert event["start_price"] == 100.5
    assert event["module_id"] == "adaptive-smart-grid"
    assert received[0]["grid_id"] == "grid_1"

    [line] = history.read_text().splitlines()
    record = json.loads(line)
    assert record["event_type"] == "grid.created"
    assert record["payload"]["grid_id"] == "grid_1"
