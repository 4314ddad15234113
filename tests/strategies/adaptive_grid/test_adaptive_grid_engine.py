from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import pytest

from exchange_clients.base_models import GatewayError, TransientGatewayError
from strategies.implementations.adaptive_grid.errors import (
    GridCloseError,
    GridCreationError,
    ModuleNotInitializedError,
    SignalRejectedError,
)
from strategies.implementations.adaptive_grid.models import (
    CompletionReason,
    GridStatus,
    OrderStatus,
    PositionStatus,
)
from strategies.implementations.adaptive_grid.strategy import AdaptiveSmartGrid

from grid_fixtures import flat_candles, make_config, make_signal

GRID_OPTIONS = {"grid_levels": 3, "position_size": 1}


async def create_grid(engine, **signal_overrides):
    result = await engine.create_grid_from_signal(make_signal(**signal_overrides), GRID_OPTIONS)
    return engine.active_grids[result.grid_id]


async def fill(engine, grid, order, price):
    return await engine.update_order_status(grid.id, order.id, "FILLED", fill_price=Decimal(str(price)))


# --------------------------------------------------------------------------- #
# Creation
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_create_places_only_first_entry(engine, gateway, recorded_events, tmp_path):
    result = await engine.create_grid_from_signal(make_signal(), GRID_OPTIONS)
    grid = engine.active_grids[result.grid_id]

    assert result.success and result.grid_id.startswith("grid_")
    assert grid.status is GridStatus.ACTIVE
    assert [order.price for order in result.entry_orders] == [Decimal("100"), Decimal("99"), Decimal("98")]
    assert [order.status for order in grid.entry_orders] == [
        OrderStatus.ACTIVE,
        OrderStatus.PENDING,
        OrderStatus.PENDING,
    ]
    assert all(order.status is OrderStatus.PENDING for order in grid.take_profit_orders + grid.stop_loss_orders)

    assert len(gateway.orders) == 1
    assert gateway.orders[0]["side"] == "BUY"
    assert gateway.orders[0]["type"] == "LIMIT"
    assert gateway.orders[0]["price"] == Decimal("100")
    assert grid.entry_orders[0].exchange_order_id == "ex-1"

    created = [event for event in recorded_events if event["event_type"] == "grid.created"]
    assert len(created) == 1
    assert created[0]["grid_id"] == grid.id
    assert created[0]["module_id"] == "adaptive-smart-grid"

    saved = json.loads((tmp_path / "asg_grids.json").read_text())
    assert list(saved) == [grid.id]


@pytest.mark.asyncio
async def test_create_requires_initialization():
    module = AdaptiveSmartGrid(make_config(), record_events=False)
    with pytest.raises(ModuleNotInitializedError):
        await module.create_grid_from_signal(make_signal())


@pytest.mark.asyncio
async def test_rejected_signal_leaves_state_untouched(module_factory, gateway):
    engine = await module_factory(max_concurrent_grids=1)
    await create_grid(engine)

    with pytest.raises(SignalRejectedError):
        await engine.create_grid_from_signal(make_signal())
    with pytest.raises(SignalRejectedError):
        await engine.create_grid_from_signal(make_signal(pair="ETHUSDT"))
    with pytest.raises(SignalRejectedError):
        await engine.create_grid_from_signal(make_signal(pair="SOLUSDT", confidence=Decimal("0.2")))

    assert len(engine.active_grids) == 1
    assert len(gateway.orders) == 1


@pytest.mark.asyncio
async def test_chart_failure_aborts_creation(engine, gateway):
    gateway.chart_errors = [GatewayError("klines unavailable")]
    with pytest.raises(GridCreationError):
        await engine.create_grid_from_signal(make_signal(), GRID_OPTIONS)
    assert engine.active_grids == {}
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_thin_chart_aborts_creation(engine, gateway):
    gateway.candles = flat_candles(count=3)
    with pytest.raises(GridCreationError):
        await engine.create_grid_from_signal(make_signal(), GRID_OPTIONS)
    assert engine.active_grids == {}


@pytest.mark.asyncio
async def test_transient_order_failure_is_retried(engine, gateway):
    gateway.create_errors = [TransientGatewayError("timeout")]
    grid = await create_grid(engine)

    assert gateway.create_calls == 2
    assert grid.entry_orders[0].status is OrderStatus.ACTIVE


@pytest.mark.asyncio
async def test_failed_first_order_stays_pending(engine, gateway):
    gateway.create_errors = [GatewayError("rejected")]
    grid = await create_grid(engine)

    assert gateway.create_calls == 1
    assert grid.status is GridStatus.ACTIVE
    assert grid.entry_orders[0].status is OrderStatus.PENDING

    # next reconciliation pass submits it
    await engine.check_grid_status(grid.id)
    assert grid.entry_orders[0].status is OrderStatus.ACTIVE


@pytest.mark.asyncio
async def test_rejected_first_order_stays_pending(engine, gateway):
    gateway.reject_orders = True
    grid = await create_grid(engine)
    assert grid.entry_orders[0].status is OrderStatus.PENDING
    assert grid.entry_orders[0].exchange_order_id is None


# --------------------------------------------------------------------------- #
# Fills
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_entry_fill_opens_position_and_next_level(engine, gateway, recorded_events, tmp_path):
    grid = await create_grid(engine)
    entry = grid.entry_orders[0]

    assert await fill(engine, grid, entry, "100") is True

    assert entry.status is OrderStatus.FILLED
    assert len(grid.positions) == 1
    position = grid.positions[0]
    assert position.id == f"{grid.id}_position_0"
    assert position.entry_price == Decimal("100")
    assert grid.take_profit_orders[0].status is OrderStatus.ACTIVE
    assert grid.stop_loss_orders[0].status is OrderStatus.ACTIVE
    assert grid.entry_orders[1].status is OrderStatus.ACTIVE
    assert grid.entry_orders[2].status is OrderStatus.PENDING

    exits = gateway.orders[1:3]
    assert {order["side"] for order in exits} == {"SELL"}
    assert {order["type"] for order in exits} == {"LIMIT", "STOP"}
    opened = [event for event in recorded_events if event["event_type"] == "grid.position.opened"]
    assert opened[0]["level"] == 0
    assert opened[0]["position_id"] == position.id

    saved = json.loads((tmp_path / "asg_grids.json").read_text())
    assert saved[grid.id]["positions"][0]["id"] == position.id
    assert saved[grid.id]["entry_orders"][1]["status"] == "ACTIVE"


@pytest.mark.asyncio
async def test_duplicate_fill_is_ignored(engine):
    grid = await create_grid(engine)
    entry = grid.entry_orders[0]

    assert await fill(engine, grid, entry, "100") is True
    assert await fill(engine, grid, entry, "100") is False
    assert len(grid.positions) == 1
    assert grid.stats.filled_orders == 1


@pytest.mark.asyncio
async def test_fill_resolved_by_exchange_id(engine):
    grid = await create_grid(engine)
    exchange_id = grid.entry_orders[0].exchange_order_id

    assert await engine.update_order_status(None, exchange_id, "filled") is True
    assert grid.positions[0].entry_price == Decimal("100")


@pytest.mark.asyncio
async def test_unknown_order_or_grid(engine):
    grid = await create_grid(engine)
    assert await engine.update_order_status(grid.id, "nope", "FILLED") is False
    assert await engine.update_order_status("grid_missing", "nope", "FILLED") is False
    assert await engine.update_order_status(grid.id, grid.entry_orders[0].id, "EXPLODED") is False


@pytest.mark.asyncio
async def test_take_profit_fill_cancels_stop_loss(engine, gateway):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    stop_loss = grid.stop_loss_orders[0]

    await fill(engine, grid, grid.take_profit_orders[0], "101.5")

    position = grid.positions[0]
    assert position.status is PositionStatus.CLOSED
    assert position.close_reason == "TAKE_PROFIT"
    assert position.profit == Decimal("1.5")
    assert grid.stats.total_profit == Decimal("1.5")
    assert stop_loss.status is OrderStatus.CANCELED
    assert stop_loss.exchange_order_id in gateway.cancelled
    # entry 1 is still working so the grid stays open
    assert grid.id in engine.active_grids


@pytest.mark.asyncio
async def test_stop_loss_fill_records_loss(engine):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await fill(engine, grid, grid.stop_loss_orders[0], "98")

    position = grid.positions[0]
    assert position.close_reason == "STOP_LOSS"
    assert position.profit == Decimal("-2")
    assert grid.take_profit_orders[0].status is OrderStatus.CANCELED


@pytest.mark.asyncio
async def test_grid_completes_when_every_position_closed(engine, recorded_events):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await engine.update_order_status(grid.id, grid.entry_orders[1].id, "CANCELED")
    await fill(engine, grid, grid.take_profit_orders[0], "101.5")

    assert grid.id not in engine.active_grids
    assert grid.status is GridStatus.COMPLETED
    assert grid.completion_reason == CompletionReason.ALL_POSITIONS_CLOSED
    assert grid.stats.final_profit == Decimal("1.5")
    assert grid.entry_orders[2].status is OrderStatus.CANCELED
    assert engine.get_grid_history() == [grid]

    completed = [event for event in recorded_events if event["event_type"] == "grid.completed"]
    assert [event["reason"] for event in completed] == [CompletionReason.ALL_POSITIONS_CLOSED]
    assert completed[0]["profit"] == 1.5


@pytest.mark.asyncio
async def test_external_position_close(engine):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    position = grid.positions[0]

    assert await engine.handle_position_closed(grid.id, position.id, Decimal("3")) is True
    assert position.status is PositionStatus.CLOSED
    assert grid.stats.total_profit == Decimal("3")
    assert grid.take_profit_orders[0].status is OrderStatus.CANCELED
    assert await engine.handle_position_closed(grid.id, position.id, Decimal("3")) is False


# --------------------------------------------------------------------------- #
# Reconciliation
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_drawdown_stops_out_grid(engine, gateway):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")

    gateway.price = Decimal("89")
    assert await engine.check_grid_status(grid.id) == CompletionReason.STOP_LOSS

    market = [order for order in gateway.orders if order["type"] == "MARKET"]
    assert len(market) == 1
    assert market[0]["side"] == "SELL"
    assert market[0]["price"] is None
    assert grid.positions[0].profit == Decimal("-11")
    assert grid.completion_reason == CompletionReason.STOP_LOSS
    assert grid.stats.max_drawdown == Decimal("-11")
    assert not grid.active_orders()


@pytest.mark.asyncio
async def test_failed_stop_out_keeps_grid_and_exits(engine, gateway, tmp_path):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    stop_loss = grid.stop_loss_orders[0]
    assert stop_loss.status is OrderStatus.ACTIVE

    gateway.price = Decimal("89")
    gateway.create_errors = [GatewayError("exchange down")]
    assert await engine.check_grid_status(grid.id) is None

    assert engine.active_grids[grid.id] is grid
    assert grid.status is GridStatus.ACTIVE
    assert grid.positions[0].status is PositionStatus.OPEN
    assert stop_loss.status is OrderStatus.ACTIVE
    assert gateway.cancelled == []
    assert engine.get_grid_history() == []
    saved = json.loads((tmp_path / "asg_grids.json").read_text())
    assert saved[grid.id]["status"] == "ACTIVE"

    # the next pass retries the close and completes once flat
    assert await engine.check_grid_status(grid.id) == CompletionReason.STOP_LOSS
    assert grid.positions[0].status is PositionStatus.CLOSED
    assert grid.id not in engine.active_grids
    assert stop_loss.status is OrderStatus.CANCELED


@pytest.mark.asyncio
async def test_manual_close_failure_keeps_grid_active(engine, gateway):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")

    gateway.create_errors = [GatewayError("exchange down")]
    with pytest.raises(GridCloseError):
        await engine.close_grid(grid.id)

    assert grid.status is GridStatus.ACTIVE
    assert grid.positions[0].is_open
    assert grid.take_profit_orders[0].status is OrderStatus.ACTIVE
    assert grid.stop_loss_orders[0].status is OrderStatus.ACTIVE

    assert await engine.close_grid(grid.id) is True
    assert grid.completion_reason == CompletionReason.MANUAL_CLOSE


@pytest.mark.asyncio
async def test_completion_happens_once(engine, recorded_events):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")

    outcomes = await asyncio.gather(
        engine.close_grid(grid.id),
        engine.close_grid(grid.id, "OPERATOR"),
        engine.complete_grid(grid.id, CompletionReason.TAKE_PROFIT),
    )

    assert sorted(outcomes) == [False, False, True]
    assert grid.completion_reason == CompletionReason.MANUAL_CLOSE
    assert len(engine.get_grid_history()) == 1
    assert [event["event_type"] for event in recorded_events].count("grid.completed") == 1
    assert await engine.check_grid_status(grid.id) is None


@pytest.mark.asyncio
async def test_escalation_waits_for_price(engine, gateway):
    grid = await create_grid(engine)
    next_entry = grid.entry_orders[1]

    gateway.price = Decimal("100.5")
    await engine.check_grid_status(grid.id)
    assert next_entry.status is OrderStatus.PENDING

    # within 1% of the level 1 price (99)
    gateway.price = Decimal("99.9")
    await engine.check_grid_status(grid.id)
    assert next_entry.status is OrderStatus.ACTIVE
    assert grid.entry_orders[2].status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_escalation_follows_deepest_level(engine, gateway):
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await fill(engine, grid, grid.entry_orders[1], "99")
    assert grid.entry_orders[2].status is OrderStatus.ACTIVE

    before = len(gateway.orders)
    gateway.price = Decimal("98.5")
    await engine.check_grid_status(grid.id)
    assert len(gateway.orders) == before


@pytest.mark.asyncio
async def test_trailing_stop_closes_grid(module_factory, gateway, recorded_events):
    engine = await module_factory(enable_partial_take_profit=False, target_profit_percent=Decimal("50"))
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")

    gateway.price = Decimal("110")
    assert await engine.check_grid_status(grid.id) is None
    assert grid.trailing_stop_value == Decimal("109")

    gateway.price = Decimal("112")
    assert await engine.check_grid_status(grid.id) is None
    assert grid.trailing_stop_value == Decimal("111")

    gateway.price = Decimal("111.5")
    assert await engine.check_grid_status(grid.id) is None
    assert grid.trailing_stop_value == Decimal("111")

    gateway.price = Decimal("110.9")
    assert await engine.check_grid_status(grid.id) == CompletionReason.TRAILING_STOP
    assert grid.positions[0].close_reason == CompletionReason.TRAILING_STOP
    assert grid.positions[0].profit == Decimal("10.9")

    event_types = [event["event_type"] for event in recorded_events]
    assert event_types.count("grid.trailingStop.activated") == 1
    assert event_types.count("grid.trailingStop.updated") == 1


@pytest.mark.asyncio
async def test_partial_take_profit_levels_fire_once(module_factory, gateway, recorded_events):
    engine = await module_factory(trailing_stop_enabled=False, target_profit_percent=Decimal("50"))
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await fill(engine, grid, grid.entry_orders[1], "99")
    await fill(engine, grid, grid.entry_orders[2], "98")

    # average entry 99, +0.6% reaches only the first level
    gateway.price = Decimal("99.6")
    await engine.check_grid_status(grid.id)
    assert grid.partial_take_profit_executed == [Decimal("0.3")]
    closed = [position for position in grid.positions if not position.is_open]
    assert [position.entry_price for position in closed] == [Decimal("100")]
    assert closed[0].close_reason == "PARTIAL_TP_0.3"

    # remaining average 98.5 puts the second level in reach; the first never repeats
    await engine.check_grid_status(grid.id)
    assert grid.partial_take_profit_executed == [Decimal("0.3"), Decimal("0.5")]
    assert len(grid.open_positions()) == 1

    partials = [event for event in recorded_events if event["event_type"] == "grid.partialTakeProfit"]
    assert [event["level"] for event in partials] == [0.3, 0.5]


@pytest.mark.asyncio
async def test_failed_partial_close_keeps_level_open(module_factory, gateway):
    engine = await module_factory(trailing_stop_enabled=False, target_profit_percent=Decimal("50"))
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")

    gateway.price = Decimal("100.6")
    gateway.reject_orders = True
    await engine.check_grid_status(grid.id)

    assert grid.partial_take_profit_executed == []
    assert grid.positions[0].is_open


@pytest.mark.asyncio
async def test_take_profit_target_closes_grid(module_factory, gateway):
    engine = await module_factory(
        trailing_stop_enabled=False,
        enable_partial_take_profit=False,
        target_profit_percent=Decimal("0.5"),
    )
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await fill(engine, grid, grid.entry_orders[1], "99")
    await fill(engine, grid, grid.take_profit_orders[1], "100.5")

    assert await engine.check_grid_status(grid.id) == CompletionReason.TAKE_PROFIT
    assert all(not position.is_open for position in grid.positions)


@pytest.mark.asyncio
async def test_volatility_shift_reprices_pending_levels(engine, gateway, recorded_events):
    grid = await create_grid(engine)

    gateway.candles = flat_candles(spread=Decimal("2"))
    await engine.check_grid_status(grid.id)

    assert grid.params.atr == Decimal("4")
    assert grid.params.grid_step == Decimal("2.0")
    assert [order.price for order in grid.entry_orders] == [Decimal("100"), Decimal("98"), Decimal("96")]
    assert grid.take_profit_orders[1].price == Decimal("101")
    assert grid.stop_loss_orders[2].price == Decimal("92")

    adjusted = [event for event in recorded_events if event["event_type"] == "grid.adjusted"]
    assert len(adjusted) == 1
    assert adjusted[0]["old_atr"] == 2.0
    assert adjusted[0]["new_atr"] == 4.0
    assert adjusted[0]["repriced_orders"] == 2

    # stable volatility afterwards: nothing moves
    await engine.check_grid_status(grid.id)
    assert len([event for event in recorded_events if event["event_type"] == "grid.adjusted"]) == 1


@pytest.mark.asyncio
async def test_check_all_grids_isolates_failures(engine, gateway, monkeypatch):
    first = await create_grid(engine)
    second = await create_grid(engine, pair="ETHUSDT")

    original = gateway.get_ticker

    async def flaky_ticker(symbol):
        if symbol == "BTCUSDT":
            raise GatewayError("ticker down")
        return await original(symbol)

    monkeypatch.setattr(gateway, "get_ticker", flaky_ticker)
    results = await engine.check_all_grids()

    assert results == {first.id: None, second.id: None}
    assert second.last_check_time >= first.last_check_time


@pytest.mark.asyncio
async def test_history_is_capped(module_factory):
    engine = await module_factory(max_history_size=2)
    for pair in ("AUSDT", "BUSDT", "CUSDT"):
        grid = await create_grid(engine, pair=pair)
        await engine.close_grid(grid.id)

    history = engine.get_grid_history()
    assert [grid.pair for grid in history] == ["CUSDT", "BUSDT"]
    assert engine.get_grid_history(limit=1)[0].pair == "CUSDT"


# --------------------------------------------------------------------------- #
# Configuration, bus and persistence
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_update_config_applies_to_engine(engine):
    updated = engine.update_config({"max_drawdown_percent": "5"})
    assert updated.max_drawdown_percent == Decimal("5")
    assert engine.risk_controller.config is updated
    assert engine.submitter.config is updated


@pytest.mark.asyncio
async def test_signal_and_fill_events_from_bus(engine, event_bus, gateway):
    event_bus.emit(
        "trading-signal",
        {"signal": {"pair": "BTCUSDT", "direction": "BUY", "entryPoint": 100, "confidence": 0.85}},
    )
    await event_bus.drain()

    [grid] = engine.get_active_grids()
    assert grid.signal["confidence"] == 0.85

    event_bus.emit(
        "order.executed",
        {"grid_id": grid.id, "order_id": grid.entry_orders[0].id, "fill_price": "100"},
    )
    await event_bus.drain()
    assert len(grid.positions) == 1

    event_bus.emit("position.closed", {"grid_id": grid.id, "position_id": grid.positions[0].id, "profit": 2})
    await event_bus.drain()
    assert grid.stats.total_profit == Decimal("2")


@pytest.mark.asyncio
async def test_low_confidence_signal_from_bus_is_ignored(engine, event_bus):
    event_bus.emit(
        "trading-signal",
        {"signal": {"pair": "BTCUSDT", "direction": "BUY", "entry_point": 100, "confidence": 0.1}},
    )
    event_bus.emit("trading-signal", {"signal": {"pair": "BTCUSDT"}})
    await event_bus.drain()
    assert engine.get_active_grids() == []


@pytest.mark.asyncio
async def test_state_survives_restart(module_factory, event_bus):
    engine = await module_factory()
    grid = await create_grid(engine)
    await fill(engine, grid, grid.entry_orders[0], "100")
    await engine.cleanup()

    assert event_bus.listener_count("order.executed") == 0

    restarted = await module_factory()
    restored = restarted.get_grid_info(grid.id)
    assert restored is not None
    assert restored.status is GridStatus.ACTIVE
    assert restored.positions[0].entry_price == Decimal("100")
    assert restored.entry_orders[1].status is OrderStatus.ACTIVE
    assert restored.params.grid_step == Decimal("1")
