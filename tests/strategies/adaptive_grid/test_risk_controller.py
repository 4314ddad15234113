from __future__ import annotations

from decimal import Decimal

import pytest

from helpers.unified_logger import get_strategy_logger
from strategies.implementations.adaptive_grid.models import GridDirection, PositionStatus
from strategies.implementations.adaptive_grid.risk_controller import (
    GridRiskController,
    average_entry,
    positions_to_close,
)

from grid_fixtures import make_config


@pytest.fixture
def controller():
    return GridRiskController(make_config(), get_strategy_logger("risk_test"))


def test_average_entry_weights_by_size(grid_factory):
    grid = grid_factory(positions=[(100, 1), (97, 2)])
    assert average_entry(grid.positions) == Decimal("98")
    assert average_entry([]) is None


def test_positions_to_close_rounds_up():
    assert positions_to_close(3, Decimal("0.3")) == 1
    assert positions_to_close(3, Decimal("0.5")) == 2
    assert positions_to_close(2, Decimal("1")) == 2
    assert positions_to_close(0, Decimal("0.5")) == 0


def test_drawdown_stop_tracks_worst_loss(controller, grid_factory):
    grid = grid_factory(positions=[(100, 1)])

    assert controller.should_stop_out(grid, Decimal("95")) is False
    assert grid.stats.max_drawdown == Decimal("-5")

    assert controller.should_stop_out(grid, Decimal("97")) is False
    assert grid.stats.max_drawdown == Decimal("-5")

    assert controller.should_stop_out(grid, Decimal("89")) is True
    assert grid.stats.max_drawdown == Decimal("-11")


def test_drawdown_ignores_gains_and_closed_positions(controller, grid_factory):
    grid = grid_factory(positions=[(100, 1)])
    assert controller.should_stop_out(grid, Decimal("120")) is False

    grid.positions[0].status = PositionStatus.CLOSED
    assert controller.drawdown_percent(grid, Decimal("50")) is None
    assert controller.should_stop_out(grid, Decimal("50")) is False


def test_sell_drawdown_is_price_rising(controller, grid_factory):
    grid = grid_factory(GridDirection.SELL, positions=[(100, 1)])
    assert controller.should_stop_out(grid, Decimal("111")) is True


def test_trailing_stop_lifecycle_buy(controller, grid_factory):
    grid = grid_factory(positions=[(100, 1)])

    assert controller.should_arm_trailing_stop(grid, Decimal("100.5")) is False
    assert controller.should_arm_trailing_stop(grid, Decimal("110")) is True
    assert controller.arm_trailing_stop(grid, Decimal("110")) == Decimal("109")
    assert controller.should_arm_trailing_stop(grid, Decimal("120")) is False

    assert controller.ratchet_trailing_stop(grid, Decimal("112")) == Decimal("111")
    assert controller.ratchet_trailing_stop(grid, Decimal("111.5")) is None
    assert grid.trailing_stop_value == Decimal("111")

    assert controller.is_trailing_stop_triggered(grid, Decimal("111.5")) is False
    assert controller.is_trailing_stop_triggered(grid, Decimal("110.9")) is True


def test_trailing_stop_lifecycle_sell(controller, grid_factory):
    grid = grid_factory(GridDirection.SELL, positions=[(100, 1)])

    assert controller.should_arm_trailing_stop(grid, Decimal("99.5")) is False
    assert controller.should_arm_trailing_stop(grid, Decimal("90")) is True
    assert controller.arm_trailing_stop(grid, Decimal("90")) == Decimal("91")
    assert controller.ratchet_trailing_stop(grid, Decimal("88")) == Decimal("89")
    assert controller.ratchet_trailing_stop(grid, Decimal("88.5")) is None
    assert controller.is_trailing_stop_triggered(grid, Decimal("89.5")) is True


def test_trailing_stop_needs_open_exposure(controller, grid_factory):
    grid = grid_factory()
    assert controller.should_arm_trailing_stop(grid, Decimal("150")) is False

    disabled = grid_factory(positions=[(100, 1)], config=make_config(trailing_stop_enabled=False))
    assert controller.should_arm_trailing_stop(disabled, Decimal("150")) is False


def test_blended_profit_percent(controller, grid_factory):
    grid = grid_factory(positions=[(100, 1), (98, 1)])
    assert controller.blended_profit_percent(grid, Decimal("99.99")) == Decimal("1")

    sell = grid_factory(GridDirection.SELL, positions=[(100, 1)])
    assert controller.blended_profit_percent(sell, Decimal("98")) == Decimal("2")
    assert controller.blended_profit_percent(grid_factory(), Decimal("100")) is None


def test_due_partial_steps_are_ordered_and_skip_executed(controller, grid_factory):
    grid = grid_factory(positions=[(100, 1)])

    due = controller.due_partial_steps(grid, Decimal("1.2"))
    assert [step.close_fraction for step in due] == [Decimal("0.3"), Decimal("0.5")]

    grid.partial_take_profit_executed.append(Decimal("0.3"))
    due = controller.due_partial_steps(grid, Decimal("1.2"))
    assert [step.close_fraction for step in due] == [Decimal("0.5")]

    assert controller.due_partial_steps(grid, Decimal("0.4")) == []

    grid.enable_partial_take_profit = False
    assert controller.due_partial_steps(grid, Decimal("5")) == []


def test_partial_close_picks_worst_entries(controller, grid_factory):
    buy = grid_factory(positions=[(98, 1), (100, 1), (99, 1)])
    chosen = controller.select_positions_for_partial_close(buy, Decimal("0.5"))
    assert [position.entry_price for position in chosen] == [Decimal("100"), Decimal("99")]

    sell = grid_factory(GridDirection.SELL, positions=[(100, 1), (102, 1), (101, 1)])
    chosen = controller.select_positions_for_partial_close(sell, Decimal("0.3"))
    assert [position.entry_price for position in chosen] == [Decimal("100")]


def test_full_take_profit(controller, grid_factory):
    assert controller.should_take_profit(grid_factory()) is False

    grid = grid_factory(positions=[(100, 1), (99, 1)])
    assert controller.should_take_profit(grid) is False

    # target is 5% of the 199 put to work
    grid.stats.total_profit = Decimal("9.95")
    assert controller.should_take_profit(grid) is True

    grid.stats.total_profit = Decimal("0")
    for position in grid.positions:
        position.status = PositionStatus.CLOSED
    assert controller.should_take_profit(grid) is True
