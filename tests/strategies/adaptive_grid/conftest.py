"""Shared fixtures for adaptive grid tests: an in-memory gateway and an initialized module."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from helpers.event_bus import EventBus
from strategies.base_module import ModuleContext
from strategies.implementations.adaptive_grid.config import AdaptiveGridConfig
from strategies.implementations.adaptive_grid.models import (
    Grid,
    GridDirection,
    GridParams,
    GridPosition,
    GridStatus,
    PartialTakeProfitStep,
    Trend,
)
from strategies.implementations.adaptive_grid.strategy import AdaptiveSmartGrid

from grid_fixtures import DummyGateway, make_config


@pytest.fixture
def gateway() -> DummyGateway:
    return DummyGateway()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Every ``grid.*`` event published on the bus, in order."""
    events: List[Dict[str, Any]] = []
    for event_type in (
        "grid.created",
        "grid.completed",
        "grid.adjusted",
        "grid.position.opened",
        "grid.position.closed",
        "grid.partialTakeProfit",
        "grid.trailingStop.activated",
        "grid.trailingStop.updated",
    ):
        event_bus.on(event_type, events.append)
    return events


@pytest_asyncio.fixture
async def module_factory(tmp_path, gateway, event_bus):
    """Build and initialize modules sharing one gateway, bus and data dir."""
    created: List[AdaptiveSmartGrid] = []

    async def _build(**config_overrides: Any) -> AdaptiveSmartGrid:
        module = AdaptiveSmartGrid(make_config(**config_overrides), record_events=False)
        await module.initialize(ModuleContext(event_bus=event_bus, gateway=gateway, data_dir=tmp_path))
        created.append(module)
        return module

    yield _build

    for module in created:
        await module.cleanup()
    await event_bus.drain()


@pytest_asyncio.fixture
async def engine(module_factory) -> AdaptiveSmartGrid:
    return await module_factory()


@pytest.fixture
def grid_factory():
    """Build an ACTIVE grid with the given open positions ``[(entry_price, size), ...]``."""

    def _build(
        direction: GridDirection = GridDirection.BUY,
        positions=(),
        grid_step: Decimal = Decimal("1"),
        config: Optional[AdaptiveGridConfig] = None,
    ) -> Grid:
        config = config or make_config()
        start = Decimal("100")
        tp_distance = grid_step * config.take_profit_factor
        offset = tp_distance * config.trailing_stop_activation_percent
        activation = start + offset if direction is GridDirection.BUY else start - offset
        params = GridParams(
            atr=grid_step / config.grid_spacing_atr_multiplier,
            trend=Trend.NEUTRAL,
            grid_step=grid_step,
            grid_levels=3,
            position_size=Decimal("1"),
            take_profit_distance=tp_distance,
            stop_loss_distance=grid_step * config.stop_loss_factor,
            trailing_stop_activation_level=activation,
        )
        grid = Grid(
            id="grid_test",
            pair="BTCUSDT",
            direction=direction,
            start_price=start,
            current_price=start,
            params=params,
            status=GridStatus.ACTIVE,
            trailing_stop_enabled=config.trailing_stop_enabled,
            trailing_stop_activation_level=activation,
            enable_partial_take_profit=config.enable_partial_take_profit,
            partial_take_profit_levels=[
                PartialTakeProfitStep(level.close_fraction, level.profit_percent)
                for level in config.partial_take_profit_levels
            ],
        )
        for index, (entry_price, size) in enumerate(positions):
            grid.positions.append(
                GridPosition(
                    id=f"grid_test_position_{index}",
                    entry_order_id=f"grid_test_entry_{index}",
                    entry_price=Decimal(str(entry_price)),
                    size=Decimal(str(size)),
                    direction=direction,
                    level=index,
                )
            )
        return grid

    return _build
