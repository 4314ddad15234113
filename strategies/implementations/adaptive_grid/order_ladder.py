"""
Ladder generation and repricing.

A BUY grid ladders entries below the start price (a SELL grid above it),
each entry paired with one take-profit and one stop-loss order.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Tuple

from .config import AdaptiveGridConfig
from .models import Grid, GridDirection, GridOrder, GridParams, OrderRole, OrderStatus, OrderType
from .utils import (
    entry_order_id,
    round_price,
    round_size,
    stop_loss_order_id,
    take_profit_order_id,
)


def entry_price_for_level(direction: GridDirection, start_price: Decimal, grid_step: Decimal, level: int) -> Decimal:
    offset = grid_step * level
    if direction is GridDirection.BUY:
        return round_price(start_price - offset)
    return round_price(start_price + offset)


def exit_prices(
    direction: GridDirection,
    entry_price: Decimal,
    take_profit_distance: Decimal,
    stop_loss_distance: Decimal,
) -> Tuple[Decimal, Decimal]:
    """Return ``(take_profit, stop_loss)`` prices for an entry."""
    if direction is GridDirection.BUY:
        return (
            round_price(entry_price + take_profit_distance),
            round_price(entry_price - stop_loss_distance),
        )
    return (
        round_price(entry_price - take_profit_distance),
        round_price(entry_price + stop_loss_distance),
    )


def level_size(params: GridParams, config: AdaptiveGridConfig, level: int) -> Decimal:
    if config.dynamic_position_sizing:
        return round_size(params.position_size * (config.scaling_factor ** level))
    return round_size(params.position_size)


def generate_grid_orders(
    grid_id: str,
    direction: GridDirection,
    start_price: Decimal,
    params: GridParams,
    config: AdaptiveGridConfig,
) -> Tuple[List[GridOrder], List[GridOrder], List[GridOrder]]:
    """
    Build the entry, take-profit and stop-loss ladders.

    Returns:
        Tuple of (entry_orders, take_profit_orders, stop_loss_orders), each of
        length ``params.grid_levels`` and all ``PENDING``.
    """
    if params.grid_levels < 1:
        raise ValueError("grid_levels must be positive")

    entries: List[GridOrder] = []
    take_profits: List[GridOrder] = []
    stop_losses: List[GridOrder] = []

    for level in range(params.grid_levels):
        price = entry_price_for_level(direction, start_price, params.grid_step, level)
        size = level_size(params, config, level)
        tp_price, sl_price = exit_prices(
            direction, price, params.take_profit_distance, params.stop_loss_distance
        )

        entry = GridOrder(
            id=entry_order_id(grid_id, level),
            role=OrderRole.ENTRY,
            price=price,
            size=size,
            type=OrderType.LIMIT,
            level=level,
        )
        entries.append(entry)
        take_profits.append(
            GridOrder(
                id=take_profit_order_id(grid_id, level),
                role=OrderRole.TAKE_PROFIT,
                price=tp_price,
                size=size,
                type=OrderType.LIMIT,
                level=level,
                entry_order_id=entry.id,
            )
        )
        stop_losses.append(
            GridOrder(
                id=stop_loss_order_id(grid_id, level),
                role=OrderRole.STOP_LOSS,
                price=sl_price,
                size=size,
                type=OrderType.STOP,
                level=level,
                entry_order_id=entry.id,
            )
        )

    return entries, take_profits, stop_losses


def reprice_pending_orders(grid: Grid) -> int:
    """
    Move still-PENDING entries (and their pending exits) onto the grid's
    current step. Orders already on the exchange keep their prices.

    Returns:
        Number of entry orders repriced.
    """
    params = grid.params
    repriced = 0
    for entry in grid.entry_orders:
        if entry.status is not OrderStatus.PENDING:
            continue

        entry.price = entry_price_for_level(grid.direction, grid.start_price, params.grid_step, entry.level)
        tp_price, sl_price = exit_prices(
            grid.direction, entry.price, params.take_profit_distance, params.stop_loss_distance
        )
        for exit_order in grid.exit_orders_for(entry.id):
            if exit_order.status is not OrderStatus.PENDING:
                continue
            exit_order.price = tp_price if exit_order.role is OrderRole.TAKE_PROFIT else sl_price
        repriced += 1

    return repriced
