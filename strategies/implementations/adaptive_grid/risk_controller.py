"""
Risk checks for adaptive grids.

Drawdown stop, trailing stop, partial and full take-profit. The controller
only evaluates and updates grid sub-state; placing or closing orders is left
to the operators driven by ``AdaptiveSmartGrid``.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import List, Optional

from .config import AdaptiveGridConfig
from .models import Grid, GridDirection, GridPosition, PartialTakeProfitStep

HUNDRED = Decimal("100")
MIN_INVESTED = Decimal("0.0001")


def average_entry(positions: List[GridPosition]) -> Optional[Decimal]:
    """Size-weighted average entry price, or None without exposure."""
    total_size = sum((position.size for position in positions), Decimal("0"))
    if total_size <= 0:
        return None
    notional = sum((position.entry_price * position.size for position in positions), Decimal("0"))
    return notional / total_size


def positions_to_close(open_count: int, fraction: Decimal) -> int:
    if open_count <= 0:
        return 0
    return min(open_count, math.ceil(Decimal(open_count) * fraction))


class GridRiskController:
    """Collection of risk-related helpers used by ``AdaptiveSmartGrid``."""

    def __init__(self, config: AdaptiveGridConfig, logger) -> None:
        self.config = config
        self.logger = logger

    # ------------------------------------------------------------------ #
    # Drawdown stop
    # ------------------------------------------------------------------ #
    def drawdown_percent(self, grid: Grid, price: Decimal) -> Optional[Decimal]:
        """Unrealized P/L of open positions as % of their entry notional."""
        open_positions = grid.open_positions()
        invested = sum((p.entry_price * p.size for p in open_positions), Decimal("0"))
        if invested < MIN_INVESTED:
            return None
        unrealized = sum((p.pnl_at(price) for p in open_positions), Decimal("0"))
        return unrealized / invested * HUNDRED

    def should_stop_out(self, grid: Grid, price: Decimal) -> bool:
        """
        Record the worst drawdown seen and report whether the loss reached
        ``max_drawdown_percent``. Gains never count.
        """
        percent = self.drawdown_percent(grid, price)
        if percent is None or percent >= 0:
            return False

        if percent < grid.stats.max_drawdown:
            grid.stats.max_drawdown = percent

        return -percent >= self.config.max_drawdown_percent

    # ------------------------------------------------------------------ #
    # Trailing stop
    # ------------------------------------------------------------------ #
    def should_arm_trailing_stop(self, grid: Grid, price: Decimal) -> bool:
        if not grid.trailing_stop_enabled or grid.trailing_stop_value is not None:
            return False
        if not grid.open_positions():
            return False

        activation = grid.trailing_stop_activation_level
        if activation is None:
            activation = grid.params.trailing_stop_activation_level

        if grid.direction is GridDirection.BUY:
            return price >= activation
        return price <= activation

    def arm_trailing_stop(self, grid: Grid, price: Decimal) -> Decimal:
        """Place the trail half a stop-loss distance behind ``price``."""
        distance = grid.params.grid_step * self.config.stop_loss_factor / Decimal("2")
        if grid.direction is GridDirection.BUY:
            grid.trailing_stop_value = price - distance
        else:
            grid.trailing_stop_value = price + distance
        return grid.trailing_stop_value

    def ratchet_trailing_stop(self, grid: Grid, price: Decimal) -> Optional[Decimal]:
        """Move the trail to one grid step behind ``price`` if that is tighter."""
        if grid.trailing_stop_value is None:
            return None

        step = grid.params.grid_step
        if grid.direction is GridDirection.BUY:
            candidate = price - step
            if candidate <= grid.trailing_stop_value:
                return None
        else:
            candidate = price + step
            if candidate >= grid.trailing_stop_value:
                return None

        grid.trailing_stop_value = candidate
        return candidate

    @staticmethod
    def is_trailing_stop_triggered(grid: Grid, price: Decimal) -> bool:
        if grid.trailing_stop_value is None:
            return False
        if grid.direction is GridDirection.BUY:
            return price <= grid.trailing_stop_value
        return price >= grid.trailing_stop_value

    # ------------------------------------------------------------------ #
    # Take profit
    # ------------------------------------------------------------------ #
    @staticmethod
    def blended_profit_percent(grid: Grid, price: Decimal) -> Optional[Decimal]:
        """Profit % of ``price`` against the average entry of open positions."""
        avg_entry = average_entry(grid.open_positions())
        if avg_entry is None or avg_entry <= 0:
            return None
        if grid.direction is GridDirection.BUY:
            return (price - avg_entry) / avg_entry * HUNDRED
        return (avg_entry - price) / avg_entry * HUNDRED

    @staticmethod
    def due_partial_steps(grid: Grid, profit_percent: Decimal) -> List[PartialTakeProfitStep]:
        """
        Unexecuted steps met by ``profit_percent``, in ascending threshold
        order, stopping at the first unmet step.
        """
        if not grid.enable_partial_take_profit:
            return []

        due: List[PartialTakeProfitStep] = []
        executed = set(grid.partial_take_profit_executed)
        for step in sorted(grid.partial_take_profit_levels, key=lambda s: s.profit_percent):
            if step.close_fraction in executed:
                continue
            if profit_percent < step.profit_percent:
                break
            due.append(step)
        return due

    @staticmethod
    def select_positions_for_partial_close(grid: Grid, fraction: Decimal) -> List[GridPosition]:
        """Worst entries first: highest for BUY grids, lowest for SELL grids."""
        open_positions = grid.open_positions()
        ordered = sorted(
            open_positions,
            key=lambda position: position.entry_price,
            reverse=grid.direction is GridDirection.BUY,
        )
        return ordered[: positions_to_close(len(ordered), fraction)]

    def should_take_profit(self, grid: Grid) -> bool:
        """
        Full take-profit: every opened position is closed, or realized profit
        reached ``target_profit_percent`` of the capital put to work.
        """
        if not grid.positions:
            return False
        if all(not position.is_open for position in grid.positions):
            return True

        invested = sum((p.entry_price * p.size for p in grid.positions), Decimal("0"))
        if invested < MIN_INVESTED:
            return False
        return grid.stats.total_profit / invested * HUNDRED >= self.config.target_profit_percent
