"""
Close-position orchestration for adaptive grids.

Covers exits filled on the exchange (take-profit / stop-loss), market
closes driven by the grid itself (partial take-profit, stop-outs, manual
closes), and order cancellation.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from ..models import (
    Grid,
    GridOrder,
    GridPosition,
    OrderRole,
    OrderStatus,
    OrderType,
    PositionStatus,
)
from .open_position import GridOrderSubmitter

LogEventFn = Callable[..., None]


class GridPositionCloser:
    """Manage exit bookkeeping, market closes and cancellations."""

    def __init__(
        self,
        submitter: GridOrderSubmitter,
        logger,
        log_event: LogEventFn,
    ) -> None:
        self.submitter = submitter
        self.logger = logger
        self._log_event = log_event

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    async def cancel_order(self, grid: Grid, order: GridOrder) -> bool:
        """
        Cancel ``order``. Orders never sent to the exchange are canceled
        locally; a failed exchange cancel leaves the order ACTIVE.
        """
        if order.status in (OrderStatus.FILLED, OrderStatus.CANCELED):
            return False

        if order.status is OrderStatus.ACTIVE and order.exchange_order_id:
            if not await self.submitter.cancel_order(grid.pair, order.exchange_order_id):
                return False

        order.status = OrderStatus.CANCELED
        order.updated_at = time.time()
        grid.touch()
        return True

    async def cancel_orders(self, grid: Grid, orders: Iterable[GridOrder]) -> int:
        canceled = 0
        for order in list(orders):
            if await self.cancel_order(grid, order):
                canceled += 1
        return canceled

    # ------------------------------------------------------------------ #
    # Position bookkeeping
    # ------------------------------------------------------------------ #
    def mark_closed(
        self,
        grid: Grid,
        position: GridPosition,
        close_price: Optional[Decimal],
        reason: str,
        close_order_id: Optional[str] = None,
        profit: Optional[Decimal] = None,
        close_time: Optional[float] = None,
    ) -> Decimal:
        """
        Close ``position`` in memory and fold its profit into the grid stats.

        ``profit`` overrides the computed value (used when the exchange reports
        realized P/L directly).
        """
        if profit is None:
            profit = position.pnl_at(close_price) if close_price is not None else Decimal("0")

        position.status = PositionStatus.CLOSED
        position.close_time = close_time or time.time()
        position.close_price = close_price
        position.close_order_id = close_order_id
        position.close_reason = reason
        position.profit = profit

        grid.stats.total_profit += profit
        grid.stats.closed_positions += 1
        grid.touch()

        self._log_event(
            "grid.position.closed",
            f"Grid {grid.id}: closed position {position.id} ({reason}) profit {profit}",
            grid_id=grid.id,
            position_id=position.id,
            close_price=close_price,
            reason=reason,
            profit=profit,
        )
        return profit

    async def apply_exit_fill(
        self,
        grid: Grid,
        exit_order: GridOrder,
        fill_price: Optional[Decimal] = None,
        fill_time: Optional[float] = None,
    ) -> Optional[GridPosition]:
        """Close the position behind a filled take-profit/stop-loss and cancel its sibling."""
        position = None
        if exit_order.position_id:
            position = grid.find_position(exit_order.position_id)
        if position is None:
            position = next(
                (p for p in grid.positions if p.entry_order_id == exit_order.entry_order_id),
                None,
            )
        if position is None or not position.is_open:
            self.logger.warning(
                f"Grid {grid.id}: exit {exit_order.id} filled without an open position"
            )
            return None

        reason = "TAKE_PROFIT" if exit_order.role is OrderRole.TAKE_PROFIT else "STOP_LOSS"
        price = fill_price if fill_price is not None else exit_order.price
        self.mark_closed(grid, position, price, reason, close_order_id=exit_order.id, close_time=fill_time)

        siblings = [
            order
            for order in grid.exit_orders_for(exit_order.entry_order_id)
            if order is not exit_order
        ]
        await self.cancel_orders(grid, siblings)
        return position

    # ------------------------------------------------------------------ #
    # Market closes
    # ------------------------------------------------------------------ #
    async def close_positions_at_market(
        self,
        grid: Grid,
        positions: Iterable[GridPosition],
        price: Decimal,
        reason: str,
    ) -> List[GridPosition]:
        """
        Flatten each open position with an opposite-side market order.

        Positions whose market order fails stay OPEN.
        """
        closed: List[GridPosition] = []
        side = grid.direction.opposite.value
        for position in list(positions):
            if position.status is not PositionStatus.OPEN:
                continue

            result = await self.submitter.create_order(grid.pair, side, OrderType.MARKET, position.size)
            if result is None or not result.success:
                detail = result.error_message if result is not None else "gateway unavailable"
                self.logger.warning(
                    f"Grid {grid.id}: market close of {position.id} failed: {detail}"
                )
                continue

            self.mark_closed(grid, position, price, reason, close_order_id=result.order_id)
            await self.cancel_orders(grid, grid.exit_orders_for(position.entry_order_id))
            closed.append(position)

        return closed
