"""
Order submission and position opening for adaptive grids.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Callable, Optional

from exchange_clients.base import BaseExchangeGateway
from exchange_clients.base_models import (
    RETRYABLE_EXCEPTIONS,
    GatewayError,
    OrderResult,
    order_retrying,
)

from ..config import AdaptiveGridConfig
from ..models import Grid, GridOrder, GridPosition, OrderStatus, OrderType
from ..utils import position_id_for

LogEventFn = Callable[..., None]

# Gateway failures that leave an order in its prior status instead of aborting the pass.
ORDER_FAILURES = (GatewayError, asyncio.TimeoutError, OSError)


class GridOrderSubmitter:
    """Submit ladder orders to the gateway with retry and backoff."""

    def __init__(
        self,
        config: AdaptiveGridConfig,
        gateway: BaseExchangeGateway,
        logger,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.logger = logger

    def _retrying(self):
        return order_retrying(
            max_attempts=self.config.order_retry_attempts,
            min_wait=self.config.order_retry_min_wait,
            max_wait=self.config.order_retry_max_wait,
            exception_type=RETRYABLE_EXCEPTIONS,
        )

    async def create_order(
        self,
        symbol: str,
        side: str,
        order_type: OrderType,
        size: Decimal,
        price: Optional[Decimal] = None,
    ) -> Optional[OrderResult]:
        """
        Call ``create_order`` under the retry policy.

        Returns:
            The gateway result, or None once every attempt failed.
        """
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self.gateway.create_order(
                        symbol,
                        side,
                        order_type.value,
                        size,
                        price if order_type is not OrderType.MARKET else None,
                    )
        except ORDER_FAILURES as exc:
            self.logger.error(
                f"Order {side} {order_type.value} {size} {symbol} @ {price} failed: {exc}"
            )
        return None

    async def cancel_order(self, symbol: str, exchange_order_id: str) -> bool:
        """Call ``cancel_order`` under the retry policy."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self.gateway.cancel_order(symbol, exchange_order_id)
            return True
        except ORDER_FAILURES as exc:
            self.logger.error(f"Cancel of order {exchange_order_id} on {symbol} failed: {exc}")
            return False

    async def place_order(self, grid: Grid, order: GridOrder) -> bool:
        """
        Submit a PENDING ladder order and mark it ACTIVE.

        A failed submission leaves the order PENDING so the next
        reconciliation pass can try again.
        """
        if order.status is not OrderStatus.PENDING:
            return False

        side = grid.direction.opposite.value if order.is_exit else grid.direction.value
        result = await self.create_order(grid.pair, side, order.type, order.size, order.price)
        if result is None:
            return False
        if not result.success:
            self.logger.warning(
                f"Grid {grid.id}: order {order.id} rejected: {result.error_message or 'unknown error'}"
            )
            return False

        order.status = OrderStatus.ACTIVE
        order.exchange_order_id = result.order_id
        order.updated_at = time.time()
        grid.touch()
        self.logger.info(
            f"Grid {grid.id}: placed {order.role.value} {side} {order.size} @ {order.price} "
            f"(level {order.level}, exchange id {order.exchange_order_id})"
        )
        return True


class GridPositionOpener:
    """Turn a filled entry order into a tracked position with live exits."""

    def __init__(
        self,
        submitter: GridOrderSubmitter,
        logger,
        log_event: LogEventFn,
    ) -> None:
        self.submitter = submitter
        self.logger = logger
        self._log_event = log_event

    async def open_position(
        self,
        grid: Grid,
        entry: GridOrder,
        fill_price: Optional[Decimal] = None,
        fill_time: Optional[float] = None,
    ) -> GridPosition:
        """Record the position for ``entry`` and submit its take-profit and stop-loss."""
        existing = next((p for p in grid.positions if p.entry_order_id == entry.id), None)
        if existing is not None:
            return existing

        entry_price = fill_price if fill_price is not None else entry.price
        position = GridPosition(
            id=position_id_for(grid.id, entry.level),
            entry_order_id=entry.id,
            entry_price=entry_price,
            size=entry.size,
            direction=grid.direction,
            level=entry.level,
            open_time=fill_time or time.time(),
        )
        grid.positions.append(position)
        entry.position_id = position.id
        grid.touch()

        self._log_event(
            "grid.position.opened",
            f"Grid {grid.id}: opened position {position.id} {position.size} @ {entry_price}",
            grid_id=grid.id,
            position_id=position.id,
            entry_price=entry_price,
            size=position.size,
            level=position.level,
        )

        for exit_order in grid.exit_orders_for(entry.id):
            exit_order.position_id = position.id
            if exit_order.status is OrderStatus.PENDING:
                await self.submitter.place_order(grid, exit_order)

        return position
