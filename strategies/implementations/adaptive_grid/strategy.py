"""
Adaptive Smart Grid

Signal-driven grid engine. Each accepted signal becomes a grid: an ATR-spaced
ladder of entry orders, each paired with a take-profit and a stop-loss. Only
the first entry is submitted up front; a periodic reconciliation pass walks
every active grid to escalate further entries, trail stops, take partial and
full profit, stop out on drawdown, and re-space pending levels when
volatility shifts.

All mutation of one grid (reconciliation, fill events, manual closes) runs
under that grid's ``asyncio.Lock``.
"""

import asyncio
import time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from exchange_clients.base_models import RETRYABLE_EXCEPTIONS, Candle, order_retrying
from helpers.event_notifier import GridEventNotifier
from helpers.unified_logger import resolve_log_dir
from strategies.base_module import TradingModule

from .config import AdaptiveGridConfig
from .errors import (
    AdaptiveGridError,
    GridCloseError,
    GridCreationError,
    GridNotFoundError,
    GridValidationError,
    ModuleNotInitializedError,
)
from .indicators import calculate_grid_parameters, compute_atr, rescale_for_volatility
from .models import (
    CompletionReason,
    Grid,
    GridCreationResult,
    GridDirection,
    GridOrder,
    GridStatus,
    OrderRole,
    OrderStatus,
    PartialTakeProfitStep,
    TradingSignal,
)
from .operations import GridOrderSubmitter, GridPositionCloser, GridPositionOpener
from .operations.open_position import ORDER_FAILURES
from .order_ladder import generate_grid_orders, reprice_pending_orders
from .persistence import GridPersistenceStore
from .risk_controller import GridRiskController
from .signal_intake import SignalIntake
from .utils import new_grid_id

EVENT_LOG_FILENAME = "grid_events.jsonl"
PERCENT_QUANTUM = Decimal("0.01")


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class AdaptiveSmartGrid(TradingModule):
    """
    Adaptive smart grid module.

    This module:
    1. Builds ATR-spaced entry ladders from trading signals
    2. Activates deeper entries as price reaches them
    3. Pairs every entry with take-profit and stop-loss orders
    4. Trails a grid-wide stop and takes partial profit in steps
    5. Re-spaces pending levels when volatility shifts
    """

    def __init__(
        self,
        config: Optional[AdaptiveGridConfig] = None,
        logger=None,
        *,
        record_events: bool = True,
    ):
        """
        Initialize the module.

        Args:
            config: Module parameters (defaults apply when omitted)
            logger: Injected logger; a strategy logger is created otherwise
            record_events: Append grid events to ``grid_events.jsonl``
        """
        self.config = config or AdaptiveGridConfig()
        super().__init__(logger=logger)

        self.record_events = record_events
        self.active_grids: Dict[str, Grid] = {}
        self.grid_history: List[Grid] = []

        self._grid_locks: Dict[str, asyncio.Lock] = {}
        self._creation_lock = asyncio.Lock()
        self._status_task: Optional[asyncio.Task] = None

        self.gateway = None
        self.store: Optional[GridPersistenceStore] = None
        self.event_notifier: Optional[GridEventNotifier] = None
        self.submitter: Optional[GridOrderSubmitter] = None
        self.opener: Optional[GridPositionOpener] = None
        self.closer: Optional[GridPositionCloser] = None

        self.signal_intake = SignalIntake(self)
        self.risk_controller = GridRiskController(self.config, self.logger)

    def get_module_id(self) -> str:
        return self.config.module_id

    def get_module_name(self) -> str:
        return "Adaptive Smart Grid"

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def _initialize_module(self) -> None:
        context = self.context
        self.gateway = context.gateway

        data_dir = Path(context.data_dir)
        self.store = GridPersistenceStore(data_dir, self.logger)
        self.store.ensure_data_dir()

        history_path = resolve_log_dir() / EVENT_LOG_FILENAME if self.record_events else None
        self.event_notifier = GridEventNotifier(
            context.event_bus,
            self.config.module_id,
            history_path=history_path,
            logger=self.logger,
        )

        self.submitter = GridOrderSubmitter(self.config, self.gateway, self.logger)
        self.opener = GridPositionOpener(self.submitter, self.logger, self._log_event)
        self.closer = GridPositionCloser(self.submitter, self.logger, self._log_event)

        self.active_grids, self.grid_history = await self.store.load()
        self._trim_history()
        self.logger.info(
            f"Loaded {len(self.active_grids)} active grids and {len(self.grid_history)} completed grids"
        )

        self.register_events()
        self._status_task = asyncio.create_task(self._status_loop())

        self.logger.log("Adaptive smart grid initialized with parameters:", "INFO")
        self.logger.log(f"  - Max Grid Size: {self.config.max_grid_size}", "INFO")
        self.logger.log(f"  - Grid Spacing: {self.config.grid_spacing_atr_multiplier} x ATR", "INFO")
        self.logger.log(
            f"  - TP / SL Factors: {self.config.take_profit_factor} / {self.config.stop_loss_factor}",
            "INFO",
        )
        self.logger.log(f"  - Max Concurrent Grids: {self.config.max_concurrent_grids}", "INFO")
        self.logger.log(f"  - Status Check Interval: {self.config.status_check_interval}s", "INFO")

    async def _cleanup_module(self) -> None:
        await self._stop_status_loop()
        self.unregister_events()
        await self._save_state()
        self.active_grids.clear()
        self.grid_history.clear()
        self._grid_locks.clear()

    def register_events(self) -> None:
        self.add_listener("tradingPair.changed", self._on_trading_pair_changed)
        self.add_listener("trading-signal", self._on_trading_signal)
        self.add_listener("order.executed", self._on_order_executed)
        self.add_listener("position.closed", self._on_position_closed)

    def register_api_endpoints(self, app) -> None:
        from .routes import build_router

        app.include_router(build_router(self))

    def _require_initialized(self) -> None:
        if not self.is_initialized or self.submitter is None:
            raise ModuleNotInitializedError("Adaptive smart grid module is not initialized")

    # ========================================================================
    # Configuration
    # ========================================================================

    def update_config(self, overrides: Mapping[str, Any]) -> AdaptiveGridConfig:
        """Validate ``overrides`` against the current config and swap it in."""
        overrides = dict(overrides or {})
        if "module_id" in overrides and overrides["module_id"] != self.config.module_id:
            raise GridValidationError("module_id cannot be changed at runtime")

        try:
            new_config = self.config.with_overrides(overrides)
        except ValidationError as exc:
            raise GridValidationError(f"Invalid configuration: {exc}") from exc

        self._apply_config(new_config)
        self.logger.info(f"Configuration updated: {', '.join(sorted(overrides)) or 'no changes'}")
        return new_config

    def _apply_config(self, config: AdaptiveGridConfig) -> None:
        self.config = config
        self.risk_controller.config = config
        if self.submitter is not None:
            self.submitter.config = config

    # ========================================================================
    # Event logging
    # ========================================================================

    def _log_event(self, event_type: str, message: str, log_level: str = "INFO", **context: Any) -> None:
        """
        Log a grid event and publish it on the bus.

        ``context`` becomes the event payload, so it may carry its own
        ``level`` field (ladder level, partial take-profit fraction).
        """
        self.logger.log(message, log_level.upper())
        if self.event_notifier is not None:
            self.event_notifier.notify(event_type, context)

    # ========================================================================
    # Bus handlers
    # ========================================================================

    def _on_trading_pair_changed(self, event: Dict[str, Any]) -> None:
        new_pair = event.get("new_pair") or event.get("pair")
        self.logger.info(f"Trading pair changed to {new_pair}")

    async def _on_trading_signal(self, event: Dict[str, Any]) -> None:
        try:
            signal = TradingSignal.from_dict(event.get("signal") or {})
        except (ValueError, ArithmeticError) as exc:
            self.logger.warning(f"Ignoring malformed trading signal: {exc}")
            return

        self.logger.info(
            f"Received signal: {signal.direction.value} {signal.pair} (confidence {signal.confidence})"
        )
        reason = self.signal_intake.rejection_reason(signal)
        if reason is not None:
            self.logger.info(f"Signal not suitable for a grid: {reason}")
            return

        try:
            result = await self.signal_intake.accept(signal)
        except AdaptiveGridError as exc:
            self.logger.warning(f"Grid creation from signal failed: {exc}")
            return
        self.logger.info(f"Grid created from signal: {result.grid_id}")

    async def _on_order_executed(self, event: Dict[str, Any]) -> None:
        order_id = event.get("order_id")
        if not order_id:
            self.logger.warning("order.executed event without order_id")
            return
        try:
            fill_price = _optional_decimal(event.get("fill_price"))
        except ArithmeticError:
            self.logger.warning(f"order.executed for {order_id} carries an invalid fill_price")
            return

        await self.update_order_status(
            event.get("grid_id"),
            order_id,
            event.get("status", OrderStatus.FILLED.value),
            fill_price=fill_price,
            fill_time=event.get("fill_time"),
        )

    async def _on_position_closed(self, event: Dict[str, Any]) -> None:
        grid_id = event.get("grid_id")
        position_id = event.get("position_id")
        if not grid_id or not position_id:
            return
        try:
            profit = _optional_decimal(event.get("profit"))
        except ArithmeticError:
            profit = None
        await self.handle_position_closed(grid_id, position_id, profit)

    # ========================================================================
    # Grid creation
    # ========================================================================

    async def create_grid_from_signal(
        self,
        signal: TradingSignal,
        options: Optional[Mapping[str, Any]] = None,
    ) -> GridCreationResult:
        """
        Build, register and activate a grid for ``signal``.

        Raises:
            SignalRejectedError: signal failed eligibility
            GridCreationError: chart data, sizing or the first order failed;
                nothing is left in ``active_grids``
        """
        self._require_initialized()
        options = dict(options or {})
        self.signal_intake.ensure_eligible(signal)

        try:
            candles = await self._fetch_candles(signal.pair)
        except ORDER_FAILURES as exc:
            raise GridCreationError(f"Chart data for {signal.pair} unavailable: {exc}") from exc

        params = calculate_grid_parameters(signal, candles, self.config, options)
        if params.grid_step <= 0:
            raise GridCreationError(
                f"Cannot size a grid for {signal.pair}: ATR unavailable from {len(candles)} candles"
            )

        grid_id = new_grid_id()
        entries, take_profits, stop_losses = generate_grid_orders(
            grid_id, signal.direction, signal.entry_point, params, self.config
        )
        grid = Grid(
            id=grid_id,
            pair=signal.pair,
            direction=signal.direction,
            start_price=signal.entry_point,
            current_price=signal.entry_point,
            params=params,
            signal=signal.snapshot(),
            entry_orders=entries,
            take_profit_orders=take_profits,
            stop_loss_orders=stop_losses,
            trailing_stop_enabled=self.config.trailing_stop_enabled,
            trailing_stop_activation_level=params.trailing_stop_activation_level,
            enable_partial_take_profit=self.config.enable_partial_take_profit,
            partial_take_profit_levels=[
                PartialTakeProfitStep(level.close_fraction, level.profit_percent)
                for level in self.config.partial_take_profit_levels
            ],
        )

        async with self._creation_lock:
            # The chart fetch yielded; another signal may have claimed the pair meanwhile.
            self.signal_intake.ensure_eligible(signal)
            self.active_grids[grid_id] = grid
            lock = self._lock_for(grid_id)

        async with lock:
            grid.status = GridStatus.PENDING
            try:
                placed = await self.submitter.place_order(grid, grid.entry_orders[0])
            except Exception as exc:
                self.active_grids.pop(grid_id, None)
                self._grid_locks.pop(grid_id, None)
                raise GridCreationError(f"Activating grid for {signal.pair} failed: {exc}") from exc

            grid.status = GridStatus.ACTIVE
            grid.touch()
            if not placed:
                self.logger.warning(
                    f"Grid {grid_id}: first entry not placed; it will be retried on the next check"
                )

            self._log_event(
                "grid.created",
                f"Grid {grid_id} created: {grid.direction.value} {grid.pair} from {grid.start_price}, "
                f"{params.grid_levels} levels, step {params.grid_step}, size {params.position_size}",
                grid_id=grid_id,
                pair=grid.pair,
                direction=grid.direction.value,
                start_price=grid.start_price,
                grid_levels=params.grid_levels,
                grid_step=params.grid_step,
                position_size=params.position_size,
                trend=params.trend.value,
            )
            await self._save_state()

        return GridCreationResult.from_grid(grid)

    async def _fetch_candles(self, pair: str) -> List[Candle]:
        async for attempt in order_retrying(
            max_attempts=self.config.order_retry_attempts,
            min_wait=self.config.order_retry_min_wait,
            max_wait=self.config.order_retry_max_wait,
            exception_type=RETRYABLE_EXCEPTIONS,
        ):
            with attempt:
                return await self.gateway.get_chart_data(
                    pair, self.config.chart_interval, self.config.chart_limit
                )
        return []

    # ========================================================================
    # Order and position events
    # ========================================================================

    async def update_order_status(
        self,
        grid_id: Optional[str],
        order_id: str,
        status: str,
        fill_price: Optional[Decimal] = None,
        fill_time: Optional[float] = None,
    ) -> bool:
        """
        Apply an exchange order update. Returns False when the grid or order
        is unknown or the update is a duplicate.
        """
        if not grid_id:
            grid_id = self._find_grid_for_order(order_id)
        if not grid_id or grid_id not in self.active_grids:
            return False

        try:
            new_status = OrderStatus(str(status).upper())
        except ValueError:
            self.logger.warning(f"Grid {grid_id}: unknown status {status!r} for order {order_id}")
            return False

        async with self._lock_for(grid_id):
            grid = self.active_grids.get(grid_id)
            if grid is None:
                return False
            order = grid.find_order(order_id)
            if order is None:
                self.logger.warning(f"Grid {grid_id}: order {order_id} not found")
                return False
            if order.status in (OrderStatus.FILLED, OrderStatus.CANCELED):
                return False

            self.logger.info(f"Grid {grid_id}: order {order.id} -> {new_status.value}")
            if new_status is OrderStatus.FILLED:
                await self._apply_fill_locked(grid, order, fill_price, fill_time)
            else:
                order.status = new_status
                order.updated_at = time.time()
                grid.touch()

            if self._all_positions_settled(grid):
                self.logger.info(f"Grid {grid_id}: every position closed, completing")
                await self._complete_grid_locked(grid, CompletionReason.ALL_POSITIONS_CLOSED)
            else:
                await self._save_state()
        return True

    async def _apply_fill_locked(
        self,
        grid: Grid,
        order: GridOrder,
        fill_price: Optional[Decimal],
        fill_time: Optional[float],
    ) -> None:
        order.status = OrderStatus.FILLED
        order.fill_price = fill_price if fill_price is not None else order.price
        order.fill_time = fill_time or time.time()
        order.updated_at = time.time()
        grid.stats.filled_orders += 1

        if order.role is OrderRole.ENTRY:
            await self.opener.open_position(grid, order, order.fill_price, order.fill_time)
            next_entry = next(
                (
                    entry
                    for entry in grid.entry_orders
                    if entry.level == order.level + 1 and entry.status is OrderStatus.PENDING
                ),
                None,
            )
            if next_entry is not None:
                await self.submitter.place_order(grid, next_entry)
        else:
            await self.closer.apply_exit_fill(grid, order, order.fill_price, order.fill_time)

    async def handle_position_closed(
        self,
        grid_id: str,
        position_id: str,
        profit: Optional[Decimal] = None,
    ) -> bool:
        """Record a position closed outside the grid's own exits."""
        if grid_id not in self.active_grids:
            return False

        async with self._lock_for(grid_id):
            grid = self.active_grids.get(grid_id)
            if grid is None:
                return False
            position = grid.find_position(position_id)
            if position is None or not position.is_open:
                return False

            self.closer.mark_closed(
                grid,
                position,
                grid.current_price,
                "POSITION_CLOSED",
                profit=profit,
            )
            await self.closer.cancel_orders(grid, grid.exit_orders_for(position.entry_order_id))

            if self._all_positions_settled(grid):
                await self._complete_grid_locked(grid, CompletionReason.ALL_POSITIONS_CLOSED)
            else:
                await self._save_state()
        return True

    def _find_grid_for_order(self, order_id: str) -> Optional[str]:
        for grid_id, grid in self.active_grids.items():
            if grid.find_order(order_id) is not None:
                return grid_id
        return None

    @staticmethod
    def _all_positions_settled(grid: Grid) -> bool:
        if not grid.positions or grid.open_positions():
            return False
        return not grid.active_orders()

    # ========================================================================
    # Reconciliation
    # ========================================================================

    async def _status_loop(self) -> None:
        self.logger.info(
            f"Grid status checks every {self.config.status_check_interval}s"
        )
        while True:
            await asyncio.sleep(float(self.config.status_check_interval))
            await self.check_all_grids()

    async def _stop_status_loop(self) -> None:
        task, self._status_task = self._status_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def check_all_grids(self) -> Dict[str, Optional[str]]:
        """Run one reconciliation pass over every active grid."""
        results: Dict[str, Optional[str]] = {}
        if not self.active_grids:
            return results

        self.logger.debug(f"Checking {len(self.active_grids)} active grids")
        for grid_id in list(self.active_grids):
            try:
                results[grid_id] = await self.check_grid_status(grid_id)
            except Exception as exc:
                self.logger.error(f"Status check for grid {grid_id} failed: {exc}")
                results[grid_id] = None
        return results

    async def check_grid_status(self, grid_id: str) -> Optional[str]:
        """
        Reconcile one grid against the market.

        Returns:
            The completion reason when the grid completed during this pass,
            otherwise None.
        """
        self._require_initialized()
        async with self._lock_for(grid_id):
            grid = self.active_grids.get(grid_id)
            if grid is None or grid.status is not GridStatus.ACTIVE:
                return None

            price = await self._current_price(grid.pair)
            grid.current_price = price
            grid.last_check_time = time.time()
            grid.stats.observe_price(price)

            if self.risk_controller.should_stop_out(grid, price):
                self.logger.warning(f"Grid {grid_id} hit max drawdown at {price}, closing")
                return await self._stop_grid_locked(grid, CompletionReason.STOP_LOSS, price)

            if self._update_trailing_stop(grid, price):
                self.logger.warning(
                    f"Grid {grid_id}: trailing stop {grid.trailing_stop_value} hit at {price}"
                )
                return await self._stop_grid_locked(grid, CompletionReason.TRAILING_STOP, price)

            await self._execute_partial_take_profit(grid, price)
            await self._escalate_pending_entries(grid, price)

            if self.risk_controller.should_take_profit(grid):
                self.logger.info(f"Grid {grid_id} reached take profit, closing")
                return await self._stop_grid_locked(grid, CompletionReason.TAKE_PROFIT, price)

            await self._adjust_for_volatility(grid)
            await self._save_state()
        return None

    async def _current_price(self, pair: str) -> Decimal:
        ticker = await self.gateway.get_ticker(pair)
        return Decimal(str(ticker.price))

    def _update_trailing_stop(self, grid: Grid, price: Decimal) -> bool:
        """Arm, ratchet and evaluate the trailing stop. True when price crossed the trail."""
        controller = self.risk_controller
        if controller.should_arm_trailing_stop(grid, price):
            value = controller.arm_trailing_stop(grid, price)
            self._log_event(
                "grid.trailingStop.activated",
                f"Grid {grid.id}: trailing stop armed at {value}",
                grid_id=grid.id,
                value=value,
                activation_price=price,
            )
        elif grid.trailing_stop_value is not None:
            value = controller.ratchet_trailing_stop(grid, price)
            if value is not None:
                self._log_event(
                    "grid.trailingStop.updated",
                    f"Grid {grid.id}: trailing stop raised to {value}"
                    if grid.direction is GridDirection.BUY
                    else f"Grid {grid.id}: trailing stop lowered to {value}",
                    grid_id=grid.id,
                    value=value,
                    current_price=price,
                )

        return controller.is_trailing_stop_triggered(grid, price)

    async def _execute_partial_take_profit(self, grid: Grid, price: Decimal) -> int:
        """Close worst-entry slices for every partial level reached. Returns levels executed."""
        profit_percent = self.risk_controller.blended_profit_percent(grid, price)
        if profit_percent is None:
            return 0

        executed = 0
        for step in self.risk_controller.due_partial_steps(grid, profit_percent):
            positions = self.risk_controller.select_positions_for_partial_close(grid, step.close_fraction)
            if not positions:
                break
            closed = await self.closer.close_positions_at_market(
                grid, positions, price, f"PARTIAL_TP_{step.label}"
            )
            if not closed:
                break

            grid.partial_take_profit_executed.append(step.close_fraction)
            executed += 1
            self._log_event(
                "grid.partialTakeProfit",
                f"Grid {grid.id}: partial take profit {step.label} at "
                f"{profit_percent.quantize(PERCENT_QUANTUM)}% closed {len(closed)} positions",
                grid_id=grid.id,
                level=step.close_fraction,
                profit_percent=profit_percent.quantize(PERCENT_QUANTUM),
                closed_positions=len(closed),
                price=price,
            )
        return executed

    async def _escalate_pending_entries(self, grid: Grid, price: Decimal) -> bool:
        """Submit the next ladder entry once price is close enough to it."""
        pending = sorted(
            (entry for entry in grid.entry_orders if entry.status is OrderStatus.PENDING),
            key=lambda entry: entry.level,
        )
        if not pending:
            return False

        working = [
            entry
            for entry in grid.entry_orders
            if entry.status in (OrderStatus.ACTIVE, OrderStatus.FILLED)
        ]
        if not working:
            return await self.submitter.place_order(grid, pending[0])

        deepest = max(entry.level for entry in working)
        next_entry = next((entry for entry in pending if entry.level == deepest + 1), None)
        if next_entry is None:
            return False

        tolerance = self.config.escalation_tolerance
        if grid.direction is GridDirection.BUY:
            reached = price <= next_entry.price * (Decimal("1") + tolerance)
        else:
            reached = price >= next_entry.price * (Decimal("1") - tolerance)

        if not reached:
            return False
        return await self.submitter.place_order(grid, next_entry)

    async def _adjust_for_volatility(self, grid: Grid) -> bool:
        """Re-space pending levels when ATR left the configured band."""
        try:
            candles = await self._fetch_candles(grid.pair)
        except ORDER_FAILURES as exc:
            self.logger.warning(f"Grid {grid.id}: volatility check skipped, chart data unavailable: {exc}")
            return False

        current_atr = compute_atr(candles, self.config.atr_period)
        new_params = rescale_for_volatility(grid.params, current_atr, self.config)
        if new_params is None:
            return False

        old_atr, old_step = grid.params.atr, grid.params.grid_step
        grid.params = new_params
        repriced = reprice_pending_orders(grid)
        grid.touch()

        self._log_event(
            "grid.adjusted",
            f"Grid {grid.id}: volatility shift, ATR {old_atr} -> {current_atr}, "
            f"step {old_step} -> {new_params.grid_step}, {repriced} pending levels repriced",
            grid_id=grid.id,
            old_atr=old_atr,
            new_atr=current_atr,
            old_grid_step=old_step,
            new_grid_step=new_params.grid_step,
            repriced_orders=repriced,
        )
        return True

    # ========================================================================
    # Closing and completion
    # ========================================================================

    async def close_grid(self, grid_id: str, reason: str = CompletionReason.MANUAL_CLOSE) -> bool:
        """
        Close every open position at market and complete the grid.

        Returns False when ``grid_id`` is not an active grid.

        Raises:
            GridCloseError: a market close failed; the grid stays active
        """
        self._require_initialized()
        if grid_id not in self.active_grids:
            return False
        async with self._lock_for(grid_id):
            grid = self.active_grids.get(grid_id)
            if grid is None:
                return False
            if await self._close_grid_locked(grid, reason or CompletionReason.MANUAL_CLOSE):
                return True
            still_open = grid.open_positions()
            if still_open:
                raise GridCloseError(
                    f"Grid {grid_id}: {len(still_open)} positions could not be closed at market"
                )
            return False

    async def complete_grid(self, grid_id: str, reason: str) -> bool:
        """Complete a grid without touching open positions."""
        self._require_initialized()
        if grid_id not in self.active_grids:
            return False
        async with self._lock_for(grid_id):
            grid = self.active_grids.get(grid_id)
            if grid is None:
                return False
            return await self._complete_grid_locked(grid, reason)

    async def _stop_grid_locked(self, grid: Grid, reason: str, price: Decimal) -> Optional[str]:
        if await self._close_grid_locked(grid, reason, price):
            return reason
        return None

    async def _close_grid_locked(self, grid: Grid, reason: str, price: Optional[Decimal] = None) -> bool:
        """
        Flatten open positions, then complete the grid.

        Positions whose market close failed keep the grid ACTIVE with their
        exits in place; the next pass tries again.
        """
        open_positions = grid.open_positions()
        if open_positions:
            if price is None:
                try:
                    price = await self._current_price(grid.pair)
                except ORDER_FAILURES as exc:
                    self.logger.warning(
                        f"Grid {grid.id}: ticker unavailable ({exc}), closing at last price {grid.current_price}"
                    )
                    price = grid.current_price
            await self.closer.close_positions_at_market(grid, open_positions, price, reason)

            still_open = grid.open_positions()
            if still_open:
                self.logger.warning(
                    f"Grid {grid.id}: {reason} left {len(still_open)} positions open, "
                    f"keeping the grid active until they are flat"
                )
                await self._save_state()
                return False
        return await self._complete_grid_locked(grid, reason)

    async def _complete_grid_locked(self, grid: Grid, reason: str) -> bool:
        if grid.status is GridStatus.COMPLETED or self.active_grids.get(grid.id) is not grid:
            return False

        outstanding = [
            order
            for order in grid.all_orders()
            if order.status in (OrderStatus.PENDING, OrderStatus.ACTIVE)
        ]
        await self.closer.cancel_orders(grid, outstanding)

        grid.status = GridStatus.COMPLETED
        grid.completed_at = time.time()
        grid.completion_reason = reason
        grid.stats.final_profit = grid.stats.total_profit
        grid.stats.duration = grid.completed_at - grid.created_at

        del self.active_grids[grid.id]
        self._grid_locks.pop(grid.id, None)
        self.grid_history.append(grid)
        self._trim_history()

        self._log_event(
            "grid.completed",
            f"Grid {grid.id} completed: {reason}. Final profit {grid.stats.final_profit}",
            grid_id=grid.id,
            reason=reason,
            profit=grid.stats.final_profit,
            duration=grid.stats.duration,
        )
        await self._save_state()
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    def get_active_grids(self) -> List[Grid]:
        return list(self.active_grids.values())

    def get_grid_history(self, limit: int = 50) -> List[Grid]:
        """Completed grids, newest first."""
        ordered = sorted(self.grid_history, key=lambda grid: grid.completed_at or 0, reverse=True)
        return ordered[: max(0, int(limit))]

    def get_grid_info(self, grid_id: str) -> Optional[Grid]:
        grid = self.active_grids.get(grid_id)
        if grid is not None:
            return grid
        return next((grid for grid in self.grid_history if grid.id == grid_id), None)

    def require_grid(self, grid_id: str) -> Grid:
        grid = self.get_grid_info(grid_id)
        if grid is None:
            raise GridNotFoundError(f"Grid {grid_id} not found")
        return grid

    # ========================================================================
    # Internals
    # ========================================================================

    def _lock_for(self, grid_id: str) -> asyncio.Lock:
        lock = self._grid_locks.get(grid_id)
        if lock is None:
            lock = asyncio.Lock()
            self._grid_locks[grid_id] = lock
        return lock

    def _trim_history(self) -> None:
        overflow = len(self.grid_history) - self.config.max_history_size
        if overflow <= 0:
            return
        self.grid_history.sort(key=lambda grid: grid.completed_at or 0)
        del self.grid_history[:overflow]

    async def _save_state(self) -> None:
        if self.store is not None:
            await self.store.save(self.active_grids, self.grid_history)
