"""
Market analysis and grid sizing.

Pure functions over candle sequences (oldest first). Every function degrades
to a neutral value (0 for ATR/EMA, 1 for volume ratio) when there is not
enough data, so a thin chart never aborts grid creation.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from exchange_clients.base_models import Candle

from .config import AdaptiveGridConfig
from .models import GridDirection, GridParams, MarketConditions, TradingSignal, Trend
from .utils import round_size

MIN_GRID_LEVELS = 2
MAX_GRID_LEVELS = 10
VOLATILE_ATR_MULTIPLE = Decimal("1.5")


def _true_ranges(candles: Sequence[Candle]):
    for previous, current in zip(candles, candles[1:]):
        yield max(
            current.high - current.low,
            abs(current.high - previous.close),
            abs(current.low - previous.close),
        )


def compute_atr(candles: Sequence[Candle], period: int) -> Decimal:
    """Average true range over the last ``period`` intervals."""
    if not candles or period <= 0 or len(candles) < period + 1:
        return Decimal("0")

    ranges = list(_true_ranges(candles))[-period:]
    return sum(ranges, Decimal("0")) / Decimal(len(ranges))


def compute_ema(candles: Sequence[Candle], period: int) -> Decimal:
    """EMA of closes, seeded with the SMA of the first ``period`` closes."""
    if not candles or period <= 0 or len(candles) < period:
        return Decimal("0")

    ema = sum((candle.close for candle in candles[:period]), Decimal("0")) / Decimal(period)
    multiplier = Decimal(2) / Decimal(period + 1)
    for candle in candles[period:]:
        ema = (candle.close - ema) * multiplier + ema
    return ema


def compute_average_atr(candles: Sequence[Candle], period: int, windows: int) -> Decimal:
    """Mean ATR over ``windows`` progressively truncated trailing slices."""
    atrs = []
    for offset in range(windows):
        if len(candles) < period + offset + 1:
            break
        atrs.append(compute_atr(candles[: len(candles) - offset], period))

    if not atrs:
        return Decimal("0")
    return sum(atrs, Decimal("0")) / Decimal(len(atrs))


def compute_volume_ratio(candles: Sequence[Candle], periods: int) -> Decimal:
    """Last volume relative to the mean of the ``periods`` volumes before it."""
    if not candles or periods <= 0 or len(candles) < periods + 1:
        return Decimal("1")

    baseline = sum((candle.volume for candle in candles[-periods - 1:-1]), Decimal("0")) / Decimal(periods)
    if baseline <= 0:
        return Decimal("1")
    return candles[-1].volume / baseline


def determine_trend(ema_fast: Decimal, ema_slow: Decimal) -> Trend:
    if ema_fast > ema_slow:
        return Trend.BULLISH
    if ema_fast < ema_slow:
        return Trend.BEARISH
    return Trend.NEUTRAL


def clamp_grid_levels(levels: int, max_grid_size: int = MAX_GRID_LEVELS) -> int:
    upper = min(MAX_GRID_LEVELS, max_grid_size)
    return max(MIN_GRID_LEVELS, min(int(levels), upper))


def determine_optimal_grid_levels(signal: TradingSignal, trend: Trend) -> int:
    """
    Pick a ladder depth from trend alignment and signal confidence.

    Base 5 levels; 7 with the trend, 3 against it; +2 above 0.9 confidence,
    -1 below 0.75; clamped to [2, 10].
    """
    levels = 5
    with_trend = Trend.BULLISH if signal.direction is GridDirection.BUY else Trend.BEARISH
    against_trend = Trend.BEARISH if signal.direction is GridDirection.BUY else Trend.BULLISH

    if trend is with_trend:
        levels = 7
    elif trend is against_trend:
        levels = 3

    if signal.confidence > Decimal("0.9"):
        levels += 2
    elif signal.confidence < Decimal("0.75"):
        levels -= 1

    return clamp_grid_levels(levels)


def calculate_position_size(
    signal: TradingSignal,
    atr: Decimal,
    config: AdaptiveGridConfig,
    options: Optional[Mapping[str, Any]] = None,
) -> Decimal:
    """Risk-based size: ``balance * risk% / stop distance`` rounded down to 0.001."""
    options = options or {}
    override = options.get("position_size")
    if override:
        return Decimal(str(override))

    risk_amount = config.account_balance * config.max_risk_per_trade / Decimal("100")
    if signal.stop_loss is not None:
        stop_distance = abs(signal.entry_point - signal.stop_loss)
    else:
        stop_distance = atr * config.stop_loss_factor

    if stop_distance <= 0:
        return config.default_lot_size

    size = round_size(risk_amount / stop_distance)
    return size if size > 0 else config.default_lot_size


def calculate_grid_parameters(
    signal: TradingSignal,
    candles: Sequence[Candle],
    config: AdaptiveGridConfig,
    options: Optional[Mapping[str, Any]] = None,
) -> GridParams:
    """Build ``GridParams`` for ``signal`` from recent candles."""
    options = options or {}

    atr = compute_atr(candles, config.atr_period)
    ema_fast = compute_ema(candles, config.ema_fast_period)
    ema_slow = compute_ema(candles, config.ema_slow_period)
    trend = determine_trend(ema_fast, ema_slow)

    grid_step = atr * config.grid_spacing_atr_multiplier

    requested_levels = options.get("grid_levels")
    if requested_levels:
        grid_levels = int(requested_levels)
    else:
        grid_levels = determine_optimal_grid_levels(signal, trend)
    grid_levels = clamp_grid_levels(grid_levels, config.max_grid_size)

    take_profit_distance = grid_step * config.take_profit_factor
    stop_loss_distance = grid_step * config.stop_loss_factor

    activation_offset = take_profit_distance * config.trailing_stop_activation_percent
    if signal.direction is GridDirection.BUY:
        activation_level = signal.entry_point + activation_offset
    else:
        activation_level = signal.entry_point - activation_offset

    average_atr = compute_average_atr(candles, config.atr_period, config.average_atr_windows)
    volume_ratio = compute_volume_ratio(candles, config.volume_ratio_periods)

    return GridParams(
        atr=atr,
        trend=trend,
        grid_step=grid_step,
        grid_levels=grid_levels,
        position_size=calculate_position_size(signal, atr, config, options),
        take_profit_distance=take_profit_distance,
        stop_loss_distance=stop_loss_distance,
        trailing_stop_activation_level=activation_level,
        ema_fast=ema_fast,
        ema_slow=ema_slow,
        market_conditions=MarketConditions(
            is_volatile=atr > average_atr * VOLATILE_ATR_MULTIPLE,
            volume_ratio=volume_ratio,
            high_volume=volume_ratio >= config.volume_threshold,
        ),
    )


def volatility_shifted(stored_atr: Decimal, current_atr: Decimal, config: AdaptiveGridConfig) -> bool:
    """True when ``current_atr / stored_atr`` leaves the configured band."""
    if stored_atr <= 0 or current_atr <= 0:
        return False
    ratio = current_atr / stored_atr
    return ratio < config.volatility_lower_ratio or ratio > config.volatility_upper_ratio


def rescale_for_volatility(
    params: GridParams,
    current_atr: Decimal,
    config: AdaptiveGridConfig,
) -> Optional[GridParams]:
    """
    Return params re-spaced for ``current_atr``, or None when volatility
    stayed inside the band.
    """
    if not volatility_shifted(params.atr, current_atr, config):
        return None

    grid_step = current_atr * config.grid_spacing_atr_multiplier
    return replace(
        params,
        atr=current_atr,
        grid_step=grid_step,
        take_profit_distance=grid_step * config.take_profit_factor,
        stop_loss_distance=grid_step * config.stop_loss_factor,
    )

