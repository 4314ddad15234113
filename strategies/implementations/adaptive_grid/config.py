"""
Adaptive Smart Grid Configuration

Pydantic models for the module parameters. The configuration is immutable:
updates go through ``with_overrides`` which validates and returns a copy.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PartialTakeProfitLevel(BaseModel):
    """One partial take-profit step: close a fraction once a profit threshold is met."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    close_fraction: Decimal = Field(
        ...,
        description="Fraction of open positions to close at this level",
        gt=0,
        le=1,
    )
    profit_percent: Decimal = Field(
        ...,
        description="Blended profit (% of average entry) required to fire this level",
        gt=0,
    )


def _default_partial_levels() -> List[PartialTakeProfitLevel]:
    return [
        PartialTakeProfitLevel(close_fraction=Decimal("0.3"), profit_percent=Decimal("0.5")),
        PartialTakeProfitLevel(close_fraction=Decimal("0.5"), profit_percent=Decimal("1.0")),
        PartialTakeProfitLevel(close_fraction=Decimal("0.7"), profit_percent=Decimal("1.5")),
    ]


class AdaptiveGridConfig(BaseModel):
    """Configuration for the adaptive smart grid module."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    module_id: str = Field("adaptive-smart-grid", description="Registry key for the module")

    # Grid shape
    max_grid_size: int = Field(10, description="Maximum number of ladder levels", ge=2, le=10)
    grid_spacing_atr_multiplier: Decimal = Field(
        Decimal("0.5"), description="Grid step as a multiple of ATR", gt=0
    )
    default_lot_size: Decimal = Field(
        Decimal("0.01"), description="Position size used when risk sizing is impossible", gt=0
    )
    scaling_factor: Decimal = Field(
        Decimal("1.2"), description="Per-level size multiplier for dynamic sizing", gt=0
    )
    dynamic_position_sizing: bool = Field(True, description="Scale entry size by level")

    # Exits
    take_profit_factor: Decimal = Field(Decimal("1.5"), description="TP distance in grid steps", gt=0)
    stop_loss_factor: Decimal = Field(Decimal("2.0"), description="SL distance in grid steps", gt=0)
    trailing_stop_enabled: bool = Field(True, description="Enable the grid-wide trailing stop")
    trailing_stop_activation_percent: Decimal = Field(
        Decimal("0.5"),
        description="Trailing stop arms after this fraction of the TP distance",
        gt=0,
        le=1,
    )
    enable_partial_take_profit: bool = Field(True, description="Enable partial take-profit")
    partial_take_profit_levels: List[PartialTakeProfitLevel] = Field(
        default_factory=_default_partial_levels,
        description="Partial take-profit steps",
    )
    target_profit_percent: Decimal = Field(
        Decimal("5.0"),
        description="Realized profit (% of invested) that completes the grid",
        gt=0,
    )

    # Market analysis
    atr_period: int = Field(14, ge=1, le=500)
    ema_fast_period: int = Field(50, ge=1, le=1000)
    ema_slow_period: int = Field(200, ge=1, le=1000)
    average_atr_windows: int = Field(5, ge=1, le=100)
    volume_ratio_periods: int = Field(5, ge=1, le=500)
    chart_interval: str = Field("1h", description="Candle interval used for analysis")
    chart_limit: int = Field(200, ge=2, le=5000, description="Candles fetched per analysis")
    volatility_lower_ratio: Decimal = Field(Decimal("0.7"), gt=0, lt=1)
    volatility_upper_ratio: Decimal = Field(Decimal("1.5"), gt=1)

    # Filters
    volume_threshold: Decimal = Field(Decimal("1.5"), gt=0)
    minimum_signal_confidence: Decimal = Field(Decimal("0.7"), ge=0, le=1)

    # Risk
    account_balance: Decimal = Field(
        Decimal("1000"), description="Quote balance used for risk sizing", gt=0
    )
    max_risk_per_trade: Decimal = Field(
        Decimal("1.0"), description="Risk per trade (% of balance)", gt=0, le=100
    )
    max_drawdown_percent: Decimal = Field(
        Decimal("10.0"), description="Unrealized loss (% of invested) that stops the grid", gt=0
    )
    max_concurrent_grids: int = Field(3, ge=1, le=100)

    # Execution
    escalation_tolerance: Decimal = Field(
        Decimal("0.01"), description="Price tolerance for activating the next level", ge=0, lt=1
    )
    status_check_interval: float = Field(60.0, description="Reconciliation period (seconds)", gt=0)
    order_retry_attempts: int = Field(3, ge=1, le=10)
    order_retry_min_wait: float = Field(0.5, ge=0, le=60)
    order_retry_max_wait: float = Field(5.0, ge=0, le=300)

    # Storage
    max_history_size: int = Field(500, ge=1, le=100_000, description="Completed grids kept")

    @field_validator("partial_take_profit_levels")
    @classmethod
    def validate_partial_levels(cls, levels: List[PartialTakeProfitLevel]) -> List[PartialTakeProfitLevel]:
        """Sort by threshold and reject duplicate close fractions."""
        fractions = [level.close_fraction for level in levels]
        if len(set(fractions)) != len(fractions):
            raise ValueError("Partial take-profit close fractions must be unique")
        return sorted(levels, key=lambda level: level.profit_percent)

    @model_validator(mode="after")
    def validate_periods(self) -> "AdaptiveGridConfig":
        if self.ema_fast_period >= self.ema_slow_period:
            raise ValueError("ema_fast_period must be shorter than ema_slow_period")
        if self.order_retry_max_wait < self.order_retry_min_wait:
            raise ValueError("order_retry_max_wait must be >= order_retry_min_wait")
        return self

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "AdaptiveGridConfig":
        """Return a validated copy with ``overrides`` merged in."""
        if not overrides:
            return self
        merged = self.model_dump()
        merged.update(overrides)
        return AdaptiveGridConfig(**merged)
