"""
Adaptive Smart Grid Data Models

Grid, order, position and signal structures plus their JSON (de)serialisation.
Prices and sizes are ``Decimal`` in memory and floats on disk.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class GridDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "GridDirection":
        return GridDirection.SELL if self is GridDirection.BUY else GridDirection.BUY


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class GridStatus(str, Enum):
    """Grid lifecycle; transitions only move forward."""
    CREATED = "CREATED"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FILLED = "FILLED"
    CANCELED = "CANCELED"


class OrderType(str, Enum):
    LIMIT = "LIMIT"
    STOP = "STOP"
    MARKET = "MARKET"


class OrderRole(str, Enum):
    ENTRY = "ENTRY"
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CompletionReason:
    """Built-in completion reasons; manual closes may pass any string."""
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    ALL_POSITIONS_CLOSED = "ALL_POSITIONS_CLOSED"
    MANUAL_CLOSE = "MANUAL_CLOSE"


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _num(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass(frozen=True)
class TradingSignal:
    """Inbound trading signal. Read-only once accepted."""

    pair: str
    direction: GridDirection
    entry_point: Decimal
    confidence: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    timestamp: Optional[float] = None
    source: str = "unknown"
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingSignal":
        """Build a signal from a payload; accepts ``entryPoint``-style keys too."""
        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        pair = pick("pair", "symbol")
        direction = pick("direction", "side")
        entry_point = pick("entry_point", "entryPoint")
        if not pair or not direction or entry_point is None:
            raise ValueError("Signal requires pair, direction and entry_point")

        confidence = pick("confidence")
        return cls(
            pair=str(pair),
            direction=GridDirection(str(direction).upper()),
            entry_point=_dec(entry_point),
            confidence=_dec(confidence) if confidence is not None else Decimal("0"),
            stop_loss=_dec(pick("stop_loss", "stopLoss")),
            take_profit=_dec(pick("take_profit", "takeProfit")),
            timestamp=pick("timestamp"),
            source=str(pick("source") or "unknown"),
            id=pick("id"),
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "confidence": float(self.confidence),
            "timestamp": self.timestamp,
            "source": self.source,
        }


@dataclass
class MarketConditions:
    is_volatile: bool = False
    volume_ratio: Decimal = Decimal("1")
    high_volume: bool = False

    def to_dict(self) -> dict:
        return {
            "is_volatile": self.is_volatile,
            "volume_ratio": float(self.volume_ratio),
            "high_volume": self.high_volume,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MarketConditions":
        return cls(
            is_volatile=bool(data.get("is_volatile", False)),
            volume_ratio=_dec(data.get("volume_ratio", 1)),
            high_volume=bool(data.get("high_volume", False)),
        )


@dataclass
class GridParams:
    """Sizing and spacing derived from market data at grid creation."""

    atr: Decimal
    trend: Trend
    grid_step: Decimal
    grid_levels: int
    position_size: Decimal
    take_profit_distance: Decimal
    stop_loss_distance: Decimal
    trailing_stop_activation_level: Decimal
    ema_fast: Decimal = Decimal("0")
    ema_slow: Decimal = Decimal("0")
    market_conditions: MarketConditions = field(default_factory=MarketConditions)

    def to_dict(self) -> dict:
        return {
            "atr": float(self.atr),
            "trend": self.trend.value,
            "grid_step": float(self.grid_step),
            "grid_levels": self.grid_levels,
            "position_size": float(self.position_size),
            "take_profit_distance": float(self.take_profit_distance),
            "stop_loss_distance": float(self.stop_loss_distance),
            "trailing_stop_activation_level": float(self.trailing_stop_activation_level),
            "ema_fast": float(self.ema_fast),
            "ema_slow": float(self.ema_slow),
            "market_conditions": self.market_conditions.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GridParams":
        return cls(
            atr=_dec(data["atr"]),
            trend=Trend(data.get("trend", Trend.NEUTRAL.value)),
            grid_step=_dec(data["grid_step"]),
            grid_levels=int(data["grid_levels"]),
            position_size=_dec(data["position_size"]),
            take_profit_distance=_dec(data["take_profit_distance"]),
            stop_loss_distance=_dec(data["stop_loss_distance"]),
            trailing_stop_activation_level=_dec(data["trailing_stop_activation_level"]),
            ema_fast=_dec(data.get("ema_fast", 0)),
            ema_slow=_dec(data.get("ema_slow", 0)),
            market_conditions=MarketConditions.from_dict(data.get("market_conditions", {})),
        )


@dataclass
class GridOrder:
    """Ladder order (entry, take-profit or stop-loss)."""

    id: str
    role: OrderRole
    price: Decimal
    size: Decimal
    type: OrderType
    level: int
    status: OrderStatus = OrderStatus.PENDING
    entry_order_id: Optional[str] = None
    exchange_order_id: Optional[str] = None
    position_id: Optional[str] = None
    fill_price: Optional[Decimal] = None
    fill_time: Optional[float] = None
    created_at: float = field(default_factory=time.time)
    updated_at: Optional[float] = None

    @property
    def is_exit(self) -> bool:
        return self.role is not OrderRole.ENTRY

    def matches(self, order_id: str) -> bool:
        """True when ``order_id`` is this order's id or its exchange id."""
        return self.id == order_id or (
            self.exchange_order_id is not None and self.exchange_order_id == order_id
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "price": float(self.price),
            "size": float(self.size),
            "type": self.type.value,
            "level": self.level,
            "status": self.status.value,
            "entry_order_id": self.entry_order_id,
            "exchange_order_id": self.exchange_order_id,
            "position_id": self.position_id,
            "fill_price": _num(self.fill_price),
            "fill_time": self.fill_time,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GridOrder":
        return cls(
            id=data["id"],
            role=OrderRole(data["role"]),
            price=_dec(data["price"]),
            size=_dec(data["size"]),
            type=OrderType(data.get("type", OrderType.LIMIT.value)),
            level=int(data["level"]),
            status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
            entry_order_id=data.get("entry_order_id"),
            exchange_order_id=data.get("exchange_order_id"),
            position_id=data.get("position_id"),
            fill_price=_dec(data.get("fill_price")),
            fill_time=data.get("fill_time"),
            created_at=data.get("created_at", 0.0),
            updated_at=data.get("updated_at"),
        )


@dataclass
class GridPosition:
    """Exposure opened by a filled entry order."""

    id: str
    entry_order_id: str
    entry_price: Decimal
    size: Decimal
    direction: GridDirection
    level: int
    status: PositionStatus = PositionStatus.OPEN
    open_time: float = field(default_factory=time.time)
    close_time: Optional[float] = None
    close_price: Optional[Decimal] = None
    close_order_id: Optional[str] = None
    close_reason: Optional[str] = None
    profit: Optional[Decimal] = None

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def pnl_at(self, price: Decimal) -> Decimal:
        """Signed profit in quote currency if closed at ``price``."""
        if self.direction is GridDirection.BUY:
            return (price - self.entry_price) * self.size
        return (self.entry_price - price) * self.size

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_order_id": self.entry_order_id,
            "entry_price": float(self.entry_price),
            "size": float(self.size),
            "direction": self.direction.value,
            "level": self.level,
            "status": self.status.value,
            "open_time": self.open_time,
            "close_time": self.close_time,
            "close_price": _num(self.close_price),
            "close_order_id": self.close_order_id,
            "close_reason": self.close_reason,
            "profit": _num(self.profit),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GridPosition":
        return cls(
            id=data["id"],
            entry_order_id=data["entry_order_id"],
            entry_price=_dec(data["entry_price"]),
            size=_dec(data["size"]),
            direction=GridDirection(data["direction"]),
            level=int(data.get("level", 0)),
            status=PositionStatus(data.get("status", PositionStatus.OPEN.value)),
            open_time=data.get("open_time", 0.0),
            close_time=data.get("close_time"),
            close_price=_dec(data.get("close_price")),
            close_order_id=data.get("close_order_id"),
            close_reason=data.get("close_reason"),
            profit=_dec(data.get("profit")),
        )


@dataclass
class GridStats:
    total_profit: Decimal = Decimal("0")
    filled_orders: int = 0
    closed_positions: int = 0
    max_drawdown: Decimal = Decimal("0")
    highest_price: Optional[Decimal] = None
    lowest_price: Optional[Decimal] = None
    final_profit: Optional[Decimal] = None
    duration: Optional[float] = None

    def observe_price(self, price: Decimal) -> None:
        if self.highest_price is None or price > self.highest_price:
            self.highest_price = price
        if self.lowest_price is None or price < self.lowest_price:
            self.lowest_price = price

    def to_dict(self) -> dict:
        return {
            "total_profit": float(self.total_profit),
            "filled_orders": self.filled_orders,
            "closed_positions": self.closed_positions,
            "max_drawdown": float(self.max_drawdown),
            "highest_price": _num(self.highest_price),
            "lowest_price": _num(self.lowest_price),
            "final_profit": _num(self.final_profit),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GridStats":
        return cls(
            total_profit=_dec(data.get("total_profit", 0)),
            filled_orders=int(data.get("filled_orders", 0)),
            closed_positions=int(data.get("closed_positions", 0)),
            max_drawdown=_dec(data.get("max_drawdown", 0)),
            highest_price=_dec(data.get("highest_price")),
            lowest_price=_dec(data.get("lowest_price")),
            final_profit=_dec(data.get("final_profit")),
            duration=data.get("duration"),
        )


@dataclass
class PartialTakeProfitStep:
    """Per-grid copy of a configured partial take-profit level."""

    close_fraction: Decimal
    profit_percent: Decimal

    @property
    def label(self) -> str:
        return format(self.close_fraction.normalize(), "f")

    def to_dict(self) -> dict:
        return {"close_fraction": float(self.close_fraction), "profit_percent": float(self.profit_percent)}

    @classmethod
    def from_dict(cls, data: dict) -> "PartialTakeProfitStep":
        return cls(close_fraction=_dec(data["close_fraction"]), profit_percent=_dec(data["profit_percent"]))


@dataclass
class Grid:
    """One running (or completed) adaptive grid."""

    id: str
    pair: str
    direction: GridDirection
    start_price: Decimal
    current_price: Decimal
    params: GridParams
    signal: Dict[str, Any] = field(default_factory=dict)
    entry_orders: List[GridOrder] = field(default_factory=list)
    take_profit_orders: List[GridOrder] = field(default_factory=list)
    stop_loss_orders: List[GridOrder] = field(default_factory=list)
    positions: List[GridPosition] = field(default_factory=list)
    stats: GridStats = field(default_factory=GridStats)
    status: GridStatus = GridStatus.CREATED
    created_at: float = field(default_factory=time.time)
    last_update_time: float = field(default_factory=time.time)
    last_check_time: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    completion_reason: Optional[str] = None
    trailing_stop_enabled: bool = True
    trailing_stop_value: Optional[Decimal] = None
    trailing_stop_activation_level: Optional[Decimal] = None
    enable_partial_take_profit: bool = True
    partial_take_profit_levels: List[PartialTakeProfitStep] = field(default_factory=list)
    partial_take_profit_executed: List[Decimal] = field(default_factory=list)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def all_orders(self) -> List[GridOrder]:
        return [*self.entry_orders, *self.take_profit_orders, *self.stop_loss_orders]

    def find_order(self, order_id: str) -> Optional[GridOrder]:
        for order in self.all_orders():
            if order.matches(order_id):
                return order
        return None

    def exit_orders_for(self, entry_order_id: str) -> List[GridOrder]:
        return [
            order
            for order in (*self.take_profit_orders, *self.stop_loss_orders)
            if order.entry_order_id == entry_order_id
        ]

    def find_position(self, position_id: str) -> Optional[GridPosition]:
        for position in self.positions:
            if position.id == position_id:
                return position
        return None

    def open_positions(self) -> List[GridPosition]:
        return [position for position in self.positions if position.is_open]

    def active_orders(self) -> List[GridOrder]:
        return [order for order in self.all_orders() if order.status is OrderStatus.ACTIVE]

    def touch(self) -> None:
        self.last_update_time = time.time()

    # ------------------------------------------------------------------ #
    # Summaries
    # ------------------------------------------------------------------ #
    def active_summary(self) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "direction": self.direction.value,
            "status": self.status.value,
            "start_price": float(self.start_price),
            "current_price": float(self.current_price),
            "created_at": self.created_at,
            "positions": len(self.open_positions()),
            "total_profit": float(self.stats.total_profit),
        }

    def history_summary(self) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "direction": self.direction.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "completion_reason": self.completion_reason,
            "final_profit": _num(self.stats.final_profit),
            "duration": self.stats.duration,
        }

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "direction": self.direction.value,
            "start_price": float(self.start_price),
            "current_price": float(self.current_price),
            "params": self.params.to_dict(),
            "signal": dict(self.signal),
            "entry_orders": [order.to_dict() for order in self.entry_orders],
            "take_profit_orders": [order.to_dict() for order in self.take_profit_orders],
            "stop_loss_orders": [order.to_dict() for order in self.stop_loss_orders],
            "positions": [position.to_dict() for position in self.positions],
            "stats": self.stats.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at,
            "last_update_time": self.last_update_time,
            "last_check_time": self.last_check_time,
            "completed_at": self.completed_at,
            "completion_reason": self.completion_reason,
            "trailing_stop_enabled": self.trailing_stop_enabled,
            "trailing_stop_value": _num(self.trailing_stop_value),
            "trailing_stop_activation_level": _num(self.trailing_stop_activation_level),
            "enable_partial_take_profit": self.enable_partial_take_profit,
            "partial_take_profit_levels": [step.to_dict() for step in self.partial_take_profit_levels],
            "partial_take_profit_executed": [float(level) for level in self.partial_take_profit_executed],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Grid":
        return cls(
            id=data["id"],
            pair=data["pair"],
            direction=GridDirection(data["direction"]),
            start_price=_dec(data["start_price"]),
            current_price=_dec(data.get("current_price", data["start_price"])),
            params=GridParams.from_dict(data["params"]),
            signal=dict(data.get("signal") or {}),
            entry_orders=[GridOrder.from_dict(order) for order in data.get("entry_orders", [])],
            take_profit_orders=[GridOrder.from_dict(order) for order in data.get("take_profit_orders", [])],
            stop_loss_orders=[GridOrder.from_dict(order) for order in data.get("stop_loss_orders", [])],
            positions=[GridPosition.from_dict(position) for position in data.get("positions", [])],
            stats=GridStats.from_dict(data.get("stats", {})),
            status=GridStatus(data.get("status", GridStatus.CREATED.value)),
            created_at=data.get("created_at", 0.0),
            last_update_time=data.get("last_update_time", 0.0),
            last_check_time=data.get("last_check_time", 0.0),
            completed_at=data.get("completed_at"),
            completion_reason=data.get("completion_reason"),
            trailing_stop_enabled=bool(data.get("trailing_stop_enabled", True)),
            trailing_stop_value=_dec(data.get("trailing_stop_value")),
            trailing_stop_activation_level=_dec(data.get("trailing_stop_activation_level")),
            enable_partial_take_profit=bool(data.get("enable_partial_take_profit", True)),
            partial_take_profit_levels=[
                PartialTakeProfitStep.from_dict(step) for step in data.get("partial_take_profit_levels", [])
            ],
            partial_take_profit_executed=[_dec(level) for level in data.get("partial_take_profit_executed", [])],
        )


@dataclass
class GridCreationResult:
    """Handle returned to the caller of a successful grid creation."""

    grid_id: str
    pair: str
    direction: GridDirection
    entry_orders: List[GridOrder]
    take_profit_orders: List[GridOrder]
    stop_loss_orders: List[GridOrder]
    success: bool = True

    @classmethod
    def from_grid(cls, grid: Grid) -> "GridCreationResult":
        return cls(
            grid_id=grid.id,
            pair=grid.pair,
            direction=grid.direction,
            entry_orders=list(grid.entry_orders),
            take_profit_orders=list(grid.take_profit_orders),
            stop_loss_orders=list(grid.stop_loss_orders),
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "grid_id": self.grid_id,
            "pair": self.pair,
            "direction": self.direction.value,
            "entry_orders": [order.to_dict() for order in self.entry_orders],
            "take_profit_orders": [order.to_dict() for order in self.take_profit_orders],
            "stop_loss_orders": [order.to_dict() for order in self.stop_loss_orders],
        }
