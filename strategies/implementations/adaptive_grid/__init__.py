"""
Adaptive Smart Grid Implementation

A signal-driven grid module that:
- Sizes and spaces entry ladders from ATR volatility
- Pairs every entry with take-profit and stop-loss orders
- Activates deeper levels as price reaches them
- Trails a grid-wide stop and takes partial profit in steps
- Persists active grids and history to disk
"""

from .strategy import AdaptiveSmartGrid
from .config import AdaptiveGridConfig, PartialTakeProfitLevel
from .models import (
    CompletionReason,
    Grid,
    GridCreationResult,
    GridDirection,
    GridOrder,
    GridPosition,
    GridStatus,
    OrderStatus,
    TradingSignal,
)

__all__ = [
    'AdaptiveSmartGrid',
    'AdaptiveGridConfig',
    'PartialTakeProfitLevel',
    'CompletionReason',
    'Grid',
    'GridCreationResult',
    'GridDirection',
    'GridOrder',
    'GridPosition',
    'GridStatus',
    'OrderStatus',
    'TradingSignal',
]
