"""
Utility helpers for the adaptive grid: rounding and identifiers.
"""

from __future__ import annotations

import uuid
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

PRICE_QUANTUM = Decimal("0.01")
SIZE_QUANTUM = Decimal("0.001")


def round_price(price: Decimal) -> Decimal:
    """Round a price half-up to 2 decimals."""
    return Decimal(price).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def round_size(size: Decimal) -> Decimal:
    """Round a size down to 3 decimals so risk is never exceeded."""
    return Decimal(size).quantize(SIZE_QUANTUM, rounding=ROUND_DOWN)


def new_grid_id() -> str:
    return f"grid_{uuid.uuid4().hex}"


def entry_order_id(grid_id: str, level: int) -> str:
    return f"{grid_id}_entry_{level}"


def take_profit_order_id(grid_id: str, level: int) -> str:
    return f"{grid_id}_tp_{level}"


def stop_loss_order_id(grid_id: str, level: int) -> str:
    return f"{grid_id}_sl_{level}"


def position_id_for(grid_id: str, level: int) -> str:
    return f"{grid_id}_position_{level}"
