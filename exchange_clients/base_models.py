"""
Shared data structures and retry utilities for exchange gateways.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Type, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)


class GatewayError(Exception):
    """Raised by gateway implementations for exchange-side failures."""
    pass


class TransientGatewayError(GatewayError):
    """Network timeouts, 5xx responses and other failures worth retrying."""
    pass


# Failures an order call may be retried on.
RETRYABLE_EXCEPTIONS = (TransientGatewayError, asyncio.TimeoutError, ConnectionError)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def order_retrying(
    max_attempts: int,
    min_wait: float,
    max_wait: float,
    exception_type: Union[Type[Exception], Tuple[Type[Exception], ...]] = (Exception,),
) -> AsyncRetrying:
    """
    Build an ``AsyncRetrying`` controller for order placement/cancellation.

    The last exception is re-raised once attempts are exhausted so the caller
    decides how to record the failure.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exception_type),
        reraise=True,
    )


@dataclass(frozen=True)
class Candle:
    """OHLCV candle as returned by ``get_chart_data``."""

    open_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")
    close_time: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candle":
        """Accept snake_case or camelCase keys (``openTime``/``closeTime``)."""
        return cls(
            open_time=int(data.get("open_time", data.get("openTime", 0))),
            open=_to_decimal(data["open"]),
            high=_to_decimal(data["high"]),
            low=_to_decimal(data["low"]),
            close=_to_decimal(data["close"]),
            volume=_to_decimal(data.get("volume", 0)),
            close_time=data.get("close_time", data.get("closeTime")),
        )


@dataclass(frozen=True)
class Ticker:
    """Last traded price for a symbol."""

    symbol: str
    price: Decimal


@dataclass
class OrderResult:
    """Standardized order result structure returned by ``create_order``."""

    success: bool
    order_id: Optional[str] = None
    side: Optional[str] = None
    size: Optional[Decimal] = None
    price: Optional[Decimal] = None
    status: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class OrderInfo:
    """Standardized open-order information returned by ``get_open_orders``."""

    order_id: str
    side: str
    size: Decimal
    price: Decimal
    status: str
    filled_size: Decimal = Decimal("0")
    metadata: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "GatewayError",
    "TransientGatewayError",
    "RETRYABLE_EXCEPTIONS",
    "order_retrying",
    "Candle",
    "Ticker",
    "OrderResult",
    "OrderInfo",
]
