"""
Exchange gateway interface and shared models.

Modules:
    - base: capability interface (BaseExchangeGateway)
    - base_models: candles, tickers, order results, retry helpers
"""

from .base import BaseExchangeGateway
from .base_models import (
    Candle,
    GatewayError,
    OrderInfo,
    OrderResult,
    RETRYABLE_EXCEPTIONS,
    Ticker,
    TransientGatewayError,
    order_retrying,
)

__all__ = [
    "BaseExchangeGateway",
    "Candle",
    "GatewayError",
    "OrderInfo",
    "OrderResult",
    "RETRYABLE_EXCEPTIONS",
    "Ticker",
    "TransientGatewayError",
    "order_retrying",
]
