"""
Exchange gateway interface.

Trading modules never talk to an exchange SDK directly; they are handed one
``BaseExchangeGateway`` instance that is shared by every strategy running
against the active exchange. Concrete connectors live outside this package.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from .base_models import Candle, OrderInfo, OrderResult, Ticker


class BaseExchangeGateway(ABC):
    """
    Capability interface consumed by trading modules.

    Implementations are expected to raise ``TransientGatewayError`` for
    failures that are worth retrying (timeouts, 5xx) and ``GatewayError``
    for everything else.
    """

    @abstractmethod
    def get_exchange_name(self) -> str:
        """Canonical exchange name (used for log context)."""

    @abstractmethod
    async def get_chart_data(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: Optional[int] = None,
    ) -> List[Candle]:
        """Return up to ``limit`` candles, oldest first."""

    @abstractmethod
    async def create_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        size: Decimal,
        price: Optional[Decimal] = None,
    ) -> OrderResult:
        """
        Submit an order.

        Args:
            symbol: Trading pair (e.g. ``BTCUSDT``)
            side: ``BUY`` or ``SELL``
            order_type: ``LIMIT``, ``STOP`` or ``MARKET``
            size: Base-asset quantity
            price: Limit/trigger price; omitted for market orders
        """

    @abstractmethod
    async def cancel_order(self, symbol: str, exchange_order_id: str) -> None:
        """Cancel a resting order by its exchange id."""

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker:
        """Return the last traded price for ``symbol``."""

    @abstractmethod
    async def get_open_orders(self, symbol: str) -> List[OrderInfo]:
        """Return resting orders for ``symbol``."""
