"""
Quote Provider Base - Abstract interface all quote sources must implement.

Provides:
    - QuoteProviderBase: ABC with async batch quote methods
    - StaticQuoteProvider: Fixed quotes for offline runs and tests

Usage:
    from trading_dashboard.adapters.base import QuoteProviderBase
    quotes = await provider.get_stock_quotes(['AAPL', 'MSFT'])
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional, Iterable
import logging

import trading_dashboard.core.models.domain as dm

logger = logging.getLogger(__name__)


class QuoteProviderBase(ABC):
    """
    Interface ALL quote providers must implement.

    Each method returns only the symbols it could price. A missing key
    means no quote, and callers fall back to stored values.
    """

    name: str = ""

    @abstractmethod
    async def get_stock_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        ...

    @abstractmethod
    async def get_crypto_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        ...

    @abstractmethod
    async def get_option_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        """Quotes keyed by broker option symbol (see build_option_symbol)"""
        ...


class StaticQuoteProvider(QuoteProviderBase):
    """
    Serves quotes from an in-memory table.

    Used when live data is switched off; positions without a quote are
    valued from stored P&L.
    """

    name = "static"

    def __init__(
        self,
        stock_quotes: Optional[Dict[str, dm.Quote]] = None,
        crypto_quotes: Optional[Dict[str, dm.Quote]] = None,
        option_quotes: Optional[Dict[str, dm.Quote]] = None,
    ):
        self.stock_quotes = dict(stock_quotes or {})
        self.crypto_quotes = dict(crypto_quotes or {})
        self.option_quotes = dict(option_quotes or {})
        self.calls: List[str] = []

    @classmethod
    def from_prices(cls, stocks: Optional[Dict[str, float]] = None,
                    crypto: Optional[Dict[str, float]] = None) -> 'StaticQuoteProvider':
        """Build from symbol -> last price maps"""
        def to_quotes(prices):
            return {
                symbol: dm.Quote(symbol=symbol, last=Decimal(str(price)))
                for symbol, price in (prices or {}).items()
            }
        return cls(stock_quotes=to_quotes(stocks), crypto_quotes=to_quotes(crypto))

    @staticmethod
    def _select(table: Dict[str, dm.Quote], symbols: Iterable[str]) -> Dict[str, dm.Quote]:
        return {s: table[s] for s in symbols if s in table}

    async def get_stock_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        self.calls.append('stock')
        return self._select(self.stock_quotes, symbols)

    async def get_crypto_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        self.calls.append('crypto')
        return self._select(self.crypto_quotes, symbols)

    async def get_option_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        self.calls.append('option')
        return self._select(self.option_quotes, symbols)
