"""
YFinance Quote Provider - Live last/bid/ask via yfinance.

yfinance is blocking, so every batch runs in a worker thread with
asyncio.to_thread. Symbols that fail are left out of the result; the
valuation engine treats a missing quote as "use stored values".

Crypto symbols map to Yahoo pairs (BTC -> BTC-USD). Option symbols use the
broker format UNDERLYING + YYMMDD + C|P + strike*100 (8 digits) and are
resolved through the underlying's option chain.
"""

import asyncio
import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase

logger = logging.getLogger(__name__)


def _price(value) -> Optional[Decimal]:
    """yfinance price as Decimal; NaN and missing become None"""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return Decimal(str(number))


def parse_option_symbol(symbol: str) -> Tuple[str, datetime, dm.OptionType, Decimal]:
    """
    Split a broker option symbol into (underlying, expiration, type, strike).

    Raises:
        ValueError: symbol is not in UNDERLYING+YYMMDD+C|P+strike form
    """
    if len(symbol) < 16:
        raise ValueError(f"Not an option symbol: {symbol}")
    strike_part = symbol[-8:]
    type_part = symbol[-9]
    date_part = symbol[-15:-9]
    underlying = symbol[:-15]
    if not strike_part.isdigit() or type_part not in ('C', 'P') or not underlying:
        raise ValueError(f"Not an option symbol: {symbol}")
    expiration = datetime.strptime(date_part, '%y%m%d')
    option_type = dm.OptionType.CALL if type_part == 'C' else dm.OptionType.PUT
    strike = Decimal(int(strike_part)) / Decimal('100')
    return underlying, expiration, option_type, strike


class YFinanceQuoteProvider(QuoteProviderBase):
    """Fetches live quotes from Yahoo Finance"""

    name = "yfinance"

    def __init__(self, crypto_quote_currency: str = "USD"):
        self.crypto_quote_currency = crypto_quote_currency

    async def get_stock_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        return await asyncio.to_thread(self._fetch_last_prices, {s: s for s in symbols})

    async def get_crypto_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        pairs = {f"{s.upper()}-{self.crypto_quote_currency}": s for s in symbols}
        return await asyncio.to_thread(self._fetch_last_prices, pairs)

    async def get_option_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        return await asyncio.to_thread(self._fetch_option_quotes, symbols)

    # ------------------------------------------------------------------
    # Blocking helpers (worker thread)
    # ------------------------------------------------------------------

    def _fetch_last_prices(self, yahoo_to_symbol: Dict[str, str]) -> Dict[str, dm.Quote]:
        import yfinance as yf

        quotes: Dict[str, dm.Quote] = {}
        now = dm.utc_now()
        for yahoo_symbol, symbol in yahoo_to_symbol.items():
            try:
                last = _price(yf.Ticker(yahoo_symbol).fast_info.last_price)
            except Exception as e:
                logger.debug(f"Could not fetch quote for {yahoo_symbol}: {e}")
                continue
            if last is not None:
                quotes[symbol] = dm.Quote(symbol=symbol, last=last, timestamp=now)
        return quotes

    def _fetch_option_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        import yfinance as yf

        # Group by (underlying, expiration) so each chain is fetched once
        wanted: Dict[Tuple[str, str], List[Tuple[str, dm.OptionType, Decimal]]] = {}
        for symbol in symbols:
            try:
                underlying, expiration, option_type, strike = parse_option_symbol(symbol)
            except ValueError as e:
                logger.debug(str(e))
                continue
            key = (underlying, expiration.strftime('%Y-%m-%d'))
            wanted.setdefault(key, []).append((symbol, option_type, strike))

        quotes: Dict[str, dm.Quote] = {}
        now = dm.utc_now()
        for (underlying, expiration), contracts in wanted.items():
            try:
                chain = yf.Ticker(underlying).option_chain(expiration)
            except Exception as e:
                logger.debug(f"Could not fetch option chain {underlying} {expiration}: {e}")
                continue

            for symbol, option_type, strike in contracts:
                frame = chain.calls if option_type == dm.OptionType.CALL else chain.puts
                for row in frame.itertuples(index=False):
                    if abs(Decimal(str(row.strike)) - strike) < Decimal('0.005'):
                        quotes[symbol] = dm.Quote(
                            symbol=symbol,
                            last=_price(row.lastPrice),
                            bid=_price(row.bid),
                            ask=_price(row.ask),
                            timestamp=now,
                        )
                        break
        return quotes
