"""
Portfolio Valuation Service - Net cash flow, market value and unrealized P&L.

Portfolio Value = Net Cash Flow + Total Market Value of open positions

Valuation per asset type:
    stock/crypto: last price * quantity when quoted, else stored values
    option:       last, else bid/ask mid, else average opening price,
                  times quantity * multiplier; P&L sign depends on side
    futures:      stored unrealized P&L only (margin based, no live pricing)

Unquoted positions fall back to |cost basis| + stored unrealized P&L, so a
quote outage degrades the numbers instead of failing the computation.

Usage:
    from trading_dashboard.services.portfolio_valuation_service import PortfolioValuationService

    with session_scope() as session:
        svc = PortfolioValuationService(session, quote_provider=YFinanceQuoteProvider())
        value = asyncio.run(svc.compute_portfolio_value(user_id))
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Awaitable, Dict, Iterable, List, Optional, Sequence, Union
import logging

from sqlalchemy.orm import Session

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase, StaticQuoteProvider
from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.repositories.cash_transaction import CashTransactionRepository
from trading_dashboard.repositories.position import PositionRepository

logger = logging.getLogger(__name__)

MARGIN_CODES = (
    dm.TransactionCode.FUTURES_MARGIN.value,
    dm.TransactionCode.FUTURES_MARGIN_RELEASE.value,
)
DEPOSIT_CODES = ('DEPOSIT', 'ACH', 'DCF', 'RTP', 'DEP')


# ============================================================================
# Pure calculations
# ============================================================================

def compute_net_cash_flow(transactions: Iterable[dm.CashTransaction],
                          excluded_codes: Sequence[str] = MARGIN_CODES) -> Decimal:
    """Sum of all amounts except reserved/released futures margin"""
    return sum(
        (t.amount for t in transactions if not t.has_code(excluded_codes)),
        dm.ZERO,
    )


def compute_initial_investment(transactions: Iterable[dm.CashTransaction],
                               deposit_codes: Sequence[str] = DEPOSIT_CODES) -> Decimal:
    """Sum of positive deposit-coded amounts"""
    return sum(
        (t.amount for t in transactions if t.has_code(deposit_codes) and t.amount > 0),
        dm.ZERO,
    )


def build_option_symbol(underlying: str,
                        expiration: Union[date, datetime, str, None],
                        option_type: Union[dm.OptionType, str, None],
                        strike: Union[Decimal, float, int, None]) -> str:
    """
    Broker option symbol: UNDERLYING + YYMMDD + C|P + strike in cents (8 digits).

    >>> build_option_symbol('SPY', date(2025, 3, 21), dm.OptionType.PUT, Decimal('550'))
    'SPY250321P00055000'

    Raises:
        ValueError: a part is missing or malformed
    """
    if not underlying:
        raise ValueError("Option symbol needs an underlying")
    if expiration is None or strike is None or option_type is None:
        raise ValueError(f"Option {underlying} is missing expiration, type or strike")

    if isinstance(expiration, str):
        try:
            expiration = datetime.strptime(expiration.split('T')[0], '%Y-%m-%d').date()
        except ValueError:
            raise ValueError(f"Invalid expiration date format: {expiration}. Expected YYYY-MM-DD")

    type_value = option_type.value if isinstance(option_type, dm.OptionType) else str(option_type)
    type_char = 'C' if type_value.lower() == 'call' else 'P'

    cents = (Decimal(str(strike)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return f"{underlying}{expiration:%y%m%d}{type_char}{int(cents):08d}"


@dataclass(frozen=True)
class PositionValuation:
    """Market value and unrealized P&L of one open position"""
    position_id: str
    asset_type: dm.AssetType
    market_value: Decimal
    unrealized_pl: Decimal
    priced_live: bool = False


def _stored_valuation(position: dm.Position) -> PositionValuation:
    stored = position.unrealized_pl or dm.ZERO
    if position.asset_type == dm.AssetType.FUTURES:
        market_value = stored
    else:
        market_value = abs(position.total_cost_basis) + stored
    return PositionValuation(position.id, position.asset_type, market_value, stored, False)


def option_symbol_for(position: dm.Position) -> Optional[str]:
    """Broker symbol for an option position, None when it cannot be built"""
    try:
        return build_option_symbol(
            position.symbol, position.expiration_date,
            position.option_type, position.strike_price,
        )
    except ValueError as e:
        logger.debug(f"Skipping live pricing for option {position.id}: {e}")
        return None


def value_position(position: dm.Position, quotes: Dict[str, dm.Quote]) -> PositionValuation:
    """
    Value one open position against the quote batch of its asset type.

    Args:
        quotes: the stock or crypto batch keyed by symbol, or the option
            batch keyed by broker option symbol. Stock and crypto tickers
            overlap (ETH, BTC), so batches are never merged.
    """
    cost_basis = abs(position.total_cost_basis)

    if position.asset_type in (dm.AssetType.STOCK, dm.AssetType.CRYPTO):
        quote = quotes.get(position.symbol)
        price = (quote.last or quote.mid) if quote else None
        if price and position.current_quantity and position.average_opening_price:
            market_value = price * position.current_quantity
            return PositionValuation(position.id, position.asset_type,
                                     market_value, market_value - cost_basis, True)

    elif position.asset_type == dm.AssetType.OPTION:
        symbol = option_symbol_for(position)
        quote = quotes.get(symbol) if symbol else None
        if quote and position.current_quantity:
            price = quote.last or quote.mid or position.average_opening_price or dm.ZERO
            market_value = position.current_quantity * position.effective_multiplier * price
            unrealized = market_value - cost_basis if position.is_long else cost_basis - market_value
            return PositionValuation(position.id, position.asset_type,
                                     market_value, unrealized, True)

    return _stored_valuation(position)


# ============================================================================
# Service
# ============================================================================

@dataclass
class PortfolioValue:
    """Portfolio value for one user at one point in time"""
    portfolio_value: Decimal = dm.ZERO
    net_cash_flow: Decimal = dm.ZERO
    unrealized_pl: Decimal = dm.ZERO
    total_market_value: Decimal = dm.ZERO
    breakdown: dm.PositionsBreakdown = field(default_factory=dm.PositionsBreakdown)
    open_positions: int = 0
    valuations: List[PositionValuation] = field(default_factory=list)

    def to_summary_rows(self) -> List[List]:
        """Rows for tabulate display."""
        return [
            ["Portfolio Value", f"${float(self.portfolio_value):,.2f}"],
            ["Net Cash Flow", f"${float(self.net_cash_flow):,.2f}"],
            ["Market Value", f"${float(self.total_market_value):,.2f}"],
            ["Unrealized P&L", f"${float(self.unrealized_pl):,.2f}"],
            ["Open Positions", self.open_positions],
        ]


def summarize_valuations(valuations: Sequence[PositionValuation]) -> dm.PositionsBreakdown:
    buckets = {}
    for asset_type in dm.AssetType:
        matching = [v for v in valuations if v.asset_type == asset_type]
        buckets[asset_type] = dm.BreakdownBucket(
            count=len(matching),
            value=sum((v.market_value for v in matching), dm.ZERO),
        )
    return dm.PositionsBreakdown(
        stocks=buckets[dm.AssetType.STOCK],
        options=buckets[dm.AssetType.OPTION],
        crypto=buckets[dm.AssetType.CRYPTO],
        futures=buckets[dm.AssetType.FUTURES],
    )


class PortfolioValuationService:
    """Combines the cash ledger, open positions and live quotes"""

    def __init__(
        self,
        session: Session,
        quote_provider: Optional[QuoteProviderBase] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.quote_provider = quote_provider or StaticQuoteProvider()
        self.logger = logger or logging.getLogger(__name__)
        self.positions = PositionRepository(session)
        self.cash = CashTransactionRepository(session)

    def get_net_cash_flow(self, user_id: str) -> Decimal:
        transactions = self.cash.get_by_user_id(user_id)
        return compute_net_cash_flow(transactions, self.settings.excluded_cash_flow_codes)

    def get_initial_investment(self, user_id: str) -> Decimal:
        transactions = self.cash.get_by_user_id(user_id)
        return compute_initial_investment(transactions, self.settings.deposit_codes)

    async def _fetch_quotes(self, fetch: Callable[[List[str]], Awaitable[Dict[str, dm.Quote]]],
                            symbols: List[str], label: str) -> Dict[str, dm.Quote]:
        """One batch with retry; an exhausted batch yields no quotes"""
        if not symbols:
            return {}

        attempts = 1 + self.settings.quote_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await fetch(symbols)
            except Exception as e:
                if attempt < attempts:
                    self.logger.warning(f"{label} quotes failed (attempt {attempt}/{attempts}): {e}")
                else:
                    self.logger.error(f"{label} quotes unavailable, using stored values: {e}")
        return {}

    async def fetch_quotes(self, open_positions: Sequence[dm.Position]
                           ) -> Dict[dm.AssetType, Dict[str, dm.Quote]]:
        """Stock, crypto and option batches requested concurrently, one map per asset type"""
        stock_symbols = sorted({p.symbol for p in open_positions
                                if p.asset_type == dm.AssetType.STOCK and p.symbol})
        crypto_symbols = sorted({p.symbol for p in open_positions
                                 if p.asset_type == dm.AssetType.CRYPTO and p.symbol})
        option_symbols = sorted({s for s in (option_symbol_for(p) for p in open_positions
                                             if p.asset_type == dm.AssetType.OPTION) if s})

        stock_quotes, crypto_quotes, option_quotes = await asyncio.gather(
            self._fetch_quotes(self.quote_provider.get_stock_quotes, stock_symbols, "Stock"),
            self._fetch_quotes(self.quote_provider.get_crypto_quotes, crypto_symbols, "Crypto"),
            self._fetch_quotes(self.quote_provider.get_option_quotes, option_symbols, "Option"),
        )

        return {
            dm.AssetType.STOCK: stock_quotes,
            dm.AssetType.CRYPTO: crypto_quotes,
            dm.AssetType.OPTION: option_quotes,
        }

    async def compute_portfolio_value(self, user_id: str) -> PortfolioValue:
        net_cash_flow = self.get_net_cash_flow(user_id)
        open_positions = self.positions.get_open_positions(user_id)

        quotes = await self.fetch_quotes(open_positions)
        valuations = [value_position(p, quotes.get(p.asset_type, {})) for p in open_positions]

        total_market_value = sum((v.market_value for v in valuations), dm.ZERO)
        unrealized_pl = sum((v.unrealized_pl for v in valuations), dm.ZERO)
        live = sum(1 for v in valuations if v.priced_live)

        self.logger.debug(
            f"Valued {len(valuations)} open positions for {user_id} "
            f"({live} live, {len(valuations) - live} stored)"
        )

        return PortfolioValue(
            portfolio_value=net_cash_flow + total_market_value,
            net_cash_flow=net_cash_flow,
            unrealized_pl=unrealized_pl,
            total_market_value=total_market_value,
            breakdown=summarize_valuations(valuations),
            open_positions=len(open_positions),
            valuations=valuations,
        )
