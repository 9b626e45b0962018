"""
Domain Models - Immutable records the analytics layer computes over

DESIGN PRINCIPLES:
1. Read-only inputs - positions, strategies and cash entries are never mutated here
2. Decimal for money, float for ratios and percentages
3. Trade is a tagged union over Position and Strategy so multi-leg
   strategies count once

USAGE:
    position = Position(
        id="p1", user_id="u1", asset_type=AssetType.STOCK, symbol="AAPL",
        side=PositionSide.LONG, status=PositionStatus.CLOSED,
        opening_quantity=Decimal('10'), current_quantity=Decimal('0'),
        realized_pl=Decimal('100'),
    )
    trade = Trade.from_position(position)
"""

from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from enum import Enum
from typing import Dict, Optional
from decimal import Decimal


# ============================================================================
# Enumerations
# ============================================================================

class AssetType(Enum):
    STOCK = "stock"
    OPTION = "option"
    CRYPTO = "crypto"
    FUTURES = "futures"


class PositionSide(Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatus(Enum):
    """Position lifecycle status"""
    OPEN = "open"
    CLOSED = "closed"
    EXPIRED = "expired"        # Option ran to expiration
    ASSIGNED = "assigned"      # Option was assigned/exercised


class StrategyStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"
    PARTIALLY_CLOSED = "partially_closed"
    ASSIGNED = "assigned"
    EXPIRED = "expired"


class OptionType(Enum):
    CALL = "call"
    PUT = "put"


class TransactionCode(Enum):
    """Known cash ledger codes. Stored codes are plain strings; others are tolerated."""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    FEE = "FEE"
    ACH = "ACH"
    DCF = "DCF"
    RTP = "RTP"
    DEP = "DEP"
    STOCK_BUY = "STOCK_BUY"
    STOCK_SELL = "STOCK_SELL"
    OPTION_BUY = "OPTION_BUY"
    OPTION_SELL = "OPTION_SELL"
    CRYPTO_BUY = "CRYPTO_BUY"
    CRYPTO_SELL = "CRYPTO_SELL"
    FUTURES_MARGIN = "FUTURES_MARGIN"
    FUTURES_MARGIN_RELEASE = "FUTURES_MARGIN_RELEASE"
    FUTURES_PROFIT = "FUTURES_PROFIT"
    FUTURES_LOSS = "FUTURES_LOSS"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"


class TradeKind(Enum):
    """Which record a Trade was projected from"""
    POSITION = "position"
    STRATEGY = "strategy"


TERMINAL_POSITION_STATUSES = frozenset({
    PositionStatus.CLOSED,
    PositionStatus.EXPIRED,
    PositionStatus.ASSIGNED,
})

ZERO = Decimal('0')


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class Position:
    """One open or closed holding"""
    id: str
    user_id: str
    asset_type: AssetType
    symbol: str
    side: PositionSide = PositionSide.LONG
    status: PositionStatus = PositionStatus.OPEN

    # Quantities & money
    opening_quantity: Decimal = ZERO
    current_quantity: Decimal = ZERO
    average_opening_price: Decimal = ZERO
    total_cost_basis: Decimal = ZERO       # negative = paid (long), positive = received (short)
    total_closing_amount: Decimal = ZERO
    realized_pl: Decimal = ZERO
    unrealized_pl: Decimal = ZERO
    multiplier: Optional[Decimal] = None

    strategy_id: Optional[str] = None

    # Option-specific
    expiration_date: Optional[date] = None
    strike_price: Optional[Decimal] = None
    option_type: Optional[OptionType] = None

    # Futures-specific
    margin_requirement: Optional[Decimal] = None
    contract_month: Optional[str] = None

    # Timestamps
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_POSITION_STATUSES

    @property
    def is_long(self) -> bool:
        return self.side == PositionSide.LONG

    @property
    def is_partially_closed(self) -> bool:
        return (
            self.is_open
            and self.realized_pl != 0
            and self.current_quantity < self.opening_quantity
        )

    @property
    def has_realized_pl(self) -> bool:
        """Closed (any terminal status) or partially closed with P&L booked"""
        return self.is_terminal or self.is_partially_closed

    @property
    def effective_multiplier(self) -> Decimal:
        if self.multiplier:
            return Decimal(self.multiplier)
        return Decimal('100') if self.asset_type == AssetType.OPTION else Decimal('1')

    @property
    def realized_at(self) -> Optional[datetime]:
        """When P&L was booked: close time, or last update for partial closes"""
        return self.closed_at or self.updated_at


@dataclass(frozen=True)
class Strategy:
    """Multi-leg option position grouping Positions by strategy_id"""
    id: str
    user_id: str
    strategy_type: str
    status: StrategyStatus = StrategyStatus.OPEN
    realized_pl: Decimal = ZERO
    underlying_symbol: Optional[str] = None
    max_risk: Optional[Decimal] = None
    total_opening_cost: Optional[Decimal] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == StrategyStatus.OPEN


@dataclass(frozen=True)
class CashTransaction:
    """Append-only cash ledger entry"""
    id: str
    user_id: str
    transaction_code: str
    amount: Decimal
    activity_date: Optional[datetime] = None
    description: Optional[str] = None

    def has_code(self, codes) -> bool:
        return (self.transaction_code or '').upper() in {c.upper() for c in codes}


@dataclass(frozen=True)
class BreakdownBucket:
    count: int = 0
    value: Decimal = ZERO

    def to_dict(self) -> Dict:
        return {'count': self.count, 'value': float(self.value)}


@dataclass(frozen=True)
class PositionsBreakdown:
    """Per-asset-type open position value"""
    stocks: BreakdownBucket = field(default_factory=BreakdownBucket)
    options: BreakdownBucket = field(default_factory=BreakdownBucket)
    crypto: BreakdownBucket = field(default_factory=BreakdownBucket)
    futures: BreakdownBucket = field(default_factory=BreakdownBucket)

    def for_asset_type(self, asset_type: AssetType) -> BreakdownBucket:
        return {
            AssetType.STOCK: self.stocks,
            AssetType.OPTION: self.options,
            AssetType.CRYPTO: self.crypto,
            AssetType.FUTURES: self.futures,
        }[asset_type]

    def to_dict(self) -> Dict:
        return {
            'stocks': self.stocks.to_dict(),
            'options': self.options.to_dict(),
            'crypto': self.crypto.to_dict(),
            'futures': self.futures.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'PositionsBreakdown':
        data = data or {}

        def bucket(name: str) -> BreakdownBucket:
            raw = data.get(name) or {}
            return BreakdownBucket(
                count=int(raw.get('count', 0)),
                value=Decimal(str(raw.get('value', 0))),
            )

        return cls(
            stocks=bucket('stocks'),
            options=bucket('options'),
            crypto=bucket('crypto'),
            futures=bucket('futures'),
        )


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Daily materialized portfolio state"""
    user_id: str
    snapshot_date: date
    portfolio_value: Decimal
    net_cash_flow: Decimal
    total_market_value: Decimal = ZERO
    total_realized_pl: Decimal = ZERO
    total_unrealized_pl: Decimal = ZERO
    open_positions_count: int = 0
    total_positions_count: int = 0
    positions_breakdown: PositionsBreakdown = field(default_factory=PositionsBreakdown)
    id: Optional[str] = None


@dataclass(frozen=True)
class Quote:
    """Last/bid/ask for one symbol"""
    symbol: str
    last: Optional[Decimal] = None
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    timestamp: Optional[datetime] = None

    @property
    def mid(self) -> Optional[Decimal]:
        if self.bid and self.ask:
            return (self.bid + self.ask) / 2
        return None


# ============================================================================
# Trade - tagged union over Position | Strategy
# ============================================================================

@dataclass(frozen=True)
class Trade:
    """
    One countable trade.

    A standalone position and a whole multi-leg strategy each become exactly
    one Trade; legs of a strategy never do.
    """
    kind: TradeKind
    source_id: str
    realized_pl: Decimal
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_position(cls, position: Position, realized_pl: Optional[Decimal] = None) -> 'Trade':
        return cls(
            kind=TradeKind.POSITION,
            source_id=position.id,
            realized_pl=position.realized_pl if realized_pl is None else realized_pl,
            opened_at=position.opened_at,
            closed_at=position.closed_at,
        )

    @classmethod
    def from_strategy(cls, strategy: Strategy, realized_pl: Optional[Decimal] = None) -> 'Trade':
        return cls(
            kind=TradeKind.STRATEGY,
            source_id=strategy.id,
            realized_pl=strategy.realized_pl if realized_pl is None else realized_pl,
            opened_at=strategy.opened_at,
            closed_at=strategy.closed_at,
        )

    @property
    def is_win(self) -> bool:
        return self.realized_pl > 0

    @property
    def is_loss(self) -> bool:
        return self.realized_pl < 0

    def holding_days(self) -> Optional[int]:
        """Whole days held, rounded up, at least 1. None without both timestamps."""
        if not self.opened_at or not self.closed_at:
            return None
        return max(1, ceil_days(self.closed_at - self.opened_at))


def ceil_days(delta) -> int:
    """Ceiling of a timedelta expressed in days"""
    seconds = delta.total_seconds()
    whole, remainder = divmod(seconds, 86400)
    return int(whole) + (1 if remainder > 0 else 0)
