"""
Database Schema - SQLAlchemy ORM Models

Tables read by the analytics layer:
1. PositionORM - one open or closed holding (stock, option, crypto, futures)
2. StrategyORM - multi-leg option grouping, legs reference it via strategy_id
3. CashTransactionORM - append-only cash ledger
4. PortfolioSnapshotORM - one materialized row per user per day

CRITICAL DESIGN DECISIONS:
1. Money columns are Numeric so values come back as Decimal
2. Enum-like columns are plain strings so unknown codes survive a round trip
3. Snapshot breakdown is JSON, keyed by asset bucket
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Date, JSON, Text,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base

from trading_dashboard.core.models.domain import utc_now

Base = declarative_base()


class StrategyORM(Base):
    """Multi-leg option strategy"""
    __tablename__ = 'strategies'

    __table_args__ = (
        Index('idx_strategy_user', 'user_id'),
        Index('idx_strategy_closed', 'user_id', 'closed_at'),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    strategy_type = Column(String(50), nullable=False)  # iron_condor, vertical_spread, ...
    status = Column(String(20), nullable=False, default='open')
    underlying_symbol = Column(String(50))

    realized_pl = Column(Numeric(15, 2), default=0, nullable=False)
    max_risk = Column(Numeric(15, 2))
    total_opening_cost = Column(Numeric(15, 2))

    opened_at = Column(DateTime)
    closed_at = Column(DateTime)

    created_at = Column(DateTime, default=utc_now, nullable=False)


class PositionORM(Base):
    """Position - one holding, optionally a leg of a strategy"""
    __tablename__ = 'positions'

    __table_args__ = (
        Index('idx_position_user', 'user_id'),
        Index('idx_position_status', 'user_id', 'status'),
        Index('idx_position_strategy', 'strategy_id'),
        Index('idx_position_closed', 'user_id', 'closed_at'),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    asset_type = Column(String(20), nullable=False)  # stock, option, crypto, futures
    symbol = Column(String(50), nullable=False)
    side = Column(String(10), nullable=False, default='long')
    status = Column(String(20), nullable=False, default='open')

    # === QUANTITIES ===
    opening_quantity = Column(Numeric(18, 8), default=0, nullable=False)
    current_quantity = Column(Numeric(18, 8), default=0, nullable=False)

    # === MONEY ===
    average_opening_price = Column(Numeric(15, 4), default=0)
    total_cost_basis = Column(Numeric(15, 2), default=0)  # negative = paid, positive = received
    total_closing_amount = Column(Numeric(15, 2), default=0)
    realized_pl = Column(Numeric(15, 2), default=0)
    unrealized_pl = Column(Numeric(15, 2), default=0)
    multiplier = Column(Numeric(10, 2))

    strategy_id = Column(String(36))

    # === OPTION ===
    expiration_date = Column(Date)
    strike_price = Column(Numeric(10, 2))
    option_type = Column(String(10))  # call, put

    # === FUTURES ===
    margin_requirement = Column(Numeric(15, 2))
    contract_month = Column(String(20))

    # === TIMESTAMPS ===
    opened_at = Column(DateTime)
    closed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class CashTransactionORM(Base):
    """Cash ledger entry"""
    __tablename__ = 'cash_transactions'

    __table_args__ = (
        Index('idx_cash_user_date', 'user_id', 'activity_date'),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    transaction_code = Column(String(40), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    activity_date = Column(DateTime)
    description = Column(Text)

    created_at = Column(DateTime, default=utc_now, nullable=False)


class PortfolioSnapshotORM(Base):
    """Daily portfolio snapshot"""
    __tablename__ = 'portfolio_snapshots'

    __table_args__ = (
        UniqueConstraint('user_id', 'snapshot_date', name='uix_user_snapshot_date'),
        Index('idx_snapshot_user_date', 'user_id', 'snapshot_date'),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    snapshot_date = Column(Date, nullable=False)

    portfolio_value = Column(Numeric(15, 2), nullable=False)
    net_cash_flow = Column(Numeric(15, 2), nullable=False)
    total_market_value = Column(Numeric(15, 2), default=0)
    total_realized_pl = Column(Numeric(15, 2), default=0)
    total_unrealized_pl = Column(Numeric(15, 2), default=0)
    open_positions_count = Column(Integer, default=0)
    total_positions_count = Column(Integer, default=0)

    positions_breakdown = Column(JSON)  # {"stocks": {"count": n, "value": v}, ...}

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
