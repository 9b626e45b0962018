"""
Test Fixtures - Shared across all unit tests.

Provides:
- In-memory SQLite database (fresh per test)
- Factories that persist positions, strategies, cash entries and snapshots
  through the repositories
- A fixed clock so date-window metrics are deterministic
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
import uuid

from trading_dashboard.config.settings import Settings
from trading_dashboard.core.database.session import create_test_database
import trading_dashboard.core.models.domain as dm
from trading_dashboard.repositories.cash_transaction import CashTransactionRepository
from trading_dashboard.repositories.portfolio_snapshot import PortfolioSnapshotRepository
from trading_dashboard.repositories.position import PositionRepository
from trading_dashboard.repositories.strategy import StrategyRepository


# =============================================================================
# Known constants for deterministic tests
# =============================================================================

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'

# Wednesday afternoon
NOW = datetime(2025, 6, 18, 15, 0, 0)
TODAY = NOW.date()


def fixed_clock():
    return NOW


# =============================================================================
# Database fixtures
# =============================================================================

@pytest.fixture
def db_manager():
    """Create a fresh in-memory SQLite database for each test."""
    return create_test_database()


@pytest.fixture
def session(db_manager):
    """Yield a session from the in-memory database, auto-commits on success."""
    with db_manager.session_scope() as s:
        yield s


@pytest.fixture
def settings():
    """Default settings, independent of any local .env"""
    return Settings(_env_file=None)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def add_position(session):
    """Persist a position; keyword overrides on top of a closed long stock."""
    repo = PositionRepository(session)

    def _add(**overrides) -> dm.Position:
        values = dict(
            id=str(uuid.uuid4()),
            user_id=USER_ID,
            asset_type=dm.AssetType.STOCK,
            symbol='AAPL',
            side=dm.PositionSide.LONG,
            status=dm.PositionStatus.CLOSED,
            opening_quantity=Decimal('10'),
            current_quantity=Decimal('0'),
            opened_at=datetime(2025, 6, 2, 10, 0),
            closed_at=datetime(2025, 6, 10, 14, 0),
            updated_at=datetime(2025, 6, 10, 14, 0),
        )
        values.update(overrides)
        return repo.create_from_domain(dm.Position(**values))

    return _add


@pytest.fixture
def add_open_position(add_position):
    """Persist an open position with nothing realized."""
    def _add(**overrides) -> dm.Position:
        values = dict(
            status=dm.PositionStatus.OPEN,
            current_quantity=overrides.get('opening_quantity', Decimal('10')),
            closed_at=None,
        )
        values.update(overrides)
        return add_position(**values)

    return _add


@pytest.fixture
def add_strategy(session):
    repo = StrategyRepository(session)

    def _add(**overrides) -> dm.Strategy:
        values = dict(
            id=str(uuid.uuid4()),
            user_id=USER_ID,
            strategy_type='vertical_spread',
            status=dm.StrategyStatus.CLOSED,
            underlying_symbol='SPY',
            opened_at=datetime(2025, 6, 2, 9, 35),
            closed_at=datetime(2025, 6, 12, 15, 30),
        )
        values.update(overrides)
        return repo.create_from_domain(dm.Strategy(**values))

    return _add


@pytest.fixture
def add_cash(session):
    repo = CashTransactionRepository(session)

    def _add(code: str, amount, activity_date: datetime = datetime(2025, 1, 2, 9, 0),
             user_id: str = USER_ID) -> dm.CashTransaction:
        return repo.create_from_domain(dm.CashTransaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            transaction_code=code,
            amount=Decimal(str(amount)),
            activity_date=activity_date,
        ))

    return _add


@pytest.fixture
def add_snapshot(session):
    repo = PortfolioSnapshotRepository(session)

    def _add(snapshot_date: date, portfolio_value, net_cash_flow,
             breakdown: dm.PositionsBreakdown = None, user_id: str = USER_ID) -> dm.PortfolioSnapshot:
        return repo.upsert(dm.PortfolioSnapshot(
            user_id=user_id,
            snapshot_date=snapshot_date,
            portfolio_value=Decimal(str(portfolio_value)),
            net_cash_flow=Decimal(str(net_cash_flow)),
            positions_breakdown=breakdown or dm.PositionsBreakdown(),
        ))

    return _add
