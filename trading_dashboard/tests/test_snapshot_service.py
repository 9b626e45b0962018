"""
Tests for SnapshotService.

Covers:
- Snapshot capture from the valuation engine
- Upsert behavior (one row per user per day)
- Day-over-day change, including missing and zero baselines
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

import trading_dashboard.core.models.domain as dm
from trading_dashboard.repositories.base import EntityNotFoundError
from trading_dashboard.repositories.portfolio_snapshot import PortfolioSnapshotRepository
from trading_dashboard.services.snapshot_service import SnapshotService
from trading_dashboard.tests.conftest import USER_ID


@pytest.fixture
def svc(session, settings):
    return SnapshotService(session, settings=settings)


# =============================================================================
# generate_snapshot
# =============================================================================

class TestGenerateSnapshot:

    @pytest.fixture
    def portfolio(self, add_cash, add_position, add_open_position):
        add_cash('DEPOSIT', 5000)
        add_open_position(average_opening_price=Decimal('100'), total_cost_basis=Decimal('-1000'),
                          unrealized_pl=Decimal('50'))
        add_position(realized_pl=Decimal('100'))
        add_position(asset_type=dm.AssetType.OPTION, symbol='SPY', status=dm.PositionStatus.EXPIRED,
                     opening_quantity=Decimal('1'), total_cost_basis=Decimal('-500'))

    def test_captures_valuation(self, svc, portfolio):
        snapshot = asyncio.run(svc.generate_snapshot(USER_ID, date(2025, 6, 18)))

        assert snapshot.snapshot_date == date(2025, 6, 18)
        assert snapshot.net_cash_flow == Decimal('5000')
        assert snapshot.total_market_value == Decimal('1050')
        assert snapshot.portfolio_value == Decimal('6050')
        assert snapshot.total_unrealized_pl == Decimal('50')
        assert snapshot.total_realized_pl == Decimal('-400')
        assert snapshot.open_positions_count == 1
        assert snapshot.total_positions_count == 3
        assert snapshot.positions_breakdown.stocks == dm.BreakdownBucket(1, Decimal('1050'))

    def test_same_day_is_replaced(self, session, svc, portfolio, add_cash):
        asyncio.run(svc.generate_snapshot(USER_ID, date(2025, 6, 18)))
        add_cash('DEPOSIT', 1000)
        asyncio.run(svc.generate_snapshot(USER_ID, date(2025, 6, 18)))

        snapshots = PortfolioSnapshotRepository(session).get_all(USER_ID)
        assert len(snapshots) == 1
        assert snapshots[0].portfolio_value == Decimal('7050')

    def test_empty_portfolio(self, svc):
        snapshot = asyncio.run(svc.generate_snapshot(USER_ID, date(2025, 6, 18)))
        assert snapshot.portfolio_value == Decimal('0')
        assert snapshot.open_positions_count == 0


# =============================================================================
# calculate_daily_pl_change
# =============================================================================

class TestDailyPLChange:

    def test_change_against_previous_day(self, svc, add_snapshot):
        add_snapshot(date(2025, 6, 17), 1000, 1000)
        add_snapshot(date(2025, 6, 18), 1100, 1000)

        change, percent = svc.calculate_daily_pl_change(USER_ID, date(2025, 6, 18))
        assert change == Decimal('100')
        assert percent == pytest.approx(10.0)

    def test_no_previous_snapshot(self, svc, add_snapshot):
        add_snapshot(date(2025, 6, 18), 1100, 1000)
        assert svc.calculate_daily_pl_change(USER_ID, date(2025, 6, 18)) == (Decimal('0'), 0.0)

    def test_zero_previous_value(self, svc, add_snapshot):
        add_snapshot(date(2025, 6, 17), 0, 0)
        add_snapshot(date(2025, 6, 18), 250, 250)
        assert svc.calculate_daily_pl_change(USER_ID, date(2025, 6, 18)) == (Decimal('250'), 0.0)

    def test_missing_snapshot_raises(self, svc):
        with pytest.raises(EntityNotFoundError):
            svc.calculate_daily_pl_change(USER_ID, date(2025, 6, 18))
