"""
Tests for TimeWindowPerformanceService.

Covers:
- Realized-window P&L (realized in window + unrealized - fees)
- Snapshot comparison against the closest earlier snapshot
- Fallback to unrealized P&L without a snapshot
- Per-window default strategy and fee adjustment from settings
"""

import asyncio
import pytest
from datetime import date, datetime
from decimal import Decimal

from trading_dashboard.services.time_window_performance import (
    PerformanceWindow,
    TimeWindowPerformanceService,
    WindowStrategy,
    percent_of,
)
from trading_dashboard.tests.conftest import USER_ID, fixed_clock

# Portfolio value with the fixture below: 9995 cash + 1050 stored stock value
PORTFOLIO_VALUE = Decimal('11045')


@pytest.fixture
def svc(session, settings):
    return TimeWindowPerformanceService(session, settings=settings, clock=fixed_clock)


@pytest.fixture
def portfolio(add_cash, add_position, add_open_position):
    add_cash('DEPOSIT', 10000, datetime(2025, 1, 2))
    add_cash('FEE', -5, datetime(2025, 6, 15, 9))
    add_open_position(average_opening_price=Decimal('100'), total_cost_basis=Decimal('-1000'),
                      unrealized_pl=Decimal('50'))
    add_position(realized_pl=Decimal('200'), closed_at=datetime(2025, 6, 1, 12))
    add_position(realized_pl=Decimal('100'), closed_at=datetime(2025, 6, 16, 12))
    add_position(realized_pl=Decimal('40'), closed_at=datetime(2025, 6, 18, 10))


def _run(coro):
    return asyncio.run(coro)


# =============================================================================
# Realized window
# =============================================================================

class TestRealizedWindow:

    def test_daily(self, svc, portfolio):
        result = _run(svc.daily(USER_ID))

        assert result.strategy == WindowStrategy.REALIZED_WINDOW
        assert result.realized_pl == Decimal('40')
        assert result.pl == Decimal('90')
        assert result.baseline_value == PORTFOLIO_VALUE
        assert result.pl_percent == pytest.approx(90 / 11045 * 100)

    def test_weekly_subtracts_fees(self, svc, portfolio):
        result = _run(svc.weekly(USER_ID, strategy=WindowStrategy.REALIZED_WINDOW))

        assert result.realized_pl == Decimal('140')
        assert result.fees == Decimal('5')
        assert result.pl == Decimal('185')

    def test_fee_subtraction_can_be_switched_off(self, svc, portfolio):
        result = _run(svc.weekly(USER_ID, strategy=WindowStrategy.REALIZED_WINDOW, subtract_fees=False))
        assert result.pl == Decimal('190')

    def test_monthly(self, svc, portfolio):
        result = _run(svc.monthly(USER_ID, strategy=WindowStrategy.REALIZED_WINDOW))
        assert result.pl == Decimal('385')

    def test_yearly_defaults_to_realized_window_without_fees(self, svc, portfolio):
        result = _run(svc.yearly(USER_ID))
        assert result.strategy == WindowStrategy.REALIZED_WINDOW
        assert result.pl == Decimal('390')

    def test_empty_portfolio(self, svc):
        result = _run(svc.daily(USER_ID))
        assert result.pl == Decimal('0')
        assert result.pl_percent == 0.0


# =============================================================================
# Snapshot comparison
# =============================================================================

class TestSnapshotComparison:

    def test_weekly_default_compares_to_snapshot(self, svc, portfolio, add_snapshot):
        add_snapshot(date(2025, 6, 10), 10000, 10000)
        add_snapshot(date(2025, 6, 14), 10900, 10000)

        result = _run(svc.weekly(USER_ID))

        assert result.strategy == WindowStrategy.SNAPSHOT_COMPARISON
        assert result.baseline_value == Decimal('10000')
        assert result.pl == Decimal('1045')
        assert result.pl_percent == pytest.approx(10.45)
        assert result.realized_pl == Decimal('0')

    def test_without_snapshot_reports_unrealized(self, svc, portfolio):
        result = _run(svc.monthly(USER_ID))

        assert result.strategy == WindowStrategy.SNAPSHOT_COMPARISON
        assert result.baseline_value is None
        assert result.pl == Decimal('50')
        assert result.pl_percent == 0.0

    def test_explicit_as_of(self, svc, portfolio, add_snapshot):
        add_snapshot(date(2025, 5, 1), 9000, 9000)
        result = _run(svc.performance(USER_ID, PerformanceWindow.DAILY,
                                      strategy=WindowStrategy.SNAPSHOT_COMPARISON,
                                      as_of=datetime(2025, 5, 2, 12)))
        assert result.baseline_value == Decimal('9000')


# =============================================================================
# Helpers
# =============================================================================

class TestPercentOf:

    def test_zero_or_missing_baseline(self):
        assert percent_of(Decimal('10'), Decimal('0')) == 0.0
        assert percent_of(Decimal('10'), None) == 0.0

    def test_negative_baseline_uses_magnitude(self):
        assert percent_of(Decimal('10'), Decimal('-200')) == pytest.approx(5.0)


class TestDefaultStrategy:

    def test_from_settings(self, svc):
        assert svc.default_strategy(PerformanceWindow.DAILY) == WindowStrategy.REALIZED_WINDOW
        assert svc.default_strategy(PerformanceWindow.WEEKLY) == WindowStrategy.SNAPSHOT_COMPARISON
        assert svc.default_strategy(PerformanceWindow.MONTHLY) == WindowStrategy.SNAPSHOT_COMPARISON
        assert svc.default_strategy(PerformanceWindow.YEARLY) == WindowStrategy.REALIZED_WINDOW

    def test_fees_in_range_uses_magnitude(self, svc, add_cash):
        add_cash('FEE', -5, datetime(2025, 6, 15))
        add_cash('fee', -2, datetime(2025, 6, 16))
        add_cash('DEPOSIT', 100, datetime(2025, 6, 16))
        assert svc.fees_in_range(USER_ID, datetime(2025, 6, 1), datetime(2025, 6, 30)) == Decimal('7')
