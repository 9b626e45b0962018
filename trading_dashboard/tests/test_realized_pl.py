"""
Tests for realized P&L aggregation and the adjusted P&L rule.

Covers:
- Expired/assigned options that never posted P&L
- Strategy-level P&L excluding its legs
- Date range construction
- Aggregator over the repositories
"""

from datetime import datetime, time
from decimal import Decimal

import trading_dashboard.core.models.domain as dm
from trading_dashboard.services.realized_pl import (
    RealizedPLAggregator,
    adjusted_realized_pl,
    aggregate_realized_pl,
    date_range_for_days,
)
from trading_dashboard.tests.conftest import USER_ID


def _option(**overrides):
    values = dict(
        id='o1', user_id='u1', asset_type=dm.AssetType.OPTION, symbol='SPY',
        status=dm.PositionStatus.EXPIRED, opening_quantity=Decimal('1'),
        current_quantity=dm.ZERO, average_opening_price=Decimal('5'),
    )
    values.update(overrides)
    return dm.Position(**values)


# =============================================================================
# Adjusted realized P&L
# =============================================================================

class TestAdjustedRealizedPL:

    def test_expired_long_option_uses_cost_basis(self):
        p = _option(total_cost_basis=Decimal('-500'))
        assert adjusted_realized_pl(p) == Decimal('-500')

    def test_assigned_short_option_keeps_credit(self):
        p = _option(status=dm.PositionStatus.ASSIGNED, side=dm.PositionSide.SHORT,
                    total_cost_basis=Decimal('320'))
        assert adjusted_realized_pl(p) == Decimal('320')

    def test_notional_fallback_is_signed_by_side(self):
        long_leg = _option()
        short_leg = _option(side=dm.PositionSide.SHORT)
        assert adjusted_realized_pl(long_leg) == Decimal('-500')
        assert adjusted_realized_pl(short_leg) == Decimal('500')

    def test_booked_pl_is_left_alone(self):
        assert adjusted_realized_pl(_option(realized_pl=Decimal('75'),
                                            total_cost_basis=Decimal('-500'))) == Decimal('75')

    def test_closing_amount_means_pl_already_reflected(self):
        p = _option(total_cost_basis=Decimal('-500'), total_closing_amount=Decimal('500'))
        assert adjusted_realized_pl(p) == dm.ZERO

    def test_open_option_is_not_adjusted(self):
        p = _option(status=dm.PositionStatus.OPEN, total_cost_basis=Decimal('-500'))
        assert adjusted_realized_pl(p) == dm.ZERO

    def test_stock_is_never_adjusted(self):
        p = _option(asset_type=dm.AssetType.STOCK, status=dm.PositionStatus.CLOSED,
                    total_cost_basis=Decimal('-500'))
        assert adjusted_realized_pl(p) == dm.ZERO


# =============================================================================
# Aggregation
# =============================================================================

class TestAggregateRealizedPL:

    def test_strategy_pl_replaces_its_legs(self):
        strategy = dm.Strategy(id='s1', user_id='u1', strategy_type='vertical_spread',
                               realized_pl=Decimal('150'))
        legs = [
            _option(id='l1', status=dm.PositionStatus.CLOSED, realized_pl=Decimal('80'), strategy_id='s1'),
            _option(id='l2', status=dm.PositionStatus.CLOSED, realized_pl=Decimal('70'), strategy_id='s1'),
        ]
        standalone = _option(id='p1', asset_type=dm.AssetType.STOCK,
                             status=dm.PositionStatus.CLOSED, realized_pl=Decimal('-20'))

        assert aggregate_realized_pl(legs + [standalone], [strategy]) == Decimal('130')

    def test_legs_count_when_strategy_has_no_pl(self):
        strategy = dm.Strategy(id='s1', user_id='u1', strategy_type='vertical_spread')
        legs = [
            _option(id='l1', status=dm.PositionStatus.CLOSED, realized_pl=Decimal('80'), strategy_id='s1'),
            _option(id='l2', status=dm.PositionStatus.CLOSED, realized_pl=Decimal('-30'), strategy_id='s1'),
        ]
        assert aggregate_realized_pl(legs, [strategy]) == Decimal('50')

    def test_inputs_are_not_mutated(self):
        strategy = dm.Strategy(id='s1', user_id='u1', strategy_type='x', realized_pl=Decimal('10'))
        aggregate_realized_pl([], [strategy])
        assert strategy.realized_pl == Decimal('10')


class TestDateRangeForDays:

    def test_one_day_is_today(self):
        start, end = date_range_for_days(1, datetime(2025, 6, 18, 15))
        assert start == datetime(2025, 6, 18, 0, 0)
        assert end == datetime.combine(datetime(2025, 6, 18).date(), time.max)

    def test_seven_days_includes_today(self):
        start, _ = date_range_for_days(7, datetime(2025, 6, 18, 15))
        assert start == datetime(2025, 6, 12)

    def test_zero_is_treated_as_one(self):
        assert date_range_for_days(0, datetime(2025, 6, 18)) == date_range_for_days(1, datetime(2025, 6, 18))


class TestRealizedPLAggregator:

    def test_each_trade_counted_once(self, session, add_position, add_strategy):
        add_strategy(id='s1', realized_pl=Decimal('150'), closed_at=datetime(2025, 6, 12, 15))
        add_position(asset_type=dm.AssetType.OPTION, strategy_id='s1', realized_pl=Decimal('80'),
                     closed_at=datetime(2025, 6, 12, 15))
        add_position(asset_type=dm.AssetType.OPTION, strategy_id='s1', realized_pl=Decimal('70'),
                     closed_at=datetime(2025, 6, 12, 15))
        add_position(realized_pl=Decimal('-20'), closed_at=datetime(2025, 6, 13, 10))
        add_position(realized_pl=Decimal('999'), closed_at=datetime(2025, 1, 13, 10))

        start, end = date_range_for_days(7, datetime(2025, 6, 18, 15))
        total = RealizedPLAggregator(session).get_realized_pl_for_date_range(USER_ID, start, end)
        assert total == Decimal('130')

    def test_empty_range_is_zero(self, session):
        start, end = date_range_for_days(7, datetime(2025, 6, 18, 15))
        assert RealizedPLAggregator(session).get_realized_pl_for_date_range(USER_ID, start, end) == dm.ZERO
