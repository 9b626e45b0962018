"""
Tests for domain records.

Covers:
- Position lifecycle flags (terminal, partially closed)
- Effective multiplier defaults
- Trade projection from Position and Strategy
- Holding days rounding
- Breakdown (de)serialization
"""

from datetime import datetime, timedelta
from decimal import Decimal

import trading_dashboard.core.models.domain as dm


def _position(**overrides):
    values = dict(id='p1', user_id='u1', asset_type=dm.AssetType.STOCK, symbol='AAPL')
    values.update(overrides)
    return dm.Position(**values)


class TestPositionFlags:

    def test_expired_and_assigned_are_terminal(self):
        for status in (dm.PositionStatus.CLOSED, dm.PositionStatus.EXPIRED, dm.PositionStatus.ASSIGNED):
            assert _position(status=status).is_terminal

    def test_open_is_not_terminal(self):
        assert not _position().is_terminal

    def test_partially_closed_needs_pl_and_reduced_quantity(self):
        p = _position(opening_quantity=Decimal('10'), current_quantity=Decimal('4'),
                      realized_pl=Decimal('25'))
        assert p.is_partially_closed
        assert p.has_realized_pl

    def test_reduced_quantity_without_pl_is_not_partial(self):
        p = _position(opening_quantity=Decimal('10'), current_quantity=Decimal('4'))
        assert not p.is_partially_closed
        assert not p.has_realized_pl

    def test_realized_at_prefers_closed_at(self):
        closed = datetime(2025, 3, 4)
        updated = datetime(2025, 3, 5)
        assert _position(closed_at=closed, updated_at=updated).realized_at == closed
        assert _position(updated_at=updated).realized_at == updated


class TestEffectiveMultiplier:

    def test_option_defaults_to_100(self):
        assert _position(asset_type=dm.AssetType.OPTION).effective_multiplier == Decimal('100')

    def test_stock_defaults_to_1(self):
        assert _position().effective_multiplier == Decimal('1')

    def test_explicit_multiplier_wins(self):
        p = _position(asset_type=dm.AssetType.FUTURES, multiplier=Decimal('50'))
        assert p.effective_multiplier == Decimal('50')


class TestTrade:

    def test_from_position_keeps_common_fields(self):
        opened = datetime(2025, 1, 1, 10)
        closed = datetime(2025, 1, 3, 10)
        p = _position(realized_pl=Decimal('42'), opened_at=opened, closed_at=closed)
        trade = dm.Trade.from_position(p)

        assert trade.kind == dm.TradeKind.POSITION
        assert trade.source_id == 'p1'
        assert trade.realized_pl == Decimal('42')
        assert (trade.opened_at, trade.closed_at) == (opened, closed)

    def test_from_strategy_with_override(self):
        s = dm.Strategy(id='s1', user_id='u1', strategy_type='iron_condor')
        trade = dm.Trade.from_strategy(s, realized_pl=Decimal('-10'))
        assert trade.kind == dm.TradeKind.STRATEGY
        assert trade.is_loss
        assert not trade.is_win

    def test_breakeven_is_neither_win_nor_loss(self):
        trade = dm.Trade(dm.TradeKind.POSITION, 'p1', dm.ZERO)
        assert not trade.is_win
        assert not trade.is_loss

    def test_holding_days_rounds_up(self):
        opened = datetime(2025, 1, 1, 10)
        trade = dm.Trade(dm.TradeKind.POSITION, 'p1', dm.ZERO, opened, opened + timedelta(days=2, hours=1))
        assert trade.holding_days() == 3

    def test_holding_days_is_at_least_one(self):
        opened = datetime(2025, 1, 1, 10)
        trade = dm.Trade(dm.TradeKind.POSITION, 'p1', dm.ZERO, opened, opened + timedelta(minutes=5))
        assert trade.holding_days() == 1

    def test_holding_days_needs_both_timestamps(self):
        trade = dm.Trade(dm.TradeKind.POSITION, 'p1', dm.ZERO, datetime(2025, 1, 1))
        assert trade.holding_days() is None


class TestBreakdown:

    def test_from_dict_tolerates_missing_buckets(self):
        breakdown = dm.PositionsBreakdown.from_dict({'stocks': {'count': 2, 'value': 1500.5}})
        assert breakdown.stocks == dm.BreakdownBucket(2, Decimal('1500.5'))
        assert breakdown.options == dm.BreakdownBucket()

    def test_from_none(self):
        assert dm.PositionsBreakdown.from_dict(None) == dm.PositionsBreakdown()

    def test_for_asset_type(self):
        breakdown = dm.PositionsBreakdown(crypto=dm.BreakdownBucket(1, Decimal('300')))
        assert breakdown.for_asset_type(dm.AssetType.CRYPTO).value == Decimal('300')


class TestCashTransaction:

    def test_has_code_is_case_insensitive(self):
        tx = dm.CashTransaction(id='t1', user_id='u1', transaction_code='deposit', amount=Decimal('1'))
        assert tx.has_code(['DEPOSIT'])
        assert not tx.has_code(['FEE'])


class TestQuote:

    def test_mid_needs_both_sides(self):
        assert dm.Quote('X', bid=Decimal('1'), ask=Decimal('2')).mid == Decimal('1.5')
        assert dm.Quote('X', bid=Decimal('1')).mid is None
