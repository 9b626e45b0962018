"""
Realized P&L Aggregator - Realized P&L over a date range without double counting.

A multi-leg strategy with booked P&L is counted once at strategy level and
its legs are skipped. Everything else contributes its adjusted realized P&L,
which recovers P&L for options that expired or were assigned without a
closing cash amount.

Usage:
    from trading_dashboard.services.realized_pl import RealizedPLAggregator, date_range_for_days

    with session_scope() as session:
        start, end = date_range_for_days(7)
        total = RealizedPLAggregator(session).get_realized_pl_for_date_range(user_id, start, end)
"""

from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Tuple
import logging

from sqlalchemy.orm import Session

import trading_dashboard.core.models.domain as dm
from trading_dashboard.repositories.position import PositionRepository
from trading_dashboard.repositories.strategy import StrategyRepository

logger = logging.getLogger(__name__)


def adjusted_realized_pl(position: dm.Position) -> Decimal:
    """
    Stored realized P&L, except for terminal options whose P&L never posted.

    Such an option (no remaining quantity, no closing amount, zero realized
    P&L) takes its cost basis instead. Without a cost basis the opening
    notional is used: positive for short (credit kept), negative for long.
    """
    realized = position.realized_pl or dm.ZERO

    if (
        position.asset_type == dm.AssetType.OPTION
        and position.is_terminal
        and position.current_quantity == 0
        and (position.total_closing_amount or dm.ZERO) == 0
        and realized == 0
    ):
        if position.total_cost_basis:
            return position.total_cost_basis
        notional = abs(position.opening_quantity * position.average_opening_price
                       * position.effective_multiplier)
        return notional if not position.is_long else -notional

    return realized


def aggregate_realized_pl(positions: Iterable[dm.Position],
                          strategies: Iterable[dm.Strategy]) -> Decimal:
    """
    Sum realized P&L of strategies and positions, counting each trade once.

    Pass 1 collects strategies with nonzero P&L; their ids form the
    excluded set. Pass 2 adds every position not belonging to an excluded
    strategy.
    """
    strategy_pl = {s.id: s.realized_pl for s in strategies if s.realized_pl != 0}
    excluded = frozenset(strategy_pl)

    position_pl = sum(
        (adjusted_realized_pl(p) for p in positions
         if not p.strategy_id or p.strategy_id not in excluded),
        dm.ZERO,
    )
    return sum(strategy_pl.values(), dm.ZERO) + position_pl


def date_range_for_days(days: int, as_of: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Inclusive range covering the last `days` calendar days ending on as_of.

    date_range_for_days(1) is today from 00:00:00 to 23:59:59.999999.
    """
    days = max(1, int(days))
    as_of = as_of or dm.utc_now()
    end = datetime.combine(as_of.date(), time.max)
    start = datetime.combine(as_of.date() - timedelta(days=days - 1), time.min)
    return start, end


class RealizedPLAggregator:
    """Realized P&L for a user over a date range"""

    def __init__(self, session: Session, logger: Optional[logging.Logger] = None):
        self.session = session
        self.positions = PositionRepository(session)
        self.strategies = StrategyRepository(session)
        self.logger = logger or logging.getLogger(__name__)

    def get_realized_pl_for_date_range(self, user_id: str, start: datetime,
                                       end: datetime) -> Decimal:
        positions = self.positions.get_realized_pl_by_date_range(user_id, start, end)
        strategies = self.strategies.get_realized_pl_by_date_range(user_id, start, end)
        total = aggregate_realized_pl(positions, strategies)
        self.logger.debug(
            f"Realized P&L {start:%Y-%m-%d}..{end:%Y-%m-%d} for {user_id}: "
            f"{total} ({len(positions)} positions, {len(strategies)} strategies)"
        )
        return total
