"""
Time-Window Performance - Daily/weekly/monthly/yearly P&L.

Two strategies give different numbers from the same data, so both are
kept and chosen per window (settings.window_strategies) or per call:

    realized_window:      realized P&L booked in the last N days
                          + current unrealized P&L
                          - fees in the window (fee_adjusted_windows only)
                          baseline = current portfolio value
    snapshot_comparison:  current portfolio value - snapshot from N days ago
                          (unrealized P&L only when no snapshot exists)

Percent is pl / |baseline| * 100, or 0 without a usable baseline.

Usage:
    svc = TimeWindowPerformanceService(session, quote_provider=provider)
    weekly = asyncio.run(svc.weekly(user_id))
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase
from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.repositories.cash_transaction import CashTransactionRepository
from trading_dashboard.repositories.portfolio_snapshot import PortfolioSnapshotRepository
from trading_dashboard.services.portfolio_valuation_service import PortfolioValuationService
from trading_dashboard.services.realized_pl import RealizedPLAggregator, date_range_for_days

logger = logging.getLogger(__name__)


class PerformanceWindow(Enum):
    """Window length in days"""
    DAILY = 1
    WEEKLY = 7
    MONTHLY = 30
    YEARLY = 365

    @property
    def days(self) -> int:
        return self.value

    @property
    def key(self) -> str:
        return self.name.lower()


class WindowStrategy(Enum):
    REALIZED_WINDOW = "realized_window"
    SNAPSHOT_COMPARISON = "snapshot_comparison"


@dataclass
class PeriodPerformance:
    """P&L for one window."""
    window: PerformanceWindow
    strategy: WindowStrategy
    pl: Decimal = dm.ZERO
    pl_percent: float = 0.0
    realized_pl: Decimal = dm.ZERO
    unrealized_pl: Decimal = dm.ZERO
    fees: Decimal = dm.ZERO
    current_value: Decimal = dm.ZERO
    baseline_value: Optional[Decimal] = None
    as_of: Optional[datetime] = None

    def to_summary_row(self) -> list:
        return [
            self.window.key.capitalize(),
            self.strategy.value,
            f"${float(self.pl):,.2f}",
            f"{self.pl_percent:.2f}%",
            f"${float(self.baseline_value):,.2f}" if self.baseline_value is not None else "-",
        ]


def percent_of(pl: Decimal, baseline: Optional[Decimal]) -> float:
    if not baseline:
        return 0.0
    return float(pl / abs(baseline) * 100)


class TimeWindowPerformanceService:
    """Windowed P&L built on the valuation engine, the aggregator and snapshots"""

    def __init__(
        self,
        session: Session,
        quote_provider: Optional[QuoteProviderBase] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = dm.utc_now,
        valuation_service: Optional[PortfolioValuationService] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.valuation = valuation_service or PortfolioValuationService(
            session, quote_provider=quote_provider, settings=self.settings, logger=self.logger
        )
        self.aggregator = RealizedPLAggregator(session, logger=self.logger)
        self.cash = CashTransactionRepository(session)
        self.snapshots = PortfolioSnapshotRepository(session)

    def default_strategy(self, window: PerformanceWindow) -> WindowStrategy:
        return WindowStrategy(
            self.settings.window_strategies.get(window.key, WindowStrategy.REALIZED_WINDOW.value)
        )

    def fees_in_range(self, user_id: str, start: datetime, end: datetime) -> Decimal:
        """Sum of |amount| over fee-coded transactions"""
        transactions = self.cash.get_by_date_range(user_id, start, end)
        return sum(
            (abs(t.amount) for t in transactions if t.has_code(self.settings.fee_codes)),
            dm.ZERO,
        )

    async def performance(
        self,
        user_id: str,
        window: PerformanceWindow,
        strategy: Optional[WindowStrategy] = None,
        subtract_fees: Optional[bool] = None,
        as_of: Optional[datetime] = None,
    ) -> PeriodPerformance:
        as_of = as_of or self.clock()
        strategy = strategy or self.default_strategy(window)
        value = await self.valuation.compute_portfolio_value(user_id)

        if strategy == WindowStrategy.REALIZED_WINDOW:
            start, end = date_range_for_days(window.days, as_of)
            realized = self.aggregator.get_realized_pl_for_date_range(user_id, start, end)
            fees = self.fees_in_range(user_id, start, end)
            if subtract_fees is None:
                subtract_fees = window.key in self.settings.fee_adjusted_windows

            pl = realized + value.unrealized_pl - (fees if subtract_fees else dm.ZERO)
            baseline = value.portfolio_value
        else:
            realized = dm.ZERO
            fees = dm.ZERO
            snapshot = self.snapshots.get_from_days_ago(user_id, window.days, as_of.date())
            if snapshot is not None:
                baseline = snapshot.portfolio_value
                pl = value.portfolio_value - baseline
            else:
                self.logger.info(
                    f"No snapshot {window.days} days before {as_of:%Y-%m-%d} for {user_id}, "
                    f"using unrealized P&L"
                )
                baseline = None
                pl = value.unrealized_pl

        result = PeriodPerformance(
            window=window,
            strategy=strategy,
            pl=pl,
            pl_percent=percent_of(pl, baseline),
            realized_pl=realized,
            unrealized_pl=value.unrealized_pl,
            fees=fees,
            current_value=value.portfolio_value,
            baseline_value=baseline,
            as_of=as_of,
        )
        self.logger.debug(f"{window.key} performance for {user_id} ({strategy.value}): {pl}")
        return result

    async def daily(self, user_id: str, **kwargs) -> PeriodPerformance:
        return await self.performance(user_id, PerformanceWindow.DAILY, **kwargs)

    async def weekly(self, user_id: str, **kwargs) -> PeriodPerformance:
        return await self.performance(user_id, PerformanceWindow.WEEKLY, **kwargs)

    async def monthly(self, user_id: str, **kwargs) -> PeriodPerformance:
        return await self.performance(user_id, PerformanceWindow.MONTHLY, **kwargs)

    async def yearly(self, user_id: str, **kwargs) -> PeriodPerformance:
        return await self.performance(user_id, PerformanceWindow.YEARLY, **kwargs)
