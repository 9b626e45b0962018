"""
Performance Metrics Service - Win rate and grouped breakdowns from position history.

Calculates dashboard performance metrics:
    - Win rate, profit factor, expectancy, ROI, average holding period
    - Realized/unrealized P&L series, last 7 days, drawdown
    - Breakdowns by symbol, month, weekday, option type, expiration,
      DTE bucket, strategy type, entry time, holding period, futures
      contract month, futures margin efficiency and crypto coin
    - Balance and ROI over time from daily snapshots

Win-rate style metrics count a multi-leg strategy as a single trade (see
trade_population). Grouped breakdowns partition positions with realized
P&L and share the same win/loss arithmetic (summarize_group).

Usage:
    from trading_dashboard.services.performance_metrics_service import PerformanceMetricsService
    from trading_dashboard.core.database.session import session_scope

    with session_scope() as session:
        svc = PerformanceMetricsService(session)
        metrics = svc.calculate_win_rate(user_id)
        by_symbol = svc.calculate_performance_by_symbol(user_id, dm.AssetType.STOCK)
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging

from sqlalchemy.orm import Session

import trading_dashboard.core.models.domain as dm
from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.repositories.cash_transaction import CashTransactionRepository
from trading_dashboard.repositories.portfolio_snapshot import PortfolioSnapshotRepository
from trading_dashboard.repositories.position import PositionRepository
from trading_dashboard.repositories.strategy import StrategyRepository
from trading_dashboard.services.portfolio_valuation_service import (
    compute_initial_investment,
    compute_net_cash_flow,
)
from trading_dashboard.services.realized_pl import adjusted_realized_pl
from trading_dashboard.services.trade_population import TradePopulation

logger = logging.getLogger(__name__)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']
DAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
DTE_BUCKETS = ['0 DTE', '1 DTE', '2-3 DTE', '4-7 DTE', '8-14 DTE', '15-30 DTE', '30+ DTE']
HOLDING_PERIOD_BUCKETS = ['< 1 Day', '1-7 Days', '1-4 Weeks', '1-3 Months', '3+ Months']
SINGLE_OPTION = 'single_option'


# ============================================================================
# Result types
# ============================================================================

@dataclass
class WinRateMetrics:
    """Win/loss statistics over counted trades."""
    # Trade counts
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0

    # P&L
    total_gains: Decimal = dm.ZERO
    total_losses: Decimal = dm.ZERO       # positive magnitude
    average_gain: Decimal = dm.ZERO
    average_loss: Decimal = dm.ZERO       # positive magnitude
    largest_win: Decimal = dm.ZERO
    largest_loss: Decimal = dm.ZERO       # most negative trade
    expectancy: Decimal = dm.ZERO
    realized_pl: Decimal = dm.ZERO
    unrealized_pl: Decimal = dm.ZERO
    average_pl_per_trade: Decimal = dm.ZERO
    current_balance: Decimal = dm.ZERO

    # Ratios
    win_rate: float = 0.0                 # percentage
    profit_factor: float = 0.0            # total_gains / total_losses
    roi: float = 0.0                      # percentage of initial investment
    average_holding_period_days: float = 0.0

    def to_summary_rows(self) -> List[List]:
        """Rows for tabulate display."""
        return [
            ["Trades", self.total_trades],
            ["Win Rate", f"{self.win_rate:.1f}%"],
            ["Winners / Losers", f"{self.winning_trades} / {self.losing_trades}"],
            ["Realized P&L", f"${float(self.realized_pl):,.2f}"],
            ["Unrealized P&L", f"${float(self.unrealized_pl):,.2f}"],
            ["Avg Gain", f"${float(self.average_gain):,.2f}" if self.winning_trades else "-"],
            ["Avg Loss", f"${float(self.average_loss):,.2f}" if self.losing_trades else "-"],
            ["Profit Factor", f"{self.profit_factor:.2f}" if self.profit_factor else "-"],
            ["Expectancy", f"${float(self.expectancy):,.2f}"],
            ["Largest Win", f"${float(self.largest_win):,.2f}"],
            ["Largest Loss", f"${float(self.largest_loss):,.2f}"],
            ["Avg Holding (days)", f"{self.average_holding_period_days:.1f}"],
            ["ROI", f"{self.roi:.2f}%"],
            ["Current Balance", f"${float(self.current_balance):,.2f}"],
        ]


@dataclass
class GroupPerformance:
    """Win/loss arithmetic for one slice of positions."""
    key: str = ""
    label: str = ""
    total_pl: Decimal = dm.ZERO
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    average_pl: Decimal = dm.ZERO
    largest_win: Decimal = dm.ZERO
    largest_loss: Decimal = dm.ZERO

    def to_summary_row(self) -> List:
        return [
            self.label or self.key,
            self.total_trades,
            f"{self.win_rate:.1f}%",
            f"${float(self.total_pl):,.2f}",
            f"${float(self.average_pl):,.2f}",
        ]


@dataclass
class StrategyTypePerformance(GroupPerformance):
    profit_on_risk: float = 0.0           # percentage of total risk


@dataclass
class MarginEfficiency:
    """Futures P&L per dollar of margin, per symbol."""
    symbol: str
    pl: Decimal = dm.ZERO
    margin_used: Decimal = dm.ZERO
    margin_efficiency: float = 0.0        # percentage
    total_trades: int = 0


@dataclass
class PLPoint:
    date: date
    cumulative_pl: Decimal = dm.ZERO
    realized_pl: Decimal = dm.ZERO        # cumulative realized
    unrealized_pl: Decimal = dm.ZERO      # cumulative unrealized


@dataclass
class DailyPL:
    date: date
    pl: Decimal = dm.ZERO


@dataclass
class DrawdownPoint:
    date: date
    drawdown: float = 0.0                 # percentage below peak
    peak: Decimal = dm.ZERO
    current: Decimal = dm.ZERO


@dataclass
class BalancePoint:
    date: date
    balance: Decimal = dm.ZERO
    net_cash_flow: Decimal = dm.ZERO


@dataclass
class ROIPoint:
    date: date
    roi: float = 0.0
    portfolio_value: Decimal = dm.ZERO
    net_cash_flow: Decimal = dm.ZERO


@dataclass
class CalendarDay:
    date: date
    pl: Decimal = dm.ZERO
    trades: int = 0


# ============================================================================
# Shared arithmetic
# ============================================================================

def summarize_group(key: str, pls: Sequence[Decimal], label: str = "") -> GroupPerformance:
    """
    Win/loss arithmetic over one group's P&L values.

    Zero P&L counts as a trade but neither a win nor a loss.
    """
    winners = [pl for pl in pls if pl > 0]
    losers = [pl for pl in pls if pl < 0]
    total = sum(pls, dm.ZERO)
    count = len(pls)
    return GroupPerformance(
        key=key,
        label=label or key,
        total_pl=total,
        total_trades=count,
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=(len(winners) / count * 100) if count else 0.0,
        average_pl=(total / count) if count else dm.ZERO,
        largest_win=max(winners) if winners else dm.ZERO,
        largest_loss=min(losers) if losers else dm.ZERO,
    )


def calculate_drawdown(series: Sequence[PLPoint]) -> List[DrawdownPoint]:
    """
    Drawdown below the running peak of a cumulative P&L series.

    The peak starts at 0, so a series that never rises above 0 reports no
    drawdown.
    """
    peak = dm.ZERO
    result = []
    for point in series:
        current = point.cumulative_pl
        if current > peak:
            peak = current
        drawdown = float((peak - current) / abs(peak) * 100) if peak != 0 else 0.0
        result.append(DrawdownPoint(date=point.date, drawdown=drawdown, peak=peak, current=current))
    return result


def _ceil_days_between(start: datetime, end: datetime) -> int:
    return dm.ceil_days(end - start)


def dte_bucket(days: int) -> str:
    if days <= 0:
        return '0 DTE'
    if days == 1:
        return '1 DTE'
    if days <= 3:
        return '2-3 DTE'
    if days <= 7:
        return '4-7 DTE'
    if days <= 14:
        return '8-14 DTE'
    if days <= 30:
        return '15-30 DTE'
    return '30+ DTE'


def holding_period_bucket(days: int) -> str:
    if days <= 0:
        return '< 1 Day'
    if days <= 7:
        return '1-7 Days'
    if days <= 30:
        return '1-4 Weeks'
    if days <= 90:
        return '1-3 Months'
    return '3+ Months'


def entry_time_bucket(opened_at: datetime) -> str:
    """HH:MM floored to 5 minutes"""
    return f"{opened_at.hour:02d}:{opened_at.minute // 5 * 5:02d}"


def month_label(month_key: str) -> str:
    """'2025-01' -> 'Jan 2025'"""
    year, month = month_key.split('-')
    return f"{MONTH_NAMES[int(month) - 1]} {year}"


def _as_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value.split('T')[0], '%Y-%m-%d').date()


# ============================================================================
# Service
# ============================================================================

class PerformanceMetricsService:
    """Calculate performance metrics from positions, strategies and snapshots."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = dm.utc_now,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.positions = PositionRepository(session)
        self.strategies = StrategyRepository(session)
        self.cash = CashTransactionRepository(session)
        self.snapshots = PortfolioSnapshotRepository(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _positions(self, user_id: str,
                   asset_type: Optional[dm.AssetType] = None) -> List[dm.Position]:
        positions = self.positions.get_all(user_id)
        if asset_type is None:
            return positions
        return [p for p in positions if p.asset_type == asset_type]

    def _realized_positions(self, user_id: str,
                            asset_type: Optional[dm.AssetType] = None) -> List[dm.Position]:
        """Closed or partially closed positions, strategy legs included"""
        return [p for p in self._positions(user_id, asset_type) if p.has_realized_pl]

    def _group(self, positions: Sequence[dm.Position],
               key_fn: Callable[[dm.Position], Optional[str]]) -> Dict[str, List[Decimal]]:
        groups: Dict[str, List[Decimal]] = {}
        for p in positions:
            key = key_fn(p)
            if key is None:
                continue
            groups.setdefault(key, []).append(adjusted_realized_pl(p))
        return groups

    def _filtered_snapshots(self, user_id: str, days: Optional[int]) -> List[dm.PortfolioSnapshot]:
        snapshots = self.snapshots.get_all(user_id)
        if not snapshots or not days:
            return snapshots
        start = snapshots[-1].snapshot_date - timedelta(days=days)
        return [s for s in snapshots if s.snapshot_date >= start]

    @staticmethod
    def _snapshot_value(snapshot: dm.PortfolioSnapshot,
                        asset_type: Optional[dm.AssetType]) -> Decimal:
        if asset_type is None:
            return snapshot.portfolio_value
        return snapshot.positions_breakdown.for_asset_type(asset_type).value + snapshot.net_cash_flow

    # ------------------------------------------------------------------
    # Win rate
    # ------------------------------------------------------------------

    def calculate_win_rate(self, user_id: str,
                           asset_type: Optional[dm.AssetType] = None) -> WinRateMetrics:
        """
        Win-rate metrics over counted trades.

        A trade is a standalone position with realized P&L or a counted
        strategy. Gains/losses, expectancy and holding period consider only
        winners and losers; breakeven trades still count in total_trades.
        """
        positions = self.positions.get_all(user_id)
        strategies = self.strategies.get_all(user_id)
        population = TradePopulation.build(positions, strategies, asset_type)
        trades = population.trades()

        unrealized_pl = sum(
            (p.unrealized_pl for p in positions
             if p.is_open and (asset_type is None or p.asset_type == asset_type)),
            dm.ZERO,
        )
        transactions = self.cash.get_by_user_id(user_id)
        initial_investment = compute_initial_investment(transactions, self.settings.deposit_codes)
        net_cash_flow = compute_net_cash_flow(transactions, self.settings.excluded_cash_flow_codes)
        current_balance = net_cash_flow + unrealized_pl

        self.logger.debug(
            f"Win rate for {user_id}: {len(population.strategies)} strategies, "
            f"{len(population.positions)} standalone positions"
        )

        if not trades:
            return WinRateMetrics(unrealized_pl=unrealized_pl, current_balance=current_balance)

        total = len(trades)
        winners = [t for t in trades if t.is_win]
        losers = [t for t in trades if t.is_loss]

        realized_pl = sum((t.realized_pl for t in trades), dm.ZERO)
        total_gains = sum((t.realized_pl for t in winners), dm.ZERO)
        total_losses = abs(sum((t.realized_pl for t in losers), dm.ZERO))
        average_gain = total_gains / len(winners) if winners else dm.ZERO
        average_loss = total_losses / len(losers) if losers else dm.ZERO

        # No losses gives an unbounded ratio; reported as 0
        profit_factor = float(total_gains / total_losses) if total_losses > 0 else 0.0

        expectancy = (Decimal(len(winners)) / total * average_gain
                      - Decimal(len(losers)) / total * average_loss)

        holding_days = [d for d in (t.holding_days() for t in winners + losers) if d is not None]

        return WinRateMetrics(
            total_trades=total,
            winning_trades=len(winners),
            losing_trades=len(losers),
            total_gains=total_gains,
            total_losses=total_losses,
            average_gain=average_gain,
            average_loss=average_loss,
            largest_win=max((t.realized_pl for t in winners), default=dm.ZERO),
            largest_loss=min((t.realized_pl for t in losers), default=dm.ZERO),
            expectancy=expectancy,
            realized_pl=realized_pl,
            unrealized_pl=unrealized_pl,
            average_pl_per_trade=realized_pl / total,
            current_balance=current_balance,
            win_rate=len(winners) / total * 100,
            profit_factor=profit_factor,
            roi=float(realized_pl / initial_investment * 100) if initial_investment > 0 else 0.0,
            average_holding_period_days=(sum(holding_days) / len(holding_days)) if holding_days else 0.0,
        )

    def calculate_average_gain_loss(self, user_id: str) -> Tuple[Decimal, Decimal]:
        """(average_gain, average_loss)"""
        metrics = self.calculate_win_rate(user_id)
        return metrics.average_gain, metrics.average_loss

    def calculate_profit_factor(self, user_id: str) -> float:
        return self.calculate_win_rate(user_id).profit_factor

    # ------------------------------------------------------------------
    # Grouped breakdowns
    # ------------------------------------------------------------------

    def calculate_performance_by_symbol(self, user_id: str,
                                        asset_type: Optional[dm.AssetType] = None,
                                        days: Optional[int] = None) -> List[GroupPerformance]:
        """Per-symbol performance, best total P&L first"""
        positions = self._realized_positions(user_id, asset_type)
        if days:
            cutoff = self.clock() - timedelta(days=days)
            positions = [p for p in positions if p.realized_at and p.realized_at >= cutoff]

        groups = self._group(positions, lambda p: p.symbol or 'Unknown')
        result = [summarize_group(symbol, pls) for symbol, pls in groups.items()]
        return sorted(result, key=lambda g: g.total_pl, reverse=True)

    def calculate_monthly_performance(self, user_id: str,
                                      asset_type: Optional[dm.AssetType] = None,
                                      months: int = 12) -> List[GroupPerformance]:
        """Per-month performance keyed YYYY-MM, newest first, at most `months` entries"""
        positions = self._realized_positions(user_id, asset_type)
        groups = self._group(
            positions,
            lambda p: p.realized_at.strftime('%Y-%m') if p.realized_at else None,
        )
        result = [summarize_group(key, pls, month_label(key)) for key, pls in groups.items()]
        result.sort(key=lambda g: g.key, reverse=True)
        return result[:months]

    def calculate_day_of_week_performance(self, user_id: str,
                                          asset_type: Optional[dm.AssetType] = None
                                          ) -> List[GroupPerformance]:
        """All seven weekdays, Monday first; empty days report zeros"""
        positions = self._realized_positions(user_id, asset_type)
        groups = self._group(
            positions,
            lambda p: DAY_NAMES[p.realized_at.weekday()] if p.realized_at else None,
        )
        return [summarize_group(day, groups.get(day, [])) for day in DAY_NAMES]

    def calculate_options_by_type(self, user_id: str) -> Dict[str, GroupPerformance]:
        """{'call': ..., 'put': ...}"""
        positions = self._realized_positions(user_id, dm.AssetType.OPTION)
        groups = self._group(positions, lambda p: p.option_type.value if p.option_type else None)
        return {
            option_type.value: summarize_group(option_type.value, groups.get(option_type.value, []))
            for option_type in dm.OptionType
        }

    def calculate_expiration_status(self, user_id: str) -> Dict[str, GroupPerformance]:
        """
        {'expired': ..., 'closed': ...}

        An option counts as expired when its status says so or it closed on
        or after its expiration date.
        """
        positions = [p for p in self._realized_positions(user_id, dm.AssetType.OPTION)
                     if p.expiration_date]

        def status_key(p: dm.Position) -> str:
            if p.status == dm.PositionStatus.EXPIRED:
                return 'expired'
            if p.closed_at and p.closed_at.date() >= p.expiration_date:
                return 'expired'
            return 'closed'

        groups = self._group(positions, status_key)
        return {key: summarize_group(key, groups.get(key, [])) for key in ('expired', 'closed')}

    def calculate_days_to_expiration(self, user_id: str) -> List[GroupPerformance]:
        """Performance by days from entry to expiration, in bucket order"""
        positions = self._realized_positions(user_id, dm.AssetType.OPTION)

        def bucket(p: dm.Position) -> Optional[str]:
            if not p.expiration_date or not p.opened_at:
                return None
            expiration = datetime.combine(p.expiration_date, time.min)
            return dte_bucket(_ceil_days_between(p.opened_at, expiration))

        groups = self._group(positions, bucket)
        return [summarize_group(b, groups[b]) for b in DTE_BUCKETS if b in groups]

    def calculate_strategy_performance(self, user_id: str) -> List[StrategyTypePerformance]:
        """
        Per strategy type, most traded first.

        profit_on_risk = P&L / total risk * 100, where each strategy's risk is
        max_risk or else |total_opening_cost|.
        """
        strategies = [
            s for s in self.strategies.get_all(user_id)
            if s.status == dm.StrategyStatus.CLOSED or (s.is_open and s.realized_pl != 0)
        ]

        by_type: Dict[str, List[dm.Strategy]] = {}
        for s in strategies:
            by_type.setdefault(s.strategy_type, []).append(s)

        result = []
        for strategy_type, members in by_type.items():
            group = summarize_group(strategy_type, [s.realized_pl for s in members])
            total_risk = sum(
                (s.max_risk or abs(s.total_opening_cost or dm.ZERO) for s in members),
                dm.ZERO,
            )
            profit_on_risk = float(group.total_pl / total_risk * 100) if total_risk > 0 else 0.0
            result.append(StrategyTypePerformance(**vars(group), profit_on_risk=profit_on_risk))

        return sorted(result, key=lambda g: g.total_trades, reverse=True)

    def calculate_entry_time_performance(self, user_id: str,
                                         asset_type: dm.AssetType) -> List[GroupPerformance]:
        """Performance by time of day opened, 5-minute buckets"""
        positions = self._realized_positions(user_id, asset_type)
        groups = self._group(positions, lambda p: entry_time_bucket(p.opened_at) if p.opened_at else None)
        return [summarize_group(b, groups[b]) for b in sorted(groups)]

    def calculate_entry_time_by_strategy(self, user_id: str) -> Dict[str, List[GroupPerformance]]:
        """Entry-time buckets per strategy type; standalone options are 'single_option'"""
        positions = self._realized_positions(user_id, dm.AssetType.OPTION)
        strategy_types = {s.id: s.strategy_type for s in self.strategies.get_all(user_id)}

        by_strategy: Dict[str, List[dm.Position]] = {}
        for p in positions:
            if not p.opened_at:
                continue
            strategy_type = strategy_types.get(p.strategy_id, SINGLE_OPTION) if p.strategy_id else SINGLE_OPTION
            by_strategy.setdefault(strategy_type, []).append(p)

        result = {}
        for strategy_type, members in by_strategy.items():
            groups = self._group(members, lambda p: entry_time_bucket(p.opened_at))
            result[strategy_type] = [summarize_group(b, groups[b]) for b in sorted(groups)]
        return result

    def calculate_holding_period_distribution(self, user_id: str,
                                              asset_type: dm.AssetType) -> List[GroupPerformance]:
        """Performance by days held, in bucket order"""
        positions = self._realized_positions(user_id, asset_type)

        def bucket(p: dm.Position) -> Optional[str]:
            if not p.opened_at:
                return None
            end = p.closed_at or (None if p.is_open else p.updated_at)
            if end is None:
                return None
            return holding_period_bucket(_ceil_days_between(p.opened_at, end))

        groups = self._group(positions, bucket)
        return [summarize_group(b, groups[b]) for b in HOLDING_PERIOD_BUCKETS if b in groups]

    def calculate_futures_contract_month_performance(self, user_id: str) -> List[GroupPerformance]:
        positions = self._realized_positions(user_id, dm.AssetType.FUTURES)
        groups = self._group(positions, lambda p: p.contract_month or 'Unknown')
        return [summarize_group(month, groups[month]) for month in sorted(groups)]

    def calculate_futures_margin_efficiency(self, user_id: str) -> List[MarginEfficiency]:
        """
        P&L per dollar of margin by futures symbol.

        margin_used = margin_requirement * |opening_quantity| summed per symbol.
        """
        positions = self._realized_positions(user_id, dm.AssetType.FUTURES)

        by_symbol: Dict[str, MarginEfficiency] = {}
        for p in positions:
            entry = by_symbol.setdefault(p.symbol, MarginEfficiency(symbol=p.symbol))
            entry.pl += adjusted_realized_pl(p)
            entry.margin_used += (p.margin_requirement or dm.ZERO) * abs(p.opening_quantity)
            entry.total_trades += 1

        for entry in by_symbol.values():
            if entry.margin_used > 0:
                entry.margin_efficiency = float(entry.pl / entry.margin_used * 100)

        return sorted(by_symbol.values(), key=lambda e: e.total_trades, reverse=True)

    def calculate_crypto_coin_performance(self, user_id: str) -> List[GroupPerformance]:
        positions = self._realized_positions(user_id, dm.AssetType.CRYPTO)
        groups = self._group(positions, lambda p: p.symbol or 'Unknown')
        result = [summarize_group(coin, pls) for coin, pls in groups.items()]
        return sorted(result, key=lambda g: g.total_trades, reverse=True)

    # ------------------------------------------------------------------
    # Time series
    # ------------------------------------------------------------------

    def calculate_pl_over_time(self, user_id: str,
                               asset_type: Optional[dm.AssetType] = None,
                               days: Optional[int] = None) -> List[PLPoint]:
        """
        Cumulative daily P&L.

        Realized P&L lands on the day it was booked; open positions' stored
        unrealized P&L lands on today.
        """
        positions = self._positions(user_id, asset_type)
        today = self.clock().date()

        daily: Dict[date, List[Decimal]] = {}
        for p in positions:
            if p.has_realized_pl and p.realized_at:
                daily.setdefault(p.realized_at.date(), [dm.ZERO, dm.ZERO])[0] += adjusted_realized_pl(p)
        for p in positions:
            if p.is_open:
                daily.setdefault(today, [dm.ZERO, dm.ZERO])[1] += p.unrealized_pl

        result = []
        cumulative_realized = dm.ZERO
        cumulative_unrealized = dm.ZERO
        for day in sorted(daily):
            realized, unrealized = daily[day]
            cumulative_realized += realized
            cumulative_unrealized += unrealized
            result.append(PLPoint(
                date=day,
                cumulative_pl=cumulative_realized + cumulative_unrealized,
                realized_pl=cumulative_realized,
                unrealized_pl=cumulative_unrealized,
            ))

        if days:
            cutoff = today - timedelta(days=days)
            result = [point for point in result if point.date >= cutoff]
        return result

    def calculate_last_7_days_pl(self, user_id: str,
                                 asset_type: Optional[dm.AssetType] = None) -> List[DailyPL]:
        """Seven daily points ending today; today also carries open unrealized P&L"""
        positions = self._positions(user_id, asset_type)
        today = self.clock().date()
        dates = [today - timedelta(days=offset) for offset in range(6, -1, -1)]

        result = []
        for day in dates:
            pl = sum(
                (adjusted_realized_pl(p) for p in positions
                 if p.is_terminal and p.closed_at and p.closed_at.date() == day),
                dm.ZERO,
            )
            if day == today:
                pl += sum((p.unrealized_pl for p in positions if p.is_open), dm.ZERO)
            result.append(DailyPL(date=day, pl=pl))
        return result

    def calculate_drawdown_over_time(self, user_id: str,
                                     asset_type: Optional[dm.AssetType] = None,
                                     days: Optional[int] = None) -> List[DrawdownPoint]:
        return calculate_drawdown(self.calculate_pl_over_time(user_id, asset_type, days))

    def calculate_daily_performance_calendar(self, user_id: str,
                                             asset_type: Optional[dm.AssetType] = None
                                             ) -> List[CalendarDay]:
        positions = self._realized_positions(user_id, asset_type)
        days: Dict[date, CalendarDay] = {}
        for p in positions:
            if not p.realized_at:
                continue
            day = p.realized_at.date()
            entry = days.setdefault(day, CalendarDay(date=day))
            entry.pl += adjusted_realized_pl(p)
            entry.trades += 1
        return [days[d] for d in sorted(days)]

    def get_positions_by_closed_date(self, user_id: str, day: Union[date, datetime, str],
                                     asset_type: Optional[dm.AssetType] = None
                                     ) -> List[dm.Position]:
        """Positions closed on `day`, then partial closes last updated on `day`"""
        day = _as_date(day)
        positions = self._positions(user_id, asset_type)

        closed = [p for p in positions if p.closed_at and p.closed_at.date() == day]
        closed_ids = {p.id for p in closed}
        partial = [
            p for p in positions
            if p.is_partially_closed and p.id not in closed_ids
            and p.updated_at and p.updated_at.date() == day
        ]
        return closed + partial

    def calculate_balance_over_time(self, user_id: str,
                                    asset_type: Optional[dm.AssetType] = None,
                                    days: Optional[int] = None) -> List[BalancePoint]:
        """
        Balance per snapshot day.

        With an asset type, balance is that type's breakdown value plus net
        cash flow. `days` counts back from the latest snapshot.
        """
        return [
            BalancePoint(
                date=s.snapshot_date,
                balance=self._snapshot_value(s, asset_type),
                net_cash_flow=s.net_cash_flow,
            )
            for s in self._filtered_snapshots(user_id, days)
        ]

    def calculate_roi_over_time(self, user_id: str,
                                asset_type: Optional[dm.AssetType] = None,
                                days: Optional[int] = None) -> List[ROIPoint]:
        """
        ROI per snapshot day: (value - investment) / |investment| * 100.

        Investment is the snapshot's net cash flow, or the first snapshot's
        when that is 0.
        """
        snapshots = self._filtered_snapshots(user_id, days)
        if not snapshots:
            return []

        initial_net_cash_flow = snapshots[0].net_cash_flow
        result = []
        for s in snapshots:
            value = self._snapshot_value(s, asset_type)
            investment = s.net_cash_flow or initial_net_cash_flow
            roi = float((value - investment) / abs(investment) * 100) if investment != 0 else 0.0
            result.append(ROIPoint(
                date=s.snapshot_date,
                roi=roi,
                portfolio_value=value,
                net_cash_flow=s.net_cash_flow,
            ))
        return result
