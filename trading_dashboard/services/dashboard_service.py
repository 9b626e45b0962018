"""
Dashboard Service - Cached entry point for every dashboard metric.

Each metric:
- returns None when no user is selected (no repository is touched)
- goes through the MetricsCache with the freshness window from settings
- opens its own session, so cached values never hold ORM state

Usage:
    dashboard = DashboardService(get_db_manager(), quote_provider=YFinanceQuoteProvider())
    value = asyncio.run(dashboard.portfolio_value(user_id))

    # Keep the cache warm
    asyncio.create_task(dashboard.start_background_refresh())
"""

import inspect
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase, StaticQuoteProvider
from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.core.database.session import DatabaseManager
from trading_dashboard.services.metrics_cache import (
    CachedQuoteProvider, CacheKey, MetricsCache, StalenessPolicy,
)
from trading_dashboard.services.performance_metrics_service import (
    GroupPerformance, PerformanceMetricsService, WinRateMetrics,
)
from trading_dashboard.services.portfolio_valuation_service import (
    PortfolioValuationService, PortfolioValue,
)
from trading_dashboard.services.snapshot_service import SnapshotService
from trading_dashboard.services.time_window_performance import (
    PerformanceWindow, PeriodPerformance, TimeWindowPerformanceService, WindowStrategy,
)

logger = logging.getLogger(__name__)


def build_cache(settings: Settings, logger: Optional[logging.Logger] = None,
                clock: Callable[[], datetime] = dm.utc_now) -> MetricsCache:
    """MetricsCache with one StalenessPolicy per configured metric"""
    policies = {
        metric: StalenessPolicy(ttl)
        for metric, ttl in settings.metric_cache_ttl_seconds.items()
    }
    return MetricsCache(
        policies=policies,
        default_policy=StalenessPolicy(settings.default_metric_cache_ttl_seconds),
        clock=clock,
        logger=logger,
    )


class DashboardService:
    """Facade over valuation, metrics, window and snapshot services"""

    def __init__(
        self,
        db: DatabaseManager,
        quote_provider: Optional[QuoteProviderBase] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
        cache: Optional[MetricsCache] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self.cache = cache or build_cache(self.settings, self.logger)
        self.quote_provider = CachedQuoteProvider(
            quote_provider or StaticQuoteProvider(),
            ttl_seconds=self.settings.get_cache_ttl('quotes'),
            clock=self.cache.clock,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _cached(self, user_id: Optional[str], metric: str,
                      compute: Callable[..., Any], **params) -> Optional[Any]:
        """
        Run compute(session) through the cache.

        compute may be sync or async; it receives an open session.
        """
        if not user_id:
            return None

        async def fetch():
            with self.db.session_scope() as session:
                result = compute(session)
                if inspect.isawaitable(result):
                    result = await result
                return result

        return await self.cache.get(CacheKey.of(user_id, metric, **params), fetch)

    def _valuation(self, session) -> PortfolioValuationService:
        return PortfolioValuationService(
            session, quote_provider=self.quote_provider,
            settings=self.settings, logger=self.logger,
        )

    def _metrics(self, session) -> PerformanceMetricsService:
        return PerformanceMetricsService(
            session, settings=self.settings, logger=self.logger, clock=self.cache.clock,
        )

    def _windows(self, session) -> TimeWindowPerformanceService:
        return TimeWindowPerformanceService(
            session, settings=self.settings, logger=self.logger, clock=self.cache.clock,
            valuation_service=self._valuation(session),
        )

    # ------------------------------------------------------------------
    # Portfolio value
    # ------------------------------------------------------------------

    async def portfolio_value(self, user_id: Optional[str]) -> Optional[PortfolioValue]:
        return await self._cached(
            user_id, 'portfolio_value',
            lambda s: self._valuation(s).compute_portfolio_value(user_id),
        )

    async def net_cash_flow(self, user_id: Optional[str]) -> Optional[Decimal]:
        return await self._cached(
            user_id, 'net_cash_flow',
            lambda s: self._valuation(s).get_net_cash_flow(user_id),
        )

    async def initial_investment(self, user_id: Optional[str]) -> Optional[Decimal]:
        return await self._cached(
            user_id, 'initial_investment',
            lambda s: self._valuation(s).get_initial_investment(user_id),
        )

    # ------------------------------------------------------------------
    # Time windows
    # ------------------------------------------------------------------

    async def window_performance(self, user_id: Optional[str], window: PerformanceWindow,
                                 strategy: Optional[WindowStrategy] = None) -> Optional[PeriodPerformance]:
        return await self._cached(
            user_id, f"{window.key}_performance",
            lambda s: self._windows(s).performance(user_id, window, strategy=strategy),
            strategy=strategy.value if strategy else None,
        )

    async def daily_performance(self, user_id: Optional[str], **kwargs) -> Optional[PeriodPerformance]:
        return await self.window_performance(user_id, PerformanceWindow.DAILY, **kwargs)

    async def weekly_performance(self, user_id: Optional[str], **kwargs) -> Optional[PeriodPerformance]:
        return await self.window_performance(user_id, PerformanceWindow.WEEKLY, **kwargs)

    async def monthly_performance(self, user_id: Optional[str], **kwargs) -> Optional[PeriodPerformance]:
        return await self.window_performance(user_id, PerformanceWindow.MONTHLY, **kwargs)

    async def yearly_performance(self, user_id: Optional[str], **kwargs) -> Optional[PeriodPerformance]:
        return await self.window_performance(user_id, PerformanceWindow.YEARLY, **kwargs)

    # ------------------------------------------------------------------
    # Trade statistics
    # ------------------------------------------------------------------

    async def win_rate(self, user_id: Optional[str],
                       asset_type: Optional[dm.AssetType] = None) -> Optional[WinRateMetrics]:
        return await self._cached(
            user_id, 'win_rate',
            lambda s: self._metrics(s).calculate_win_rate(user_id, asset_type=asset_type),
            asset_type=asset_type,
        )

    async def performance_by_symbol(self, user_id: Optional[str],
                                    asset_type: Optional[dm.AssetType] = None,
                                    days: Optional[int] = None) -> Optional[List[GroupPerformance]]:
        return await self._cached(
            user_id, 'performance_by_symbol',
            lambda s: self._metrics(s).calculate_performance_by_symbol(
                user_id, asset_type=asset_type, days=days),
            asset_type=asset_type, days=days,
        )

    async def monthly_breakdown(self, user_id: Optional[str],
                                asset_type: Optional[dm.AssetType] = None,
                                months: int = 12) -> Optional[List[GroupPerformance]]:
        return await self._cached(
            user_id, 'monthly_breakdown',
            lambda s: self._metrics(s).calculate_monthly_performance(
                user_id, asset_type=asset_type, months=months),
            asset_type=asset_type, months=months,
        )

    async def drawdown(self, user_id: Optional[str],
                       asset_type: Optional[dm.AssetType] = None,
                       days: Optional[int] = None):
        return await self._cached(
            user_id, 'drawdown',
            lambda s: self._metrics(s).calculate_drawdown_over_time(
                user_id, asset_type=asset_type, days=days),
            asset_type=asset_type, days=days,
        )

    async def metric(self, user_id: Optional[str], name: str, **params) -> Optional[Any]:
        """
        Any PerformanceMetricsService.calculate_<name> through the cache.

        Raises:
            ValueError: no such metric
        """
        method_name = f"calculate_{name}"
        if not hasattr(PerformanceMetricsService, method_name):
            raise ValueError(f"Unknown metric: {name}")
        return await self._cached(
            user_id, name,
            lambda s: getattr(self._metrics(s), method_name)(user_id, **params),
            **params,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def capture_snapshot(self, user_id: Optional[str],
                               snapshot_date: Optional[date] = None) -> Optional[dm.PortfolioSnapshot]:
        """Write today's snapshot (uncached) and drop every cached metric of the user"""
        if not user_id:
            return None
        with self.db.session_scope() as session:
            service = SnapshotService(
                session, settings=self.settings, logger=self.logger,
                valuation_service=self._valuation(session),
            )
            snapshot = await service.generate_snapshot(user_id, snapshot_date)
        self.cache.invalidate(user_id=user_id)
        return snapshot

    def daily_pl_change(self, user_id: Optional[str],
                        snapshot_date: date) -> Optional[Tuple[Decimal, float]]:
        if not user_id:
            return None
        with self.db.session_scope() as session:
            service = SnapshotService(session, settings=self.settings, logger=self.logger)
            return service.calculate_daily_pl_change(user_id, snapshot_date)

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    async def start_background_refresh(self, interval: Optional[float] = None):
        await self.cache.run_refresh_loop(interval or self.settings.refresh_interval_seconds)

    def stop(self):
        self.cache.stop()

    def summary(self) -> Dict[str, int]:
        """Cached entry count per metric"""
        counts: Dict[str, int] = {}
        for key in self.cache.keys():
            counts[key.metric] = counts.get(key.metric, 0) + 1
        return counts
