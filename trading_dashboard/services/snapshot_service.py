"""
Snapshot Service - Capture portfolio state once per day

Snapshots are the baseline for snapshot-comparison performance and the
source of balance/ROI history:
- Portfolio value and net cash flow
- Market value and realized/unrealized P&L totals
- Per-asset-type breakdown of open positions
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Tuple
import logging

from sqlalchemy.orm import Session

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase
from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.repositories.base import EntityNotFoundError
from trading_dashboard.repositories.portfolio_snapshot import PortfolioSnapshotRepository
from trading_dashboard.repositories.position import PositionRepository
from trading_dashboard.services.portfolio_valuation_service import PortfolioValuationService
from trading_dashboard.services.realized_pl import adjusted_realized_pl

logger = logging.getLogger(__name__)


class SnapshotService:
    """Materializes and compares daily portfolio snapshots"""

    def __init__(
        self,
        session: Session,
        quote_provider: Optional[QuoteProviderBase] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
        valuation_service: Optional[PortfolioValuationService] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self.valuation = valuation_service or PortfolioValuationService(
            session, quote_provider=quote_provider, settings=self.settings, logger=self.logger
        )
        self.positions = PositionRepository(session)
        self.snapshots = PortfolioSnapshotRepository(session)

    async def generate_snapshot(self, user_id: str,
                                snapshot_date: Optional[date] = None) -> Optional[dm.PortfolioSnapshot]:
        """
        Value the portfolio and save it as the user's snapshot for the day.

        Re-running on the same day replaces that day's row.

        Returns:
            Saved snapshot, or None if it could not be stored
        """
        snapshot_date = snapshot_date or dm.utc_now().date()
        self.logger.info(f"Capturing snapshot for {user_id} on {snapshot_date}")

        value = await self.valuation.compute_portfolio_value(user_id)
        positions = self.positions.get_all(user_id)
        total_realized = sum(
            (adjusted_realized_pl(p) for p in positions if p.is_terminal),
            dm.ZERO,
        )

        saved = self.snapshots.upsert(dm.PortfolioSnapshot(
            user_id=user_id,
            snapshot_date=snapshot_date,
            portfolio_value=value.portfolio_value,
            net_cash_flow=value.net_cash_flow,
            total_market_value=value.total_market_value,
            total_realized_pl=total_realized,
            total_unrealized_pl=value.unrealized_pl,
            open_positions_count=value.open_positions,
            total_positions_count=len(positions),
            positions_breakdown=value.breakdown,
        ))

        if saved is None:
            self.logger.error(f"Failed to save snapshot for {user_id} on {snapshot_date}")
            return None

        self.session.commit()
        self.logger.info(
            f"Snapshot saved: value ${float(saved.portfolio_value):,.2f}, "
            f"{saved.open_positions_count} open of {saved.total_positions_count} positions"
        )
        return saved

    def calculate_daily_pl_change(self, user_id: str, snapshot_date: date) -> Tuple[Decimal, float]:
        """
        (change, percent) of portfolio value against the previous day's snapshot.

        Returns (0, 0.0) when there is no previous snapshot.

        Raises:
            EntityNotFoundError: no snapshot exists for snapshot_date
        """
        current = self.snapshots.get_by_date(user_id, snapshot_date)
        if current is None:
            raise EntityNotFoundError(f"No snapshot for {user_id} on {snapshot_date}")

        previous = self.snapshots.get_by_date(user_id, snapshot_date - timedelta(days=1))
        if previous is None:
            return dm.ZERO, 0.0

        change = current.portfolio_value - previous.portfolio_value
        if previous.portfolio_value == 0:
            return change, 0.0
        return change, float(change / abs(previous.portfolio_value) * 100)
