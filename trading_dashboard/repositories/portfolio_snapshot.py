"""
Portfolio Snapshot Repository - Data access for daily snapshots
"""

from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import date, timedelta
import logging
import uuid

from trading_dashboard.repositories.base import BaseRepository, to_decimal
from trading_dashboard.core.database.schema import PortfolioSnapshotORM
import trading_dashboard.core.models.domain as dm

logger = logging.getLogger(__name__)


class PortfolioSnapshotRepository(BaseRepository[dm.PortfolioSnapshot, PortfolioSnapshotORM]):
    """Repository for PortfolioSnapshot entities"""

    def __init__(self, session: Session):
        super().__init__(session, PortfolioSnapshotORM)

    def get_by_date(self, user_id: str, snapshot_date: date) -> Optional[dm.PortfolioSnapshot]:
        try:
            row = self.session.query(PortfolioSnapshotORM).filter_by(
                user_id=user_id,
                snapshot_date=snapshot_date
            ).first()
            return self.to_domain(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting snapshot {snapshot_date} for user {user_id}: {e}")
            return None

    def get_all(self, user_id: str) -> List[dm.PortfolioSnapshot]:
        """All snapshots for a user, oldest first"""
        try:
            rows = self.session.query(PortfolioSnapshotORM).filter_by(
                user_id=user_id
            ).order_by(PortfolioSnapshotORM.snapshot_date).all()
            return [self.to_domain(s) for s in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting snapshots for user {user_id}: {e}")
            return []

    def get_from_days_ago(self, user_id: str, days: int,
                          as_of: Optional[date] = None) -> Optional[dm.PortfolioSnapshot]:
        """Closest snapshot on or before (as_of - days)"""
        as_of = as_of or dm.utc_now().date()
        target = as_of - timedelta(days=days)
        try:
            row = self.session.query(PortfolioSnapshotORM).filter(
                PortfolioSnapshotORM.user_id == user_id,
                PortfolioSnapshotORM.snapshot_date <= target,
            ).order_by(PortfolioSnapshotORM.snapshot_date.desc()).first()
            return self.to_domain(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting snapshot {days} days before {as_of} for user {user_id}: {e}")
            return None

    def upsert(self, snapshot: dm.PortfolioSnapshot) -> Optional[dm.PortfolioSnapshot]:
        """Insert or replace the row for (user_id, snapshot_date)"""
        try:
            existing = self.session.query(PortfolioSnapshotORM).filter_by(
                user_id=snapshot.user_id,
                snapshot_date=snapshot.snapshot_date
            ).first()

            if existing:
                logger.info(f"Updating existing snapshot for {snapshot.snapshot_date}")
                row = existing
            else:
                row = PortfolioSnapshotORM(
                    id=snapshot.id or str(uuid.uuid4()),
                    user_id=snapshot.user_id,
                    snapshot_date=snapshot.snapshot_date,
                )
                self.session.add(row)

            row.portfolio_value = snapshot.portfolio_value
            row.net_cash_flow = snapshot.net_cash_flow
            row.total_market_value = snapshot.total_market_value
            row.total_realized_pl = snapshot.total_realized_pl
            row.total_unrealized_pl = snapshot.total_unrealized_pl
            row.open_positions_count = snapshot.open_positions_count
            row.total_positions_count = snapshot.total_positions_count
            row.positions_breakdown = snapshot.positions_breakdown.to_dict()

            self.session.flush()
            return self.to_domain(row)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error saving snapshot for user {snapshot.user_id}: {e}")
            return None

    def to_domain(self, snapshot_orm: PortfolioSnapshotORM) -> dm.PortfolioSnapshot:
        return dm.PortfolioSnapshot(
            id=snapshot_orm.id,
            user_id=snapshot_orm.user_id,
            snapshot_date=snapshot_orm.snapshot_date,
            portfolio_value=to_decimal(snapshot_orm.portfolio_value),
            net_cash_flow=to_decimal(snapshot_orm.net_cash_flow),
            total_market_value=to_decimal(snapshot_orm.total_market_value),
            total_realized_pl=to_decimal(snapshot_orm.total_realized_pl),
            total_unrealized_pl=to_decimal(snapshot_orm.total_unrealized_pl),
            open_positions_count=snapshot_orm.open_positions_count or 0,
            total_positions_count=snapshot_orm.total_positions_count or 0,
            positions_breakdown=dm.PositionsBreakdown.from_dict(snapshot_orm.positions_breakdown),
        )
