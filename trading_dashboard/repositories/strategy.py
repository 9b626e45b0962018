"""
Strategy Repository - Data access for multi-leg strategies
"""

from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
import logging

from trading_dashboard.repositories.base import (
    BaseRepository, DuplicateEntityError, to_decimal, to_optional_decimal,
)
from trading_dashboard.core.database.schema import StrategyORM
import trading_dashboard.core.models.domain as dm

logger = logging.getLogger(__name__)


class StrategyRepository(BaseRepository[dm.Strategy, StrategyORM]):
    """Repository for Strategy entities"""

    def __init__(self, session: Session):
        super().__init__(session, StrategyORM)

    def create_from_domain(self, strategy: dm.Strategy) -> Optional[dm.Strategy]:
        if self.get_by_id(strategy.id) is not None:
            raise DuplicateEntityError(f"Strategy already exists: {strategy.id}")

        try:
            strategy_orm = StrategyORM(
                id=strategy.id,
                user_id=strategy.user_id,
                strategy_type=strategy.strategy_type,
                status=strategy.status.value,
                underlying_symbol=strategy.underlying_symbol,
                realized_pl=strategy.realized_pl,
                max_risk=strategy.max_risk,
                total_opening_cost=strategy.total_opening_cost,
                opened_at=strategy.opened_at,
                closed_at=strategy.closed_at,
            )
            created = self.create(strategy_orm)
            return self.to_domain(created) if created else None
        except IntegrityError as e:
            self.session.rollback()
            logger.error(f"Duplicate strategy: {e}")
            raise DuplicateEntityError(f"Strategy already exists: {strategy.id}")

    def get_all(self, user_id: str, filters: Optional[Dict[str, Any]] = None) -> List[dm.Strategy]:
        """
        Get all strategies for a user

        Args:
            filters: equality filters on status, strategy_type or underlying_symbol
        """
        try:
            query = self.session.query(StrategyORM).filter(StrategyORM.user_id == user_id)
            query = self.apply_filters(query, filters)
            return [self.to_domain(s) for s in query.order_by(StrategyORM.opened_at).all()]
        except SQLAlchemyError as e:
            logger.error(f"Error getting strategies for user {user_id}: {e}")
            return []

    def get_realized_pl_by_date_range(self, user_id: str, start: datetime,
                                      end: datetime) -> List[dm.Strategy]:
        """Strategies with nonzero realized P&L closed within [start, end]"""
        try:
            rows = self.session.query(StrategyORM).filter(
                StrategyORM.user_id == user_id,
                StrategyORM.realized_pl != 0,
                StrategyORM.closed_at >= start,
                StrategyORM.closed_at <= end,
            ).all()
            return [self.to_domain(s) for s in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting realized strategies for user {user_id}: {e}")
            return []

    def to_domain(self, strategy_orm: StrategyORM) -> dm.Strategy:
        return dm.Strategy(
            id=strategy_orm.id,
            user_id=strategy_orm.user_id,
            strategy_type=strategy_orm.strategy_type,
            status=dm.StrategyStatus(strategy_orm.status),
            realized_pl=to_decimal(strategy_orm.realized_pl),
            underlying_symbol=strategy_orm.underlying_symbol,
            max_risk=to_optional_decimal(strategy_orm.max_risk),
            total_opening_cost=to_optional_decimal(strategy_orm.total_opening_cost),
            opened_at=strategy_orm.opened_at,
            closed_at=strategy_orm.closed_at,
        )
