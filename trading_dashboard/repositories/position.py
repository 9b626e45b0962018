"""
Position Repository - Data access for positions
"""

from typing import List, Optional, Dict, Any
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
import logging

from trading_dashboard.repositories.base import (
    BaseRepository, DuplicateEntityError, to_decimal, to_optional_decimal,
)
from trading_dashboard.core.database.schema import PositionORM
import trading_dashboard.core.models.domain as dm

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = [s.value for s in dm.TERMINAL_POSITION_STATUSES]


class PositionRepository(BaseRepository[dm.Position, PositionORM]):
    """Repository for Position entities"""

    def __init__(self, session: Session):
        super().__init__(session, PositionORM)

    def create_from_domain(self, position: dm.Position) -> Optional[dm.Position]:
        """
        Create position from domain model

        Returns:
            Created position or None on error

        Raises:
            DuplicateEntityError: a position with the same id exists
        """
        if self.get_by_id(position.id) is not None:
            raise DuplicateEntityError(f"Position already exists: {position.id}")

        try:
            position_orm = PositionORM(
                id=position.id,
                user_id=position.user_id,
                asset_type=position.asset_type.value,
                symbol=position.symbol,
                side=position.side.value,
                status=position.status.value,
                opening_quantity=position.opening_quantity,
                current_quantity=position.current_quantity,
                average_opening_price=position.average_opening_price,
                total_cost_basis=position.total_cost_basis,
                total_closing_amount=position.total_closing_amount,
                realized_pl=position.realized_pl,
                unrealized_pl=position.unrealized_pl,
                multiplier=position.multiplier,
                strategy_id=position.strategy_id,
                expiration_date=position.expiration_date,
                strike_price=position.strike_price,
                option_type=position.option_type.value if position.option_type else None,
                margin_requirement=position.margin_requirement,
                contract_month=position.contract_month,
                opened_at=position.opened_at,
                closed_at=position.closed_at,
                updated_at=position.updated_at or dm.utc_now(),
            )

            created = self.create(position_orm)
            if not created:
                return None
            return self.to_domain(created)

        except IntegrityError as e:
            self.session.rollback()
            logger.error(f"Duplicate position: {e}")
            raise DuplicateEntityError(f"Position already exists: {position.id}")

    def get_all(self, user_id: str, filters: Optional[Dict[str, Any]] = None) -> List[dm.Position]:
        """
        Get all positions for a user

        Args:
            filters: equality filters on status, asset_type, symbol,
                strategy_id or expiration_date
        """
        try:
            query = self.session.query(PositionORM).filter(PositionORM.user_id == user_id)
            query = self.apply_filters(query, filters)
            rows = query.order_by(PositionORM.opened_at).all()
            return [self.to_domain(p) for p in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting positions for user {user_id}: {e}")
            return []

    def get_open_positions(self, user_id: str) -> List[dm.Position]:
        return self.get_all(user_id, {'status': dm.PositionStatus.OPEN})

    def get_by_strategy_id(self, user_id: str, strategy_id: str) -> List[dm.Position]:
        """Legs of a strategy"""
        return self.get_all(user_id, {'strategy_id': strategy_id})

    def get_realized_pl_by_date_range(self, user_id: str, start: datetime,
                                      end: datetime) -> List[dm.Position]:
        """
        Positions whose P&L was booked within [start, end].

        Terminal positions match on closed_at. Partially closed open
        positions match on updated_at.
        """
        try:
            closed_in_range = and_(
                PositionORM.status.in_(TERMINAL_STATUSES),
                PositionORM.closed_at >= start,
                PositionORM.closed_at <= end,
            )
            partially_closed_in_range = and_(
                PositionORM.status == dm.PositionStatus.OPEN.value,
                PositionORM.realized_pl != 0,
                PositionORM.current_quantity < PositionORM.opening_quantity,
                PositionORM.updated_at >= start,
                PositionORM.updated_at <= end,
            )
            rows = self.session.query(PositionORM).filter(
                PositionORM.user_id == user_id,
                or_(closed_in_range, partially_closed_in_range),
            ).all()
            return [self.to_domain(p) for p in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting realized positions for user {user_id}: {e}")
            return []

    def to_domain(self, position_orm: PositionORM) -> dm.Position:
        """Convert ORM to domain model"""
        return dm.Position(
            id=position_orm.id,
            user_id=position_orm.user_id,
            asset_type=dm.AssetType(position_orm.asset_type),
            symbol=position_orm.symbol,
            side=dm.PositionSide(position_orm.side),
            status=dm.PositionStatus(position_orm.status),
            opening_quantity=to_decimal(position_orm.opening_quantity),
            current_quantity=to_decimal(position_orm.current_quantity),
            average_opening_price=to_decimal(position_orm.average_opening_price),
            total_cost_basis=to_decimal(position_orm.total_cost_basis),
            total_closing_amount=to_decimal(position_orm.total_closing_amount),
            realized_pl=to_decimal(position_orm.realized_pl),
            unrealized_pl=to_decimal(position_orm.unrealized_pl),
            multiplier=to_optional_decimal(position_orm.multiplier),
            strategy_id=position_orm.strategy_id,
            expiration_date=position_orm.expiration_date,
            strike_price=to_optional_decimal(position_orm.strike_price),
            option_type=dm.OptionType(position_orm.option_type) if position_orm.option_type else None,
            margin_requirement=to_optional_decimal(position_orm.margin_requirement),
            contract_month=position_orm.contract_month,
            opened_at=position_orm.opened_at,
            closed_at=position_orm.closed_at,
            updated_at=position_orm.updated_at,
        )
