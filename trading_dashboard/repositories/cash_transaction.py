"""
Cash Transaction Repository - Data access for the cash ledger
"""

from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
import logging

from trading_dashboard.repositories.base import BaseRepository, DuplicateEntityError, to_decimal
from trading_dashboard.core.database.schema import CashTransactionORM
import trading_dashboard.core.models.domain as dm

logger = logging.getLogger(__name__)


class CashTransactionRepository(BaseRepository[dm.CashTransaction, CashTransactionORM]):
    """Repository for CashTransaction entities"""

    def __init__(self, session: Session):
        super().__init__(session, CashTransactionORM)

    def create_from_domain(self, transaction: dm.CashTransaction) -> Optional[dm.CashTransaction]:
        if self.get_by_id(transaction.id) is not None:
            raise DuplicateEntityError(f"Cash transaction already exists: {transaction.id}")

        created = self.create(CashTransactionORM(
            id=transaction.id,
            user_id=transaction.user_id,
            transaction_code=transaction.transaction_code,
            amount=transaction.amount,
            activity_date=transaction.activity_date,
            description=transaction.description,
        ))
        return self.to_domain(created) if created else None

    def get_by_user_id(self, user_id: str) -> List[dm.CashTransaction]:
        """Whole ledger for a user, oldest first"""
        try:
            rows = self.session.query(CashTransactionORM).filter(
                CashTransactionORM.user_id == user_id
            ).order_by(CashTransactionORM.activity_date).all()
            return [self.to_domain(t) for t in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting cash transactions for user {user_id}: {e}")
            return []

    def get_by_date_range(self, user_id: str, start: datetime,
                          end: datetime) -> List[dm.CashTransaction]:
        try:
            rows = self.session.query(CashTransactionORM).filter(
                CashTransactionORM.user_id == user_id,
                CashTransactionORM.activity_date >= start,
                CashTransactionORM.activity_date <= end,
            ).order_by(CashTransactionORM.activity_date).all()
            return [self.to_domain(t) for t in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting cash transactions in range for user {user_id}: {e}")
            return []

    def to_domain(self, transaction_orm: CashTransactionORM) -> dm.CashTransaction:
        return dm.CashTransaction(
            id=transaction_orm.id,
            user_id=transaction_orm.user_id,
            transaction_code=transaction_orm.transaction_code,
            amount=to_decimal(transaction_orm.amount),
            activity_date=transaction_orm.activity_date,
            description=transaction_orm.description,
        )
