"""
Base Repository Pattern

Provides common operations for all repositories.
Each specific repository inherits from this base and converts
ORM rows into immutable domain records.
"""

from typing import TypeVar, Generic, Type, Optional, List, Dict, Any
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from decimal import Decimal
from enum import Enum
import logging

logger = logging.getLogger(__name__)

ModelType = TypeVar('ModelType')
ORMType = TypeVar('ORMType')


def to_decimal(value) -> Decimal:
    """Numeric column value as Decimal, NULL as 0"""
    return Decimal(str(value)) if value is not None else Decimal('0')


def to_optional_decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class BaseRepository(Generic[ModelType, ORMType]):
    """
    Base repository with common operations

    Usage:
        class PositionRepository(BaseRepository[dm.Position, PositionORM]):
            def __init__(self, session: Session):
                super().__init__(session, PositionORM)
    """

    def __init__(self, session: Session, model_class: Type[ORMType]):
        self.session = session
        self.model_class = model_class

    def get_by_id(self, id: str) -> Optional[ORMType]:
        """Get ORM row by ID, None when missing or on error"""
        try:
            return self.session.query(self.model_class).filter_by(id=id).first()
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {id}: {e}")
            return None

    def create(self, orm_instance: ORMType) -> Optional[ORMType]:
        """
        Create new entity

        Returns:
            Created ORM instance or None on error
        """
        try:
            self.session.add(orm_instance)
            self.session.flush()
            return orm_instance
        except IntegrityError as e:
            self.session.rollback()
            logger.error(f"Integrity error creating {self.model_class.__name__}: {e}")
            return None
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            return None

    def count(self, user_id: Optional[str] = None) -> int:
        """Count rows, optionally for one user"""
        try:
            query = self.session.query(self.model_class)
            if user_id is not None:
                query = query.filter_by(user_id=user_id)
            return query.count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    def apply_filters(self, query: Query, filters: Optional[Dict[str, Any]]) -> Query:
        """
        Apply equality filters to a query.

        Enum values are stored by their string value; unknown columns are ignored.
        """
        if not filters:
            return query
        for column_name, value in filters.items():
            if value is None:
                continue
            column = getattr(self.model_class, column_name, None)
            if column is None:
                logger.debug(f"Ignoring unknown {self.model_class.__name__} filter: {column_name}")
                continue
            if isinstance(value, Enum):
                value = value.value
            query = query.filter(column == value)
        return query


class RepositoryError(Exception):
    """Custom exception for repository operations"""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when trying to create a duplicate entity"""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when entity not found"""
    pass
