"""
Database Session Management

The dashboard reads positions, strategies, cash ledger and snapshots through
short-lived sessions. One DatabaseManager owns the engine; services get a
Session from session_scope() and never commit themselves.
"""

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from trading_dashboard.config.settings import Settings, get_settings
from trading_dashboard.core.database.schema import Base

logger = logging.getLogger(__name__)

IN_MEMORY_URL = "sqlite:///:memory:"


class DatabaseManager:
    """Engine, session factory and table bootstrap for one database URL"""

    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url
        self.engine = self._create_engine()
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @property
    def is_in_memory(self) -> bool:
        return self.database_url == IN_MEMORY_URL

    def _create_engine(self):
        engine_kwargs = self.settings.get_database_engine_kwargs(self.database_url)
        if self.is_in_memory:
            # Every session must see the same in-memory database
            engine_kwargs['poolclass'] = StaticPool

        engine = create_engine(self.database_url, **engine_kwargs)

        if self.database_url.startswith('sqlite'):
            @event.listens_for(engine, "connect")
            def enable_foreign_keys(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        logger.info(f"Database engine created: {self.database_url}")
        return engine

    def create_all_tables(self):
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Dashboard tables ready: {', '.join(sorted(Base.metadata.tables))}")

    def get_session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Commit on success, roll back and re-raise on error.

        Usage:
            with db.session_scope() as session:
                metrics = PerformanceMetricsService(session).calculate_win_rate(user_id)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Session rollback due to error: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


# ============================================================================
# Process-wide manager
# ============================================================================

_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """session_scope() on the process-wide manager"""
    with get_db_manager().session_scope() as session:
        yield session


def init_database():
    get_db_manager().create_all_tables()


def create_test_database() -> DatabaseManager:
    """In-memory SQLite with all tables created, one per test"""
    db = DatabaseManager(database_url=IN_MEMORY_URL)
    db.create_all_tables()
    return db
