"""
Database configuration and session management
"""

from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
from sqlalchemy import event
import logging
from contextlib import asynccontextmanager

from app.config import settings

logger = logging.getLogger(__name__)


def configure_sqlite_engine(target: AsyncEngine) -> AsyncEngine:
    """
    Take over SQLite transaction control from pysqlite.

    pysqlite defers BEGIN until the first write, which lets two readers
    check the same slot before either inserts. Units of work opened with
    the ``sqlite_immediate`` option take the write lock at BEGIN instead,
    serializing writers the way SERIALIZABLE does on PostgreSQL. WAL keeps
    plain readers from blocking them.
    """

    @event.listens_for(target.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(target.sync_engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get("sqlite_immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return target


def build_engine(database_url: str, testing: bool = False) -> AsyncEngine:
    if testing or database_url.startswith("sqlite"):
        # NullPool doesn't accept pool parameters
        created = create_async_engine(
            database_url,
            echo=settings.DB_ECHO,
            poolclass=NullPool,
        )
    else:
        created = create_async_engine(
            database_url,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            poolclass=AsyncAdaptedQueuePool,
        )
    if database_url.startswith("sqlite"):
        configure_sqlite_engine(created)
    return created


engine: AsyncEngine = build_engine(settings.DATABASE_URL, testing=settings.is_testing)

# Create async session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base
Base = declarative_base()


async def init_db():
    """
    Initialize database connections
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """
    Close database connections
    """
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session with explicit transaction management
    Each endpoint must use explicit transaction boundaries
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Transaction helpers shared by the booking services
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self, session: AsyncSession):
        """
        Context manager for explicit transaction handling on an existing session
        """
        try:
            async with session.begin():
                yield session
        except Exception as e:
            self.logger.debug(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

    @asynccontextmanager
    async def serializable(self, session_factory: Optional[async_sessionmaker] = None):
        """
        Open a session whose transaction runs at SERIALIZABLE isolation.

        Conflicting commits surface as serialization failures, which
        callers wrap with ``retry_on_conflict``.
        """
        factory = session_factory or self.session_factory
        async with factory() as session:
            async with self.transaction(session):
                dialect = session.get_bind().dialect.name
                if dialect == "postgresql":
                    await session.connection(
                        execution_options={"isolation_level": "SERIALIZABLE"}
                    )
                elif dialect == "sqlite":
                    await session.connection(execution_options={"sqlite_immediate": True})
                yield session


# Create global database manager
db_manager = DatabaseManager()


def get_session_factory() -> async_sessionmaker:
    """
    Dependency handing services the session factory they open units of work on
    """
    return db_manager.session_factory
