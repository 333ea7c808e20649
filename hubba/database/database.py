"""
Database Connection and Initialization

This module handles database connection setup, initialization,
and provides the database session management.

Every game and battle mutation runs inside a ``DatabaseSession`` and locks
its row with ``SELECT ... FOR UPDATE``. SQLite has no row locks, so SQLite
engines open every transaction with ``BEGIN IMMEDIATE`` instead, which takes
the database write lock up front and serializes writers the same way.
"""

from typing import Optional

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..utils.config import get_settings
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)

# Naming convention keeps constraint names stable across SQLite and PostgreSQL
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
})
Base = declarative_base(metadata=metadata)

# Global database engine and session factory
engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None


def to_async_url(database_url: str) -> str:
    """
    Convert a plain database URL to its async driver form.

    Args:
        database_url: URL such as ``sqlite:///skatehubba.db`` or ``postgresql://...``

    Returns:
        str: URL using ``aiosqlite`` or ``asyncpg``
    """
    if database_url.startswith("sqlite:///"):
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def _serialize_sqlite_writers(async_engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock when it begins."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def init_database(database_url: Optional[str] = None) -> None:
    """
    Initialize the database connection and create tables.

    This function sets up the async database engine and creates
    all necessary tables if they don't exist.

    Args:
        database_url: Optional override of ``DATABASE_URL`` (used by tests)
    """
    global engine, SessionLocal

    settings = get_settings()

    try:
        database_url = to_async_url(database_url or settings.database_url)

        # Create async engine
        engine = create_async_engine(
            database_url,
            echo=settings.debug,  # Log SQL queries in debug mode
        )
        if engine.dialect.name == "sqlite":
            _serialize_sqlite_writers(engine)

        # Create session factory
        SessionLocal = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Import all models to ensure they're registered with SQLAlchemy
        from .models import GameSession, GameRound, GameDispute, BattleVoteState  # noqa: F401

        # Create all tables
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized successfully - dialect: {engine.dialect.name}")

    except Exception as e:
        logger.error(f"Failed to initialize database - error: {str(e)}")
        raise


async def get_db_session() -> AsyncSession:
    """
    Get a database session.

    Returns:
        AsyncSession: Database session for queries
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    return SessionLocal()


async def close_database() -> None:
    """
    Close the database connection.

    This should be called during application shutdown.
    """
    global engine, SessionLocal

    if engine:
        await engine.dispose()
        engine = None
        SessionLocal = None
        logger.info("Database connection closed")


# Context manager for database sessions
class DatabaseSession:
    """
    Context manager for database sessions with automatic cleanup.

    The whole block is one transaction: it commits when the block exits
    normally and rolls back when it raises.

    Usage:
        async with DatabaseSession() as session:
            # Perform database operations
            result = await session.execute(query)
    """

    def __init__(self):
        self.session = None

    async def __aenter__(self) -> AsyncSession:
        self.session = await get_db_session()
        return self.session

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            try:
                if exc_type is not None:
                    await self.session.rollback()
                else:
                    await self.session.commit()
            finally:
                await self.session.close()
