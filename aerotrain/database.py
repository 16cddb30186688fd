"""
Async database engine, session factory and schema bootstrap.

PostgreSQL (asyncpg) is the production target; SQLite (aiosqlite) is used for
local runs and the test suite.  ``init_db`` creates the tables and seeds the
regulatory requirement catalog on first start.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from aerotrain.config import settings

logger = logging.getLogger(__name__)

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    future=True,
    pool_pre_ping=True,
    poolclass=NullPool,  # connections are not shared between event loops
)

if IS_SQLITE:
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite ignores ON DELETE CASCADE unless enabled per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Routers commit their own writes; whatever is still pending when the
    request finishes is committed here, and any error rolls the session back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create any missing tables, then seed the regulatory catalog if it is empty."""
    # Registers the ORM classes on Base.metadata
    from aerotrain.models import database_models  # noqa: F401
    from aerotrain.services.regulatory import seed_regulatory_requirements

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(
            "Database tables created/verified: %s",
            ", ".join(sorted(Base.metadata.tables)),
        )

        async with AsyncSessionLocal() as session:
            inserted = await seed_regulatory_requirements(session)
            await session.commit()
        if inserted:
            logger.info("Regulatory catalog initialised with %d requirement(s)", inserted)
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def close_db() -> None:
    """Dispose of the engine's connections."""
    try:
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")
        raise
