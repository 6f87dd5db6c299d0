"""Database engine and session factory construction.

Transaction Guarantees:
- Each unit of work gets its own session
- On any exception, the entire transaction is rolled back
- Sessions are closed after each unit of work

Engines are built explicitly from a ``Settings`` instance and owned by the
persistence manager; there is no module-level engine.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings

logger = logging.getLogger(__name__)


def build_engine(settings: Settings, url: str | None = None, **overrides) -> AsyncEngine:
    """Create the async engine with the configured pool."""
    db_url = url or settings.database_url_async
    logger.info(f"Database URL (masked): {db_url[:30]}...")

    options: dict = {"echo": settings.database_echo}
    if not db_url.startswith("sqlite"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Check connection health before use
            pool_recycle=300,
            pool_timeout=30,
        )
    options.update(overrides)
    return create_async_engine(db_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new sessions for each unit of work."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Rows stay readable after commit
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session: commit on success, roll back on any error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if needed."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
