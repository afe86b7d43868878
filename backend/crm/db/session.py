"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Each request runs inside one session and one transaction, so multi-statement
operations (payment insert plus invoice status update) commit or roll back
together.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from crm.core.config import settings


# Create async engine
# WHY: pool_pre_ping ensures stale connections are recycled, preventing
# "server has gone away" errors in long-running applications.
engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Create session factory
# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: Commit on success and roll back on any exception, so a request that
    fails halfway leaves no partial writes behind.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
