"""
Database engine and session factory.

Uses SQLAlchemy async engine (asyncpg in production, aiosqlite locally).
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mvl_leads.models.base import Base


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the given URL."""
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables (local development and tests)."""
    # Register models on the metadata
    import mvl_leads.models.submission  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
