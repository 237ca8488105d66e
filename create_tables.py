"""
Script to create the submissions table.

Creates all tables defined in the models against DATABASE_URL.
Use Alembic (alembic upgrade head) for managed deployments.
"""
import asyncio
import sys

from mvl_leads.config import settings
from mvl_leads.database import create_all, create_engine
from mvl_leads.models.base import Base


async def create_all_tables():
    """Create all tables in the database."""
    engine = create_engine(settings.DATABASE_URL)
    await create_all(engine)
    await engine.dispose()
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    engine = create_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    print("All tables dropped!")


async def main():
    """Main entry point. Pass --drop to drop the tables first."""
    if "--drop" in sys.argv:
        await drop_all_tables()
    print("Creating database tables...")
    await create_all_tables()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
