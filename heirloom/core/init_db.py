"""Database initialization utilities."""
from sqlalchemy.ext.asyncio import AsyncEngine

from heirloom.core.database import Base

# Register the models on Base.metadata
from heirloom.modules.deployments import models  # noqa: F401


async def create_tables(engine: AsyncEngine) -> None:
    """Create all database tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: AsyncEngine) -> None:
    """Drop all database tables. USE WITH CAUTION!"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
