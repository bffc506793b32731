"""
Async SQLAlchemy engine and session factory.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from database.models import Base


def build_engine(database_url: str) -> AsyncEngine:
    kwargs: Dict[str, Any] = {"echo": False}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)
    return create_async_engine(database_url, **kwargs)


engine = build_engine(config.database_url)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_schema(target: AsyncEngine = engine) -> None:
    """Create missing tables (no migrations for this single-table schema)."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
