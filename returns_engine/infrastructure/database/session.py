"""Async database session management with connection pooling"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from returns_engine.config import settings
from returns_engine.infrastructure.database.models import Base

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_async_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

# expire_on_commit=False keeps loaded attributes usable after commit without lazy IO
SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency injection for database sessions"""
    async with SessionLocal() as db:
        yield db


async def create_schema(bind: AsyncEngine = engine) -> None:
    """Create any missing tables"""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
