from typing import Any

from fastapi import Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from api.config.settings import Settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _engine_options(settings: Settings) -> dict[str, Any]:
    # SQLite uses a file lock instead of a sized connection pool
    if settings.is_sqlite:
        return {"connect_args": {"timeout": settings.db_pool_timeout}}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": True,
    }


class Database:
    """Database connection and session management."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = create_async_engine(
            settings.database_url,
            echo=False,
            **_engine_options(settings),
        )
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        """Create all tables known to the metadata (local and test setups)."""
        # Register models on the metadata before creating
        from api.v1.infra.jobs import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        """Round-trip a trivial query; raises on connectivity errors."""
        async with self.SessionLocal() as session:
            await session.execute(text("SELECT 1"))

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """Database owned by the running application."""
    return request.app.state.database


# Convenience type alias for dependency injection
DatabaseDep = Depends(get_database)
