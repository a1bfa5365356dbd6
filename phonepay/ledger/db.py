"""Async database engine and session management.

Driver mapping:
  postgresql://  → postgresql+asyncpg://     (requires the "postgres" extra)
  sqlite://      → sqlite+aiosqlite://       (requires aiosqlite)

Usage:
    db = get_database()
    await db.init()                    # Call once at startup
    async with db.session() as s:      # Use in request handlers
        result = await s.execute(...)
    await db.close()                   # Call at shutdown
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from phonepay.config import settings
from phonepay.ledger.models import Base

log = logging.getLogger("phonepay.ledger.db")


def to_async_url(db_url: str) -> str:
    """Convert a sync database URL to its async driver equivalent."""
    replacements = [
        ("postgresql://", "postgresql+asyncpg://"),
        ("postgres://", "postgresql+asyncpg://"),
        ("sqlite://", "sqlite+aiosqlite://"),
    ]
    for sync_prefix, async_prefix in replacements:
        if db_url.startswith(sync_prefix):
            return db_url.replace(sync_prefix, async_prefix, 1)
    # Already has async driver or unknown: return as-is
    return db_url


class Database:
    """Owns one engine and its session factory."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = to_async_url(url)
        self._engine: AsyncEngine = create_async_engine(self.url, echo=echo)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional async session scope."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Create all tables. Call once at application startup."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info(
            "Database initialized: dialect=%s tables=%s",
            self._engine.dialect.name,
            sorted(Base.metadata.tables),
        )

    async def close(self) -> None:
        """Dispose engine connections. Call at application shutdown."""
        await self._engine.dispose()
        log.info("Database closed")


_database: Database | None = None


def get_database() -> Database:
    """Return the process-wide database, creating it from settings if needed."""
    global _database
    if _database is None:
        _database = Database(settings.database_url, echo=settings.debug)
    return _database
